from __future__ import annotations

from ..extensions import db
from cashledger.time_utils import to_utc_z


class Facility(db.Model):
    """
    Venue that owns cash register sessions (a club, a court complex, a shop).

    The facility registry is maintained elsewhere; the ledger only needs it to
    scope sessions and movements.
    """
    __tablename__ = "facilities"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
