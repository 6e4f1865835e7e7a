from __future__ import annotations

from ..extensions import db
from cashledger.time_utils import to_utc_z


PAYMENT_TYPE_DECLARED = "declared"
PAYMENT_TYPE_DEPOSIT = "deposit"


class Booking(db.Model):
    """
    Court/venue booking, owned by the booking service.

    Only the columns the ledger needs to attribute payments are mapped here.
    """
    __tablename__ = "bookings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, index=True)
    client_name = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    facility = db.relationship("Facility", backref=db.backref("bookings", lazy=True))


class BookingPayment(db.Model):
    """
    Payment declared against a booking (read-only reconciliation source).

    payment_type:
    - declared: money taken at the venue by staff; must appear in the cash ledger
    - deposit: online/advance deposit handled outside the till
    """
    __tablename__ = "booking_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False, default="cash")
    payment_type = db.Column(db.String(16), nullable=False, default=PAYMENT_TYPE_DECLARED)
    registered_by = db.Column(db.Integer, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)

    booking = db.relationship("Booking", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "payment_type": self.payment_type,
            "registered_by": self.registered_by,
            "paid_at": to_utc_z(self.paid_at),
        }


class Order(db.Model):
    """Point-of-sale order (bar, shop), owned by the orders service."""
    __tablename__ = "orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, index=True)
    order_number = db.Column(db.String(30), nullable=False)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    facility = db.relationship("Facility", backref=db.backref("orders", lazy=True))


class OrderPayment(db.Model):
    """Payment recorded against an order (read-only reconciliation source)."""
    __tablename__ = "order_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    reference = db.Column(db.String(255), nullable=True)
    registered_by = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "reference": self.reference,
            "registered_by": self.registered_by,
            "created_at": to_utc_z(self.created_at),
        }
