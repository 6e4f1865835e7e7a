from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from cashledger.time_utils import to_utc_naive, to_utc_z


SESSION_OPEN = "OPEN"
SESSION_CLOSED = "CLOSED"

MOVEMENT_SALE = "sale"
MOVEMENT_EXPENSE = "expense"
MOVEMENT_INITIAL_CASH = "initial_cash"
MOVEMENT_CASH_WITHDRAWAL = "cash_withdrawal"
MOVEMENT_ADJUSTMENT = "adjustment"

MOVEMENT_TYPES = (
    MOVEMENT_SALE,
    MOVEMENT_EXPENSE,
    MOVEMENT_INITIAL_CASH,
    MOVEMENT_CASH_WITHDRAWAL,
    MOVEMENT_ADJUSTMENT,
)

METHOD_CASH = "cash"
METHOD_OTHER = "other"

PAYMENT_METHODS = (
    METHOD_CASH,
    "card",
    "transfer",
    "credit_card",
    "debit_card",
    "mobile_wallet",
    METHOD_OTHER,
)

SOURCE_LIVE = "live"
SOURCE_BACKFILL = "backfill"


class RegisterSession(db.Model):
    """
    Cash register session: one facility's till for one shift.

    LIFECYCLE:
    - OPEN: shift is active, movements can be recorded
    - CLOSED: cash counted, variance calculated; closed_at is set once

    TOTALS: every total_* column, expected_cash_cents and variance_cents are a
    cache rebuilt from cash_movements by the aggregation service. They are
    never incremented in place.

    WINDOW: [opened_at, closed_at), open-ended while the session is OPEN.
    """
    __tablename__ = "register_sessions"
    __table_args__ = (
        # At most one OPEN session per facility
        db.Index(
            "uq_register_sessions_facility_open",
            "facility_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        db.Index("ix_register_sessions_facility_opened", "facility_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, index=True)
    # User or staff reference owned by the identity service
    operator_id = db.Column(db.Integer, nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)  # OPEN, CLOSED

    # Cash tracking (all amounts in cents)
    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    counted_cash_cents = db.Column(db.Integer, nullable=True)  # Set when closing
    variance_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    # Sale totals per payment method
    total_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    total_card_cents = db.Column(db.Integer, nullable=False, default=0)
    total_transfer_cents = db.Column(db.Integer, nullable=False, default=0)
    total_credit_card_cents = db.Column(db.Integer, nullable=False, default=0)
    total_debit_card_cents = db.Column(db.Integer, nullable=False, default=0)
    total_mobile_wallet_cents = db.Column(db.Integer, nullable=False, default=0)
    total_other_cents = db.Column(db.Integer, nullable=False, default=0)

    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_expenses_cents = db.Column(db.Integer, nullable=False, default=0)
    total_withdrawals_cents = db.Column(db.Integer, nullable=False, default=0)
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_movements = db.Column(db.Integer, nullable=False, default=0)
    totals_computed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    opening_notes = db.Column(db.Text, nullable=True)
    closing_notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    facility = db.relationship("Facility", backref=db.backref("register_sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_OPEN

    def covers(self, at) -> bool:
        """True when `at` falls inside [opened_at, closed_at)."""
        at = to_utc_naive(at)
        if at < to_utc_naive(self.opened_at):
            return False
        return self.closed_at is None or at < to_utc_naive(self.closed_at)

    def method_totals(self) -> dict:
        return {method: getattr(self, f"total_{method}_cents") for method in PAYMENT_METHODS}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "facility_id": self.facility_id,
            "operator_id": self.operator_id,
            "status": self.status,
            "opening_cash_cents": self.opening_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "counted_cash_cents": self.counted_cash_cents,
            "variance_cents": self.variance_cents,
            "totals_by_method": self.method_totals(),
            "total_sales_cents": self.total_sales_cents,
            "total_expenses_cents": self.total_expenses_cents,
            "total_withdrawals_cents": self.total_withdrawals_cents,
            "total_orders": self.total_orders,
            "total_movements": self.total_movements,
            "totals_computed_at": to_utc_z(self.totals_computed_at),
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "opening_notes": self.opening_notes,
            "closing_notes": self.closing_notes,
            "version_id": self.version_id,
        }


class CashMovement(db.Model):
    """
    One immutable monetary event in a register session.

    amount_cents is always a positive magnitude; movement_type carries the
    direction:
    - sale: money in, per payment method
    - expense: money out, per payment method
    - cash_withdrawal: cash removed from the drawer
    - initial_cash: opening float (informational, already in opening_cash_cents)
    - adjustment: informational only

    APPEND-ONLY: rows are created live (at sale time) or retroactively by the
    backfill pass (source = "backfill"), never updated or deleted.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_session_registered", "register_session_id", "registered_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    register_session_id = db.Column(db.Integer, db.ForeignKey("register_sessions.id"), nullable=False, index=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, index=True)

    # Optional links to the originating business object
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True, index=True)
    expense_category = db.Column(db.String(64), nullable=True)

    operator_id = db.Column(db.Integer, nullable=True, index=True)
    registered_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    description = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    source = db.Column(db.String(16), nullable=False, default=SOURCE_LIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    register_session = db.relationship(
        "RegisterSession",
        backref=db.backref("movements", lazy=True),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_session_id": self.register_session_id,
            "facility_id": self.facility_id,
            "movement_type": self.movement_type,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "order_id": self.order_id,
            "booking_id": self.booking_id,
            "expense_category": self.expense_category,
            "operator_id": self.operator_id,
            "registered_at": to_utc_z(self.registered_at),
            "description": self.description,
            "notes": self.notes,
            "source": self.source,
        }


@event.listens_for(CashMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    from cashledger.validation import InvalidStateError
    raise InvalidStateError(f"Cash movement {target.id} is immutable")


@event.listens_for(CashMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    from cashledger.validation import InvalidStateError
    raise InvalidStateError(f"Cash movement {target.id} cannot be deleted")
