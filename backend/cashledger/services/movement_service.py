# Overview: Service-layer operations for the cash movement ledger; append-only writes and ordered reads.

"""
Cash Movement Ledger

Invariants (authoritative):
- Append-only: movements are created, never updated or deleted.
- amount_cents is a positive magnitude; movement_type encodes direction.
- Every movement belongs to exactly one session of the same facility, and its
  registered_at falls inside that session's [opened_at, closed_at) window.
- Live recording requires an OPEN session. Only the backfill path
  (allow_closed=True) may attach a movement to a closed session.
- list_movements() is the only read path used for totals.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import CashMovement, RegisterSession
from ..models.registers import MOVEMENT_EXPENSE, SOURCE_LIVE, SOURCE_BACKFILL
from cashledger.time_utils import utcnow, to_utc_z
from cashledger.validation import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
    coerce_datetime,
    normalize_movement_kind,
    normalize_payment_method,
    require_positive_cents,
)
from .concurrency import lock_for_update


def record_movement(
    session_id: int,
    kind: str,
    amount_cents,
    payment_method: str,
    *,
    operator_id: int | None = None,
    order_id: int | None = None,
    booking_id: int | None = None,
    expense_category: str | None = None,
    description: str | None = None,
    notes: str | None = None,
    registered_at=None,
    allow_closed: bool = False,
    source: str = SOURCE_LIVE,
    recompute: bool = True,
    commit: bool = True,
) -> CashMovement:
    """
    Append one movement to a session's ledger.

    Args:
        session_id: Session the movement belongs to
        kind: sale, expense, initial_cash, cash_withdrawal, adjustment
        amount_cents: Positive magnitude in cents
        payment_method: cash, card, transfer, credit_card, debit_card, mobile_wallet, other
        registered_at: Business time (defaults to now); must fall in the session window
        allow_closed: Backfill path only; permits a CLOSED session
        recompute: Rebuild the session totals from the ledger after inserting
        commit: False when the caller owns the unit of work

    Raises:
        ValidationError: bad kind/method/amount, or registered_at outside the window
        InvalidStateError: session is closed and allow_closed is False
        NotFoundError: session does not exist
    """
    kind = normalize_movement_kind(kind)
    payment_method = normalize_payment_method(payment_method)
    amount_cents = require_positive_cents(amount_cents)
    if source not in (SOURCE_LIVE, SOURCE_BACKFILL):
        raise ValidationError(f"Invalid movement source: {source}")
    if expense_category and kind != MOVEMENT_EXPENSE:
        raise ValidationError("expense_category is only valid for expense movements")

    session = lock_for_update(db.session.query(RegisterSession).filter_by(id=session_id)).first()
    if not session:
        raise NotFoundError(f"Session {session_id} not found")

    if not session.is_open and not allow_closed:
        raise InvalidStateError(f"Session {session_id} is closed; movements can no longer be recorded")

    registered_at = coerce_datetime(registered_at, "registered_at") or utcnow()
    if not session.covers(registered_at):
        raise ValidationError(
            f"registered_at {to_utc_z(registered_at)} is outside session {session_id} window"
        )

    movement = CashMovement(
        register_session_id=session.id,
        facility_id=session.facility_id,
        movement_type=kind,
        amount_cents=amount_cents,
        payment_method=payment_method,
        order_id=order_id,
        booking_id=booking_id,
        expense_category=expense_category,
        operator_id=operator_id,
        registered_at=registered_at,
        description=description,
        notes=notes,
        source=source,
    )
    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing

    if recompute:
        from .aggregation_service import recompute_session_totals
        recompute_session_totals(session.id, commit=False)

    if commit:
        db.session.commit()

    return movement


def record_for_facility(facility_id: int, kind: str, amount_cents, payment_method: str, **kwargs) -> CashMovement:
    """
    Live path: record on whatever session is currently open for the facility.

    Raises:
        InvalidStateError: the facility has no open cash register
    """
    from .register_service import get_current_session

    session = get_current_session(facility_id)
    if not session:
        raise InvalidStateError(f"Facility {facility_id} has no open cash register")
    return record_movement(session.id, kind, amount_cents, payment_method, **kwargs)


def list_movements(session_id: int) -> list[CashMovement]:
    """
    All movements of a session in business-time order.

    Ordered by registered_at, then id, so backfilled rows inserted late still
    aggregate at their true time. The returned list can be iterated any
    number of times.
    """
    return db.session.query(CashMovement).filter_by(
        register_session_id=session_id
    ).order_by(
        CashMovement.registered_at.asc(),
        CashMovement.id.asc(),
    ).all()


def search_movements(
    *,
    session_id: int | None = None,
    facility_id: int | None = None,
    kind: str | None = None,
    payment_method: str | None = None,
    start=None,
    end=None,
    page: int = 1,
    limit: int = 100,
) -> tuple[list[CashMovement], int]:
    """Filtered movement listing, newest first. Returns (page_items, total)."""
    if session_id is None and facility_id is None:
        raise ValidationError("session_id or facility_id is required")

    query = db.session.query(CashMovement)

    if session_id is not None:
        query = query.filter(CashMovement.register_session_id == session_id)
    if facility_id is not None:
        query = query.filter(CashMovement.facility_id == facility_id)
    if kind:
        query = query.filter(CashMovement.movement_type == normalize_movement_kind(kind))
    if payment_method:
        query = query.filter(CashMovement.payment_method == normalize_payment_method(payment_method))

    start_dt = coerce_datetime(start, "start")
    end_dt = coerce_datetime(end, "end")
    if start_dt is not None:
        query = query.filter(CashMovement.registered_at >= start_dt)
    if end_dt is not None:
        query = query.filter(CashMovement.registered_at <= end_dt)

    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")

    total = query.count()
    items = query.order_by(
        CashMovement.registered_at.desc(),
        CashMovement.id.desc(),
    ).offset((page - 1) * limit).limit(limit).all()

    current_app.logger.debug("Movement search returned %s of %s rows", len(items), total)
    return items, total
