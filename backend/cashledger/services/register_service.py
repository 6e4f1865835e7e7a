"""
Cash Register Session Service

WHY: A session is one facility's till for one shift. Staff open it with a
declared float, every sale/expense/withdrawal is attached to it, and it is
closed with a counted cash amount.

DESIGN PRINCIPLES:
- One OPEN session per facility at a time (service check + partial unique index)
- Sessions are immutable once closed (only the backfill path may still attach
  historical movements inside the closed window)
- "Current session" is a window lookup at now, the same lookup the backfill
  pass uses for historical timestamps
- Totals are never trusted as counters; close recomputes them from the ledger
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Facility, RegisterSession
from ..models.registers import SESSION_OPEN, SESSION_CLOSED, MOVEMENT_INITIAL_CASH, METHOD_CASH
from cashledger.time_utils import utcnow, to_utc_naive
from cashledger.validation import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    coerce_datetime,
    require_non_negative_cents,
)
from .concurrency import lock_for_update


# =============================================================================
# LOOKUPS
# =============================================================================

def get_facility(facility_id: int) -> Facility:
    facility = db.session.get(Facility, facility_id)
    if not facility:
        raise NotFoundError(f"Facility {facility_id} not found")
    return facility


def get_session(session_id: int) -> RegisterSession:
    session = db.session.get(RegisterSession, session_id)
    if not session:
        raise NotFoundError(f"Session {session_id} not found")
    return session


def find_open_session_at(facility_id: int, at: datetime) -> RegisterSession | None:
    """
    Session of `facility_id` whose [opened_at, closed_at) window contains `at`.

    Still-open sessions are open-ended. If several windows match (only possible
    with inconsistent historical data) the latest opened wins, then the highest
    id. Returns None rather than guessing when nothing matches.
    """
    return db.session.query(RegisterSession).filter(
        RegisterSession.facility_id == facility_id,
        RegisterSession.opened_at <= at,
        or_(RegisterSession.closed_at.is_(None), RegisterSession.closed_at > at),
    ).order_by(
        RegisterSession.opened_at.desc(),
        RegisterSession.id.desc(),
    ).first()


def get_current_session(facility_id: int) -> RegisterSession | None:
    """Get the currently open session for a facility, if any."""
    return find_open_session_at(facility_id, utcnow())


def _find_open_session(facility_id: int) -> RegisterSession | None:
    return db.session.query(RegisterSession).filter_by(
        facility_id=facility_id,
        status=SESSION_OPEN,
    ).first()


# =============================================================================
# LIFECYCLE
# =============================================================================

def open_session(
    facility_id: int,
    operator_id: int | None,
    opening_cash_cents,
    opening_notes: str | None = None,
) -> RegisterSession:
    """
    Open a new cash register session for a facility.

    A positive float is also written to the ledger as an initial_cash
    movement (informational: aggregation starts from opening_cash_cents).

    Raises:
        NotFoundError: facility missing or inactive
        ValidationError: negative opening cash
        ConflictError: facility already has an open session
    """
    opening_cash_cents = require_non_negative_cents(opening_cash_cents, "opening_cash_cents")

    facility = get_facility(facility_id)
    if not facility.is_active:
        raise NotFoundError(f"Facility {facility_id} is not active")

    existing_open = _find_open_session(facility_id)
    if existing_open:
        raise ConflictError(f"Facility already has an open cash register (session {existing_open.id})")

    now = utcnow()
    session = RegisterSession(
        facility_id=facility_id,
        operator_id=operator_id,
        status=SESSION_OPEN,
        opening_cash_cents=opening_cash_cents,
        expected_cash_cents=opening_cash_cents,  # Initially same as opening cash
        opened_at=now,
        opening_notes=opening_notes,
    )

    try:
        db.session.add(session)
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Facility already has an open cash register")

    from .movement_service import record_movement

    if opening_cash_cents > 0:
        record_movement(
            session.id,
            MOVEMENT_INITIAL_CASH,
            opening_cash_cents,
            METHOD_CASH,
            operator_id=operator_id,
            description="Initial cash",
            registered_at=now,
            commit=False,
        )
    else:
        from .aggregation_service import recompute_session_totals
        recompute_session_totals(session.id, commit=False)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Facility already has an open cash register")

    current_app.logger.info(
        "Opened cash register session %s for facility %s (opening cash %s)",
        session.id, facility_id, opening_cash_cents,
    )
    return session


def close_session(
    session_id: int,
    counted_cash_cents,
    notes: str | None = None,
) -> RegisterSession:
    """
    Close a session and calculate the cash variance.

    Totals are rebuilt from the ledger first, so the variance is always
    counted - expected for the complete movement history.

    IMMUTABLE: Once closed, the session cannot be reopened.
    """
    counted_cash_cents = require_non_negative_cents(counted_cash_cents, "counted_cash_cents")

    session = lock_for_update(db.session.query(RegisterSession).filter_by(id=session_id)).first()
    if not session:
        raise NotFoundError(f"Session {session_id} not found")

    if session.status != SESSION_OPEN:
        raise InvalidStateError(f"Session {session_id} is already closed")

    from .aggregation_service import recompute_session_totals
    totals = recompute_session_totals(session.id, commit=False)

    session.status = SESSION_CLOSED
    session.closed_at = max(utcnow(), to_utc_naive(session.opened_at))
    session.counted_cash_cents = counted_cash_cents
    session.variance_cents = counted_cash_cents - totals.expected_cash_cents
    session.closing_notes = notes

    db.session.commit()

    current_app.logger.info(
        "Closed cash register session %s (expected %s, counted %s, variance %s)",
        session.id, session.expected_cash_cents, counted_cash_cents, session.variance_cents,
    )
    return session


# =============================================================================
# HISTORY
# =============================================================================

def list_sessions(
    *,
    facility_id: int | None = None,
    operator_id: int | None = None,
    status: str | None = None,
    start=None,
    end=None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[RegisterSession], int]:
    """
    Session history, newest first.

    start/end filter on opened_at (inclusive). Returns (page_items, total).
    """
    query = db.session.query(RegisterSession)

    if facility_id is not None:
        query = query.filter(RegisterSession.facility_id == facility_id)
    if operator_id is not None:
        query = query.filter(RegisterSession.operator_id == operator_id)
    if status:
        status = status.upper()
        if status not in (SESSION_OPEN, SESSION_CLOSED):
            raise ValidationError("status must be OPEN or CLOSED")
        query = query.filter(RegisterSession.status == status)

    start_dt = coerce_datetime(start, "start")
    end_dt = coerce_datetime(end, "end")
    if start_dt is not None:
        query = query.filter(RegisterSession.opened_at >= start_dt)
    if end_dt is not None:
        query = query.filter(RegisterSession.opened_at <= end_dt)

    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")

    total = query.count()
    items = query.order_by(
        RegisterSession.opened_at.desc(),
        RegisterSession.id.desc(),
    ).offset((page - 1) * limit).limit(limit).all()
    return items, total
