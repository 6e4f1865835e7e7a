"""Register session lifecycle: open, close, window lookups, history."""

from datetime import timedelta

import pytest

from cashledger.models import CashMovement
from cashledger.models.registers import SESSION_OPEN, SESSION_CLOSED, MOVEMENT_INITIAL_CASH
from cashledger.services import register_service
from cashledger.time_utils import utcnow
from cashledger.validation import ConflictError, InvalidStateError, NotFoundError, ValidationError


def test_open_session_sets_expected_to_opening_cash(facility):
    session = register_service.open_session(facility.id, operator_id=3, opening_cash_cents=10000)

    assert session.status == SESSION_OPEN
    assert session.opening_cash_cents == 10000
    assert session.expected_cash_cents == 10000
    assert session.closed_at is None
    assert session.totals_computed_at is not None


def test_open_session_records_initial_cash_movement(facility, db_session):
    session = register_service.open_session(facility.id, operator_id=3, opening_cash_cents=5000)

    movements = db_session.query(CashMovement).filter_by(register_session_id=session.id).all()
    assert len(movements) == 1
    assert movements[0].movement_type == MOVEMENT_INITIAL_CASH
    assert movements[0].amount_cents == 5000
    # The float is informational; expected cash is not doubled
    assert session.expected_cash_cents == 5000
    assert session.total_movements == 1


def test_open_session_with_zero_float_has_no_movement(facility, db_session):
    session = register_service.open_session(facility.id, operator_id=None, opening_cash_cents=0)

    assert db_session.query(CashMovement).filter_by(register_session_id=session.id).count() == 0
    assert session.expected_cash_cents == 0


def test_second_open_session_conflicts(facility):
    register_service.open_session(facility.id, operator_id=1, opening_cash_cents=0)

    with pytest.raises(ConflictError):
        register_service.open_session(facility.id, operator_id=2, opening_cash_cents=0)


def test_open_sessions_are_per_facility(facility, other_facility):
    a = register_service.open_session(facility.id, operator_id=1, opening_cash_cents=0)
    b = register_service.open_session(other_facility.id, operator_id=1, opening_cash_cents=0)

    assert a.id != b.id


def test_open_session_rejects_negative_float(facility):
    with pytest.raises(ValidationError):
        register_service.open_session(facility.id, operator_id=1, opening_cash_cents=-1)


def test_open_session_unknown_facility(db_session):
    with pytest.raises(NotFoundError):
        register_service.open_session(9999, operator_id=1, opening_cash_cents=0)


def test_open_session_inactive_facility(facility, db_session):
    facility.is_active = False
    db_session.commit()

    with pytest.raises(NotFoundError):
        register_service.open_session(facility.id, operator_id=1, opening_cash_cents=0)


def test_close_session_computes_variance(facility, add_movement):
    session = register_service.open_session(facility.id, operator_id=1, opening_cash_cents=1000)
    add_movement(session, "sale", 2500, "cash", registered_at=session.opened_at)

    closed = register_service.close_session(session.id, counted_cash_cents=3400, notes="short")

    assert closed.status == SESSION_CLOSED
    assert closed.closed_at is not None
    assert closed.closed_at >= closed.opened_at
    assert closed.expected_cash_cents == 3500
    assert closed.counted_cash_cents == 3400
    assert closed.variance_cents == -100
    assert closed.closing_notes == "short"


def test_close_session_twice_is_invalid_state(facility):
    session = register_service.open_session(facility.id, operator_id=1, opening_cash_cents=0)
    register_service.close_session(session.id, counted_cash_cents=0)

    with pytest.raises(InvalidStateError):
        register_service.close_session(session.id, counted_cash_cents=0)


def test_close_unknown_session(db_session):
    with pytest.raises(NotFoundError):
        register_service.close_session(4242, counted_cash_cents=0)


def test_close_rejects_negative_count(facility):
    session = register_service.open_session(facility.id, operator_id=1, opening_cash_cents=0)

    with pytest.raises(ValidationError):
        register_service.close_session(session.id, counted_cash_cents=-5)


def test_facility_can_reopen_after_close(facility):
    first = register_service.open_session(facility.id, operator_id=1, opening_cash_cents=0)
    register_service.close_session(first.id, counted_cash_cents=0)

    second = register_service.open_session(facility.id, operator_id=1, opening_cash_cents=0)
    assert second.id != first.id
    assert register_service.get_current_session(facility.id).id == second.id


def test_find_open_session_at_uses_half_open_window(facility, make_session, base_time):
    morning = make_session(facility, base_time, base_time + timedelta(hours=4))
    evening = make_session(facility, base_time + timedelta(hours=4), base_time + timedelta(hours=8))

    assert register_service.find_open_session_at(facility.id, base_time).id == morning.id
    assert register_service.find_open_session_at(facility.id, base_time + timedelta(hours=3, minutes=59)).id == morning.id
    # The closing instant belongs to the next shift
    assert register_service.find_open_session_at(facility.id, base_time + timedelta(hours=4)).id == evening.id
    assert register_service.find_open_session_at(facility.id, base_time + timedelta(hours=8)) is None
    assert register_service.find_open_session_at(facility.id, base_time - timedelta(seconds=1)) is None


def test_find_open_session_at_ignores_other_facilities(facility, other_facility, make_session, base_time):
    make_session(other_facility, base_time, base_time + timedelta(hours=4))

    assert register_service.find_open_session_at(facility.id, base_time + timedelta(hours=1)) is None


def test_find_open_session_at_open_ended(facility, make_session, base_time):
    session = make_session(facility, base_time)

    assert register_service.find_open_session_at(facility.id, utcnow()).id == session.id


def test_get_current_session_none_when_closed(facility, make_session, base_time):
    make_session(facility, base_time, base_time + timedelta(hours=4))

    assert register_service.get_current_session(facility.id) is None


def test_list_sessions_filters_and_orders(facility, other_facility, make_session, base_time):
    old = make_session(facility, base_time, base_time + timedelta(hours=2))
    new = make_session(facility, base_time + timedelta(days=1), base_time + timedelta(days=1, hours=2))
    make_session(other_facility, base_time, base_time + timedelta(hours=2))
    current = make_session(facility, base_time + timedelta(days=2))

    items, total = register_service.list_sessions(facility_id=facility.id)
    assert total == 3
    assert [s.id for s in items] == [current.id, new.id, old.id]

    items, total = register_service.list_sessions(facility_id=facility.id, status="closed")
    assert total == 2

    items, total = register_service.list_sessions(
        facility_id=facility.id,
        start=base_time + timedelta(hours=12),
        end=base_time + timedelta(days=1, hours=12),
    )
    assert [s.id for s in items] == [new.id]

    items, total = register_service.list_sessions(facility_id=facility.id, page=2, limit=2)
    assert total == 3
    assert [s.id for s in items] == [old.id]


def test_list_sessions_rejects_unknown_status(db_session):
    with pytest.raises(ValidationError):
        register_service.list_sessions(status="PAUSED")
