from datetime import timedelta

import pytest

from cashledger.models import Booking, CashMovement
from cashledger.services import aggregation_service, reconciliation_service, register_service
from cashledger.services.concurrency import ALL_FACILITIES, single_flight
from cashledger.validation import ConflictError


@pytest.fixture
def booking_gap(facility, make_session, make_booking_payment, add_movement, db_session, base_time):
    """
    Initial cash 1000, two declared cash payments of 500 for one booking,
    only the first recorded in the ledger.
    """
    session = make_session(facility, base_time, base_time + timedelta(hours=8), opening_cash_cents=1000)
    booking = Booking(facility_id=facility.id)
    db_session.add(booking)
    db_session.commit()

    make_booking_payment(facility, 500, base_time + timedelta(hours=1), booking=booking)
    make_booking_payment(facility, 500, base_time + timedelta(hours=2), booking=booking)
    add_movement(session, "sale", 500, "cash", registered_at=base_time + timedelta(hours=1), booking_id=booking.id)
    aggregation_service.recompute_session_totals(session.id)
    return session


def test_reconcile_recovers_missing_booking_payment(facility, booking_gap):
    before = register_service.get_session(booking_gap.id)
    assert before.total_sales_cents == 500
    assert before.expected_cash_cents == 1500

    report = reconciliation_service.reconcile(facility.id)

    assert report.movements_created == 1
    assert report.skipped_no_register == 0
    assert booking_gap.id in report.recomputed_session_ids

    after = register_service.get_session(booking_gap.id)
    assert after.total_sales_cents == 1000
    assert after.expected_cash_cents == 2000


def test_reconcile_twice_creates_nothing_the_second_time(facility, booking_gap, db_session):
    reconciliation_service.reconcile(facility.id)
    count = db_session.query(CashMovement).count()
    totals = aggregation_service.totals_from_session(register_service.get_session(booking_gap.id))

    report = reconciliation_service.reconcile(facility.id)

    assert report.movements_created == 0
    assert db_session.query(CashMovement).count() == count
    assert aggregation_service.totals_from_session(register_service.get_session(booking_gap.id)) == totals


def test_payment_before_any_session_is_skipped(facility, make_session, make_booking_payment, db_session, base_time):
    make_session(facility, base_time, base_time + timedelta(hours=4))
    make_booking_payment(facility, 500, base_time - timedelta(days=1))

    report = reconciliation_service.reconcile(facility.id)

    assert report.skipped_no_register == 1
    assert report.movements_created == 0
    assert db_session.query(CashMovement).count() == 0
    assert report.to_dict()["skipped"][0]["amount_cents"] == 500


def test_dry_run_reports_but_writes_nothing(facility, booking_gap, db_session):
    report = reconciliation_service.reconcile(facility.id, dry_run=True)

    assert report.dry_run is True
    assert report.movements_created == 1
    assert db_session.query(CashMovement).count() == 1
    assert register_service.get_session(booking_gap.id).total_sales_cents == 500


def test_failure_mid_pass_rolls_everything_back(facility, booking_gap, db_session, monkeypatch):
    def boom(session_id, *, commit=True):
        raise RuntimeError("aggregator exploded")

    monkeypatch.setattr(aggregation_service, "recompute_session_totals", boom)

    with pytest.raises(RuntimeError):
        reconciliation_service.reconcile(facility.id)

    # The movement inserted by the backfill step did not survive
    assert db_session.query(CashMovement).count() == 1
    assert register_service.get_session(booking_gap.id).total_sales_cents == 500


def test_touched_only_limits_recompute(facility, booking_gap, make_session, base_time):
    untouched = make_session(facility, base_time + timedelta(days=1), base_time + timedelta(days=1, hours=4))

    report = reconciliation_service.reconcile(facility.id, touched_only=True)

    assert report.recomputed_session_ids == [booking_gap.id]
    assert untouched.id not in report.recomputed_session_ids


def test_full_scope_recomputes_every_session_of_facility(facility, other_facility, booking_gap,
                                                         make_session, base_time):
    second = make_session(facility, base_time + timedelta(days=1), base_time + timedelta(days=1, hours=4))
    elsewhere = make_session(other_facility, base_time, base_time + timedelta(hours=4))

    report = reconciliation_service.reconcile(facility.id)

    assert report.recomputed_session_ids == sorted([booking_gap.id, second.id])
    assert elsewhere.id not in report.recomputed_session_ids


def test_all_facilities_scope(facility, other_facility, booking_gap, make_session, make_order_payment, base_time):
    elsewhere = make_session(other_facility, base_time, base_time + timedelta(hours=4))
    make_order_payment(other_facility, 300, base_time + timedelta(hours=1))

    report = reconciliation_service.reconcile()

    assert report.movements_created == 2
    assert set(report.recomputed_session_ids) == {booking_gap.id, elsewhere.id}
    assert report.to_dict()["scope"] == ALL_FACILITIES
    assert report.to_dict()["reversible"] is False


def test_single_flight_blocks_overlapping_scopes():
    with single_flight(1):
        with pytest.raises(ConflictError):
            with single_flight(1):
                pass
        with pytest.raises(ConflictError):
            with single_flight(ALL_FACILITIES):
                pass
        with single_flight(2):
            pass

    with single_flight(ALL_FACILITIES):
        with pytest.raises(ConflictError):
            with single_flight(3):
                pass

    # Released on exit
    with single_flight(1):
        pass


def test_bad_upstream_amounts_do_not_abort_the_pass(facility, make_session, make_booking_payment,
                                                    make_order_payment, db_session, base_time):
    session = make_session(facility, base_time, base_time + timedelta(hours=8))
    make_order_payment(facility, 800, base_time + timedelta(hours=1))
    make_order_payment(facility, -200, base_time + timedelta(hours=2))
    make_booking_payment(facility, 0, base_time + timedelta(hours=3))
    make_booking_payment(facility, 10_000_000_000, base_time + timedelta(hours=4))

    report = reconciliation_service.reconcile(facility.id)

    assert report.movements_created == 1
    assert report.skipped_invalid_amount == 3
    assert report.skipped_no_register == 0
    assert len(report.to_dict()["invalid"]) == 3
    # The valid gap was committed
    assert db_session.query(CashMovement).count() == 1
    assert register_service.get_session(session.id).total_sales_cents == 800
