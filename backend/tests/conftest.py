"""
Pytest fixtures for cashledger backend tests.

Provides test database setup, facility fixtures, historical session and
upstream payment builders, and the test client.
"""

from datetime import timedelta

import pytest
from cashledger import create_app
from cashledger.extensions import db
from cashledger.models import (
    Facility,
    Booking,
    BookingPayment,
    Order,
    OrderPayment,
    RegisterSession,
    CashMovement,
)
from cashledger.models.registers import SESSION_OPEN, SESSION_CLOSED, SOURCE_LIVE
from cashledger.models.payments import PAYMENT_TYPE_DECLARED
from cashledger.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Create CLI runner."""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def facility(db_session):
    """Create Facility A."""
    facility = Facility(name="Facility A - Downtown Courts", code="DT", is_active=True)
    db_session.add(facility)
    db_session.commit()
    return facility


@pytest.fixture(scope='function')
def other_facility(db_session):
    """Create Facility B."""
    facility = Facility(name="Facility B - Riverside Club", code="RS", is_active=True)
    db_session.add(facility)
    db_session.commit()
    return facility


@pytest.fixture(scope='function')
def base_time():
    """A fixed point comfortably in the past, on a whole minute."""
    return (utcnow() - timedelta(days=10)).replace(second=0, microsecond=0)


@pytest.fixture(scope='function')
def make_session(db_session):
    """
    Insert a session row directly, with an arbitrary historical window.

    Bypasses open_session() so tests can build closed shifts in the past.
    """
    def _make(facility, opened_at, closed_at=None, opening_cash_cents=0, counted_cash_cents=None):
        session = RegisterSession(
            facility_id=facility.id,
            status=SESSION_CLOSED if closed_at else SESSION_OPEN,
            opening_cash_cents=opening_cash_cents,
            expected_cash_cents=opening_cash_cents,
            counted_cash_cents=counted_cash_cents,
            opened_at=opened_at,
            closed_at=closed_at,
        )
        db_session.add(session)
        db_session.commit()
        return session
    return _make


@pytest.fixture(scope='function')
def add_movement(db_session):
    """Insert a movement row directly (no window or state checks)."""
    def _add(session, movement_type, amount_cents, payment_method="cash", registered_at=None, **kwargs):
        movement = CashMovement(
            register_session_id=session.id,
            facility_id=session.facility_id,
            movement_type=movement_type,
            amount_cents=amount_cents,
            payment_method=payment_method,
            registered_at=registered_at or session.opened_at,
            source=kwargs.pop("source", SOURCE_LIVE),
            **kwargs,
        )
        db_session.add(movement)
        db_session.commit()
        return movement
    return _add


@pytest.fixture(scope='function')
def make_booking_payment(db_session):
    """Create a declared booking payment (and its booking if not given)."""
    def _make(facility, amount_cents, paid_at, method="cash", booking=None,
              registered_by=7, payment_type=PAYMENT_TYPE_DECLARED):
        if booking is None:
            booking = Booking(facility_id=facility.id, client_name="Test Client")
            db_session.add(booking)
            db_session.flush()
        payment = BookingPayment(
            booking_id=booking.id,
            amount_cents=amount_cents,
            method=method,
            payment_type=payment_type,
            registered_by=registered_by,
            paid_at=paid_at,
        )
        db_session.add(payment)
        db_session.commit()
        return payment
    return _make


@pytest.fixture(scope='function')
def make_order_payment(db_session):
    """Create an order payment (and its order if not given)."""
    def _make(facility, amount_cents, created_at, method="cash", order=None, registered_by=9, booking=None):
        if order is None:
            count = db_session.query(Order).count()
            order = Order(
                facility_id=facility.id,
                order_number=f"ORD-{count + 1:05d}",
                booking_id=booking.id if booking else None,
            )
            db_session.add(order)
            db_session.flush()
        payment = OrderPayment(
            order_id=order.id,
            amount_cents=amount_cents,
            payment_method=method,
            registered_by=registered_by,
            created_at=created_at,
        )
        db_session.add(payment)
        db_session.commit()
        return payment
    return _make
