# Overview: Read-only payment feeds used as reconciliation sources.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from ..models import Booking, BookingPayment, Order, OrderPayment
from ..models.payments import PAYMENT_TYPE_DECLARED
from cashledger.validation import normalize_payment_method


SOURCE_BOOKING = "booking"
SOURCE_ORDER = "order"


@dataclass(frozen=True)
class PaymentRecord:
    """
    One upstream payment event, normalized for matching.

    object_id is the booking id (source="booking") or the order id
    (source="order"). method is already mapped onto the ledger vocabulary.
    """
    id: int
    source: str
    object_id: int
    facility_id: int
    amount_cents: int
    method: str
    occurred_at: datetime
    registered_by: int | None
    classification: str | None = None
    booking_id: int | None = None
    order_number: str | None = None


def declared_booking_payments(facility_id: int | None = None) -> list[PaymentRecord]:
    """
    Booking payments taken at the venue by identified staff, oldest first.

    Deposits and payments without a registering user never went through the
    till and are left out.
    """
    query = db.session.query(BookingPayment, Booking.facility_id).join(
        Booking, Booking.id == BookingPayment.booking_id
    ).filter(
        BookingPayment.payment_type == PAYMENT_TYPE_DECLARED,
        BookingPayment.registered_by.isnot(None),
    )
    if facility_id is not None:
        query = query.filter(Booking.facility_id == facility_id)

    rows = query.order_by(BookingPayment.paid_at.asc(), BookingPayment.id.asc()).all()
    return [
        PaymentRecord(
            id=payment.id,
            source=SOURCE_BOOKING,
            object_id=payment.booking_id,
            facility_id=owner_facility_id,
            amount_cents=payment.amount_cents,
            method=normalize_payment_method(payment.method, strict=False),
            occurred_at=payment.paid_at,
            registered_by=payment.registered_by,
            classification=payment.payment_type,
            booking_id=payment.booking_id,
        )
        for payment, owner_facility_id in rows
    ]


def order_payments(facility_id: int | None = None) -> list[PaymentRecord]:
    """All order payments, oldest first."""
    query = db.session.query(OrderPayment, Order).join(
        Order, Order.id == OrderPayment.order_id
    )
    if facility_id is not None:
        query = query.filter(Order.facility_id == facility_id)

    rows = query.order_by(OrderPayment.created_at.asc(), OrderPayment.id.asc()).all()
    return [
        PaymentRecord(
            id=payment.id,
            source=SOURCE_ORDER,
            object_id=payment.order_id,
            facility_id=order.facility_id,
            amount_cents=payment.amount_cents,
            method=normalize_payment_method(payment.payment_method, strict=False),
            occurred_at=payment.created_at,
            registered_by=payment.registered_by,
            booking_id=order.booking_id,
            order_number=order.order_number,
        )
        for payment, order in rows
    ]
