# Overview: Detects upstream payments that never reached the cash ledger and recreates their movements.

"""
Backfill Matcher

Two passes, run in order, both producing `sale` movements:

(a) Declared booking payments. For each (booking, method) pair, the declared
    payments are compared with the sale movements already linked to that
    booking and method. Only pairs with more declared payments than recorded
    movements are examined. Matching is a multiset difference over amounts:
    walking the declared amounts oldest first, each one consumes the first
    recorded movement with exactly the same amount; declared payments left
    without a partner are missing. Amounts are fungible, so the
    first-available-match rule is kept as-is: it decides which historical
    operator/timestamp each recovered movement inherits.

(b) Order payments. Each order payment maps 1:1 to a prospective movement, so
    a payment is missing when no sale movement with the same order, amount
    and method existed when the pass started.

Every missing payment is attributed to the session whose window contains the
payment's own timestamp. Payments with no such session are skipped and
reported; money is never placed in a session that was not open at the time.
Payments whose amount is not a positive cents value are skipped and reported
the same way.

Nothing here commits. The reconciliation service owns the unit of work.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Booking, CashMovement
from ..models.registers import MOVEMENT_SALE, SOURCE_BACKFILL
from cashledger.validation import (
    InvalidPaymentRecordError,
    UnresolvableAttributionError,
    ValidationError,
    normalize_payment_method,
    require_positive_cents,
)
from . import payment_sources
from .payment_sources import PaymentRecord


RECOVERED_BOOKING_DESCRIPTION = "Recovered booking payment"
RECOVERED_ORDER_DESCRIPTION = "Recovered order payment - Order #{order_number}"


@dataclass
class BackfillResult:
    created_movement_ids: list = field(default_factory=list)
    skipped: list = field(default_factory=list)  # UnresolvableAttributionError instances
    invalid: list = field(default_factory=list)  # InvalidPaymentRecordError instances
    touched_session_ids: set = field(default_factory=set)

    @property
    def created_count(self) -> int:
        return len(self.created_movement_ids)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def invalid_count(self) -> int:
        return len(self.invalid)


# =============================================================================
# MATCHING
# =============================================================================

def missing_by_amount(declared: list[PaymentRecord], recorded_amounts: list[int]) -> list[PaymentRecord]:
    """
    Multiset difference of declared payments over already-recorded amounts.

    declared must be in chronological order. Each declared amount removes the
    first equal entry of recorded_amounts; the declared records that find no
    partner are returned, still in chronological order.
    """
    available = list(recorded_amounts)
    missing = []
    for record in declared:
        try:
            available.remove(record.amount_cents)
        except ValueError:
            missing.append(record)
    return missing


def _recorded_booking_amounts(facility_id: int | None) -> dict:
    """(booking_id, method) -> recorded sale amounts in registered_at order."""
    query = db.session.query(
        CashMovement.booking_id,
        CashMovement.payment_method,
        CashMovement.amount_cents,
    ).filter(
        CashMovement.movement_type == MOVEMENT_SALE,
        CashMovement.booking_id.isnot(None),
    )
    if facility_id is not None:
        query = query.join(Booking, Booking.id == CashMovement.booking_id).filter(
            Booking.facility_id == facility_id
        )

    recorded: dict = {}
    for booking_id, method, amount_cents in query.order_by(
        CashMovement.registered_at.asc(), CashMovement.id.asc()
    ):
        key = (booking_id, normalize_payment_method(method, strict=False))
        recorded.setdefault(key, []).append(amount_cents)
    return recorded


def find_missing_booking_payments(facility_id: int | None = None) -> list[PaymentRecord]:
    """Pass (a): declared booking payments without a matching sale movement."""
    groups: "OrderedDict[tuple, list[PaymentRecord]]" = OrderedDict()
    for record in payment_sources.declared_booking_payments(facility_id):
        groups.setdefault((record.object_id, record.method), []).append(record)

    recorded = _recorded_booking_amounts(facility_id)

    missing = []
    for key, declared in groups.items():
        recorded_amounts = recorded.get(key, [])
        if len(declared) <= len(recorded_amounts):
            continue
        missing.extend(missing_by_amount(declared, recorded_amounts))
    return missing


def find_missing_order_payments(facility_id: int | None = None) -> list[PaymentRecord]:
    """Pass (b): order payments with no sale movement for the same order, amount and method."""
    records = payment_sources.order_payments(facility_id)
    if not records:
        return []

    existing = {
        (order_id, amount_cents, normalize_payment_method(method, strict=False))
        for order_id, amount_cents, method in db.session.query(
            CashMovement.order_id,
            CashMovement.amount_cents,
            CashMovement.payment_method,
        ).filter(
            CashMovement.movement_type == MOVEMENT_SALE,
            CashMovement.order_id.isnot(None),
        )
    }
    return [
        record for record in records
        if (record.object_id, record.amount_cents, record.method) not in existing
    ]


# =============================================================================
# ATTRIBUTION + SYNTHESIS
# =============================================================================

def resolve_session(record: PaymentRecord):
    """
    Session that was open at the payment's own timestamp.

    Raises:
        UnresolvableAttributionError: no session window contains the timestamp
    """
    from .register_service import find_open_session_at

    session = find_open_session_at(record.facility_id, record.occurred_at)
    if session is None:
        raise UnresolvableAttributionError(record)
    return session


def _describe(record: PaymentRecord) -> str:
    if record.source == payment_sources.SOURCE_ORDER:
        return RECOVERED_ORDER_DESCRIPTION.format(order_number=record.order_number or record.object_id)
    return RECOVERED_BOOKING_DESCRIPTION


def check_amount(record: PaymentRecord) -> None:
    """
    Raises:
        InvalidPaymentRecordError: amount is not a positive cents value within limits
    """
    try:
        require_positive_cents(record.amount_cents)
    except ValidationError as exc:
        raise InvalidPaymentRecordError(record, str(exc))


def restore_movements(records: list[PaymentRecord], result: BackfillResult) -> BackfillResult:
    """Create one backfilled sale movement per record that can be attributed."""
    from .movement_service import record_movement

    for record in records:
        try:
            check_amount(record)
        except InvalidPaymentRecordError as exc:
            result.invalid.append(exc)
            current_app.logger.warning(
                "Skipped %s payment %s (%s %s, %s): %s",
                record.source, record.id, record.amount_cents, record.method, record.occurred_at, exc,
            )
            continue

        try:
            session = resolve_session(record)
        except UnresolvableAttributionError as exc:
            result.skipped.append(exc)
            current_app.logger.warning(
                "Skipped %s payment %s (%s %s, %s): no open register",
                record.source, record.id, record.amount_cents, record.method, record.occurred_at,
            )
            continue

        is_order = record.source == payment_sources.SOURCE_ORDER
        movement = record_movement(
            session.id,
            MOVEMENT_SALE,
            record.amount_cents,
            record.method,
            operator_id=record.registered_by,
            order_id=record.object_id if is_order else None,
            booking_id=record.booking_id,
            description=_describe(record),
            registered_at=record.occurred_at,
            allow_closed=True,
            source=SOURCE_BACKFILL,
            recompute=False,
            commit=False,
        )
        result.created_movement_ids.append(movement.id)
        result.touched_session_ids.add(session.id)
        current_app.logger.info(
            "Recovered %s payment %s: %s %s -> session %s (movement %s)",
            record.source, record.id, record.amount_cents, record.method, session.id, movement.id,
        )

    return result


def backfill_missing_movements(facility_id: int | None = None) -> BackfillResult:
    """
    Run pass (a) then pass (b) and synthesize the missing movements.

    Pass (b) is evaluated after pass (a) has inserted its movements.
    """
    result = BackfillResult()

    booking_gaps = find_missing_booking_payments(facility_id)
    current_app.logger.info("Found %s booking payments without a cash movement", len(booking_gaps))
    restore_movements(booking_gaps, result)

    order_gaps = find_missing_order_payments(facility_id)
    current_app.logger.info("Found %s order payments without a cash movement", len(order_gaps))
    restore_movements(order_gaps, result)

    return result
