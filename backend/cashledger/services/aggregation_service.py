# Overview: Session totals, rebuilt from the movement ledger on every call.

"""
Aggregation

The session row's totals are a cache. compute_totals() is a pure function of
(opening cash, ordered movements); recompute_session_totals() reads the ledger
through movement_service.list_movements() and writes the result back in one
update. Running it twice on an unchanged ledger yields identical totals.

Floors: per-method buckets and expected cash never go below zero, even when
upstream data records more going out than came in. total_expenses_cents and
total_withdrawals_cents keep the full magnitudes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ..extensions import db
from ..models.registers import (
    MOVEMENT_SALE,
    MOVEMENT_EXPENSE,
    MOVEMENT_CASH_WITHDRAWAL,
    METHOD_CASH,
    PAYMENT_METHODS,
)
from cashledger.time_utils import utcnow
from cashledger.validation import normalize_payment_method


@dataclass(frozen=True)
class SessionTotals:
    expected_cash_cents: int
    totals_by_method: dict = field(default_factory=dict)
    total_sales_cents: int = 0
    total_expenses_cents: int = 0
    total_withdrawals_cents: int = 0
    total_orders: int = 0
    total_movements: int = 0

    def to_dict(self) -> dict:
        return {
            "expected_cash_cents": self.expected_cash_cents,
            "totals_by_method": dict(self.totals_by_method),
            "total_sales_cents": self.total_sales_cents,
            "total_expenses_cents": self.total_expenses_cents,
            "total_withdrawals_cents": self.total_withdrawals_cents,
            "total_orders": self.total_orders,
            "total_movements": self.total_movements,
        }


def compute_totals(opening_cash_cents: int, movements: Iterable) -> SessionTotals:
    """
    Fold an ordered movement sequence into session totals.

    movements must already be in (registered_at, id) order; anything with
    movement_type, amount_cents, payment_method and order_id attributes works.
    initial_cash and adjustment movements only count towards total_movements.
    """
    buckets = {method: 0 for method in PAYMENT_METHODS}
    expected_cash = opening_cash_cents or 0
    total_sales = 0
    total_expenses = 0
    total_withdrawals = 0
    seen_orders = set()
    count = 0

    for movement in movements:
        count += 1
        amount = abs(movement.amount_cents or 0)
        method = normalize_payment_method(movement.payment_method, strict=False)
        is_cash = method == METHOD_CASH

        if movement.movement_type == MOVEMENT_SALE:
            buckets[method] += amount
            total_sales += amount
            if is_cash:
                expected_cash += amount
            if movement.order_id is not None and movement.order_id not in seen_orders:
                seen_orders.add(movement.order_id)

        elif movement.movement_type == MOVEMENT_EXPENSE:
            buckets[method] = max(0, buckets[method] - amount)
            total_expenses += amount
            if is_cash:
                expected_cash = max(0, expected_cash - amount)

        elif movement.movement_type == MOVEMENT_CASH_WITHDRAWAL:
            total_withdrawals += amount
            if is_cash:
                expected_cash = max(0, expected_cash - amount)

    return SessionTotals(
        expected_cash_cents=expected_cash,
        totals_by_method=buckets,
        total_sales_cents=total_sales,
        total_expenses_cents=total_expenses,
        total_withdrawals_cents=total_withdrawals,
        total_orders=len(seen_orders),
        total_movements=count,
    )


def apply_totals(session, totals: SessionTotals) -> None:
    """Write every derived column of the session from `totals`."""
    for method in PAYMENT_METHODS:
        setattr(session, f"total_{method}_cents", totals.totals_by_method.get(method, 0))
    session.expected_cash_cents = totals.expected_cash_cents
    session.total_sales_cents = totals.total_sales_cents
    session.total_expenses_cents = totals.total_expenses_cents
    session.total_withdrawals_cents = totals.total_withdrawals_cents
    session.total_orders = totals.total_orders
    session.total_movements = totals.total_movements
    if session.counted_cash_cents is not None:
        session.variance_cents = session.counted_cash_cents - totals.expected_cash_cents


def totals_from_session(session) -> SessionTotals:
    """Snapshot of the totals currently stored on the session row."""
    return SessionTotals(
        expected_cash_cents=session.expected_cash_cents,
        totals_by_method=session.method_totals(),
        total_sales_cents=session.total_sales_cents,
        total_expenses_cents=session.total_expenses_cents,
        total_withdrawals_cents=session.total_withdrawals_cents,
        total_orders=session.total_orders,
        total_movements=session.total_movements,
    )


def recompute_session_totals(session_id: int, *, commit: bool = True) -> SessionTotals:
    """
    Rebuild a session's totals from its ledger and store them.

    Raises:
        NotFoundError: session does not exist
    """
    from .register_service import get_session
    from .movement_service import list_movements

    session = get_session(session_id)
    totals = compute_totals(session.opening_cash_cents, list_movements(session.id))

    if totals != totals_from_session(session) or session.totals_computed_at is None:
        apply_totals(session, totals)
        session.totals_computed_at = utcnow()
    elif session.counted_cash_cents is not None:
        session.variance_cents = session.counted_cash_cents - totals.expected_cash_cents

    if commit:
        db.session.commit()
    else:
        db.session.flush()

    return totals
