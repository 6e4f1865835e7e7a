# Overview: Read-only session reports and CSV export built on the ledger and stored totals.

from __future__ import annotations

import csv
import io

from ..models.registers import MOVEMENT_EXPENSE, PAYMENT_METHODS, SOURCE_BACKFILL
from cashledger.time_utils import to_utc_z
from .movement_service import list_movements
from .register_service import get_session, list_sessions


EXPORT_COLUMNS = (
    ["session_id", "facility_id", "opened_at", "closed_at", "operator_id",
     "opening_cash_cents", "expected_cash_cents", "counted_cash_cents"]
    + [f"total_{method}_cents" for method in PAYMENT_METHODS]
    + ["total_sales_cents", "total_expenses_cents", "total_withdrawals_cents",
       "variance_cents", "status", "opening_notes", "closing_notes"]
)

EXPORT_BATCH = 500


def _bucket(groups: dict, key, amount: int) -> None:
    entry = groups.setdefault(key, {"count": 0, "total_cents": 0})
    entry["count"] += 1
    entry["total_cents"] += amount


def session_report(session_id: int) -> dict:
    """
    Breakdown of one session's ledger.

    Groups are plain sums of movement magnitudes; the floored figures live in
    the session's stored totals.
    """
    session = get_session(session_id)
    movements = list_movements(session.id)

    by_kind: dict = {}
    by_method: dict = {}
    expenses_by_category: dict = {}
    backfilled = 0

    for movement in movements:
        _bucket(by_kind, movement.movement_type, movement.amount_cents)
        _bucket(by_method, movement.payment_method, movement.amount_cents)
        if movement.movement_type == MOVEMENT_EXPENSE:
            _bucket(expenses_by_category, movement.expense_category or "uncategorized", movement.amount_cents)
        if movement.source == SOURCE_BACKFILL:
            backfilled += 1

    return {
        "session": session.to_dict(),
        "by_kind": by_kind,
        "by_method": by_method,
        "expenses_by_category": expenses_by_category,
        "backfilled_movements": backfilled,
        "movements": [m.to_dict() for m in movements],
    }


def export_sessions_csv(
    *,
    facility_id: int | None = None,
    start=None,
    end=None,
    status: str | None = None,
    operator_id: int | None = None,
) -> str:
    """Session history as CSV text, newest first, one row per session."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)

    page = 1
    while True:
        sessions, total = list_sessions(
            facility_id=facility_id,
            operator_id=operator_id,
            status=status,
            start=start,
            end=end,
            page=page,
            limit=EXPORT_BATCH,
        )
        for session in sessions:
            writer.writerow(
                [session.id, session.facility_id, to_utc_z(session.opened_at),
                 to_utc_z(session.closed_at) if session.closed_at else "",
                 session.operator_id if session.operator_id is not None else "",
                 session.opening_cash_cents, session.expected_cash_cents,
                 session.counted_cash_cents if session.counted_cash_cents is not None else ""]
                + [getattr(session, f"total_{method}_cents") for method in PAYMENT_METHODS]
                + [session.total_sales_cents, session.total_expenses_cents, session.total_withdrawals_cents,
                   session.variance_cents if session.variance_cents is not None else "",
                   session.status, session.opening_notes or "", session.closing_notes or ""]
            )
        if page * EXPORT_BATCH >= total:
            break
        page += 1

    return buffer.getvalue()
