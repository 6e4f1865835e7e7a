# Overview: Reconciliation pass: backfill missing movements, then rebuild session totals, as one unit of work.

"""
Reconciliation Orchestrator

reconcile() runs the backfill matcher and then the aggregator inside a single
transaction. Either every recovered movement is inserted and every affected
total recomputed, or nothing is written.

IRREVERSIBLE: a committed pass has no inverse. Recovered movements are
ordinary ledger rows afterwards, and the ledger is append-only. Use
dry_run=True to preview a pass; it runs the same code and rolls back.

NOT REENTRANT: two concurrent passes over the same facility could both
insert the same recovered movement. Callers wrap reconcile() in
concurrency.single_flight(scope_key(facility_id)).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import RegisterSession
from . import aggregation_service, backfill_service
from .concurrency import ALL_FACILITIES, run_with_retry


@dataclass
class ReconciliationReport:
    facility_id: int | None = None
    dry_run: bool = False
    touched_only: bool = False
    created_movement_ids: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    invalid: list = field(default_factory=list)
    recomputed_session_ids: list = field(default_factory=list)

    @property
    def movements_created(self) -> int:
        return len(self.created_movement_ids)

    @property
    def skipped_no_register(self) -> int:
        return len(self.skipped)

    @property
    def skipped_invalid_amount(self) -> int:
        return len(self.invalid)

    @property
    def sessions_recomputed(self) -> int:
        return len(self.recomputed_session_ids)

    def to_dict(self) -> dict:
        return {
            "scope": self.facility_id if self.facility_id is not None else ALL_FACILITIES,
            "dry_run": self.dry_run,
            "touched_only": self.touched_only,
            "reversible": False,
            "movements_created": self.movements_created,
            "skipped_no_register": self.skipped_no_register,
            "skipped_invalid_amount": self.skipped_invalid_amount,
            "sessions_recomputed": self.sessions_recomputed,
            "created_movement_ids": list(self.created_movement_ids),
            "recomputed_session_ids": list(self.recomputed_session_ids),
            "skipped": [exc.to_dict() for exc in self.skipped],
            "invalid": [exc.to_dict() for exc in self.invalid],
        }


def scope_key(facility_id: int | None):
    return ALL_FACILITIES if facility_id is None else facility_id


def _sessions_in_scope(facility_id: int | None) -> list[int]:
    query = db.session.query(RegisterSession.id)
    if facility_id is not None:
        query = query.filter(RegisterSession.facility_id == facility_id)
    return [row.id for row in query.order_by(RegisterSession.id.asc())]


def reconcile(
    facility_id: int | None = None,
    *,
    touched_only: bool = False,
    dry_run: bool = False,
) -> ReconciliationReport:
    """
    Recover missing movements and rebuild totals for one facility or all of them.

    Args:
        facility_id: Facility to repair; None repairs every facility
        touched_only: Recompute only sessions that received recovered movements
        dry_run: Run the full pass, report, then roll everything back

    Returns:
        ReconciliationReport; skipped payments never fail the pass

    Raises:
        Any database error that prevented the commit; the pass is rolled back.
    """
    scope = scope_key(facility_id)

    def _op():
        report = ReconciliationReport(facility_id=facility_id, dry_run=dry_run, touched_only=touched_only)

        result = backfill_service.backfill_missing_movements(facility_id)
        report.created_movement_ids = list(result.created_movement_ids)
        report.skipped = list(result.skipped)
        report.invalid = list(result.invalid)

        if touched_only:
            session_ids = sorted(result.touched_session_ids)
        else:
            session_ids = _sessions_in_scope(facility_id)

        for session_id in session_ids:
            aggregation_service.recompute_session_totals(session_id, commit=False)
            report.recomputed_session_ids.append(session_id)

        if dry_run:
            db.session.rollback()
        else:
            db.session.commit()
        return report

    current_app.logger.info("Reconciliation started (scope=%s, dry_run=%s)", scope, dry_run)
    try:
        report = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Reconciliation failed (scope=%s); all changes rolled back", scope)
        raise

    current_app.logger.info(
        "Reconciliation finished (scope=%s, dry_run=%s): created %s movements, skipped %s with no open register "
        "and %s with an invalid amount, recomputed %s sessions",
        scope, dry_run, report.movements_created, report.skipped_no_register, report.skipped_invalid_amount,
        report.sessions_recomputed,
    )
    return report
