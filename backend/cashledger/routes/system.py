# backend/cashledger/routes/system.py
"""
System health endpoint.

Reports database reachability plus a few ledger counters that are useful when
debugging a deployment. Missing movements are not counted here; run a dry-run
reconciliation for that.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Facility, RegisterSession, CashMovement
from ..models.registers import SESSION_OPEN
from cashledger.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic ledger queries.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        facility_count = db.session.query(Facility).count()
        open_sessions = db.session.query(RegisterSession).filter_by(status=SESSION_OPEN).count()
        movement_count = db.session.query(CashMovement).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "facilities": facility_count,
                "open_sessions": open_sessions,
                "movements": movement_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
        }
    }

    return response, http_status
