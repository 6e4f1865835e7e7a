# Overview: Flask API routes for cash register sessions; parses input and returns JSON responses.

# backend/cashledger/routes/registers.py
"""
Cash Register Session API Routes

WHY: Staff open a facility's till at the start of a shift, record movements
against it, and close it with a counted cash amount.

DESIGN:
- One open session per facility (409 on a second open)
- Shift lifecycle: open -> close (immutable once closed)
- Totals are recomputed from the ledger; POST /<id>/recompute forces it
- History and CSV export for back-office review

ERRORS:
- 400 bad input, 404 missing facility/session, 409 state or conflict
"""

from flask import Blueprint, Response, request, jsonify, current_app

from ..services import register_service, aggregation_service, reporting_service
from cashledger.validation import ConflictError, InvalidStateError, NotFoundError, ValidationError
from cashledger.time_utils import utcnow


registers_bp = Blueprint("registers", __name__, url_prefix="/api/registers")


def _history_limit() -> int:
    limit = request.args.get("limit", default=current_app.config["HISTORY_PAGE_LIMIT"], type=int)
    return max(1, min(limit, current_app.config["MAX_PAGE_LIMIT"]))


# =============================================================================
# SHIFT LIFECYCLE
# =============================================================================

@registers_bp.get("/current")
def current_session_route():
    """
    Get the session currently open for a facility.

    Query: ?facility_id=1
    Returns {"session": null} when the facility has no open register.
    """
    facility_id = request.args.get("facility_id", type=int)
    if facility_id is None:
        return jsonify({"error": "facility_id required"}), 400

    try:
        register_service.get_facility(facility_id)
        session = register_service.get_current_session(facility_id)
        return jsonify({"session": session.to_dict() if session else None}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@registers_bp.post("/open")
def open_session_route():
    """
    Open a register session for a facility.

    Request body:
    {
        "facility_id": 1,
        "operator_id": 7,          (optional)
        "opening_cash_cents": 10000,
        "notes": "Morning shift"   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        facility_id = data.get("facility_id")
        if not isinstance(facility_id, int) or isinstance(facility_id, bool):
            return jsonify({"error": "facility_id must be an integer"}), 400

        session = register_service.open_session(
            facility_id=facility_id,
            operator_id=data.get("operator_id"),
            opening_cash_cents=data.get("opening_cash_cents", 0),
            opening_notes=data.get("notes"),
        )
        return jsonify({"session": session.to_dict()}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to open register session")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/<int:session_id>/close")
def close_session_route(session_id: int):
    """
    Close a session with the counted cash.

    Request body:
    {
        "counted_cash_cents": 15000,
        "notes": "Closed by manager"   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        counted = data.get("counted_cash_cents")
        if counted is None:
            return jsonify({"error": "counted_cash_cents required"}), 400

        session = register_service.close_session(session_id, counted, notes=data.get("notes"))
        return jsonify({"session": session.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to close register session")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/<int:session_id>")
def get_session_route(session_id: int):
    try:
        session = register_service.get_session(session_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"session": session.to_dict()}), 200


@registers_bp.post("/<int:session_id>/recompute")
def recompute_session_route(session_id: int):
    """Rebuild a session's totals from its ledger."""
    try:
        aggregation_service.recompute_session_totals(session_id)
        session = register_service.get_session(session_id)
        return jsonify({"session": session.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to recompute session %s", session_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# HISTORY + REPORTS
# =============================================================================

@registers_bp.get("/history")
def session_history_route():
    """
    Session history, newest first.

    Query: facility_id, operator_id, status (OPEN|CLOSED), start, end
    (ISO-8601, on opened_at), page, limit.
    """
    page = request.args.get("page", default=1, type=int)
    limit = _history_limit()

    try:
        items, total = register_service.list_sessions(
            facility_id=request.args.get("facility_id", type=int),
            operator_id=request.args.get("operator_id", type=int),
            status=request.args.get("status"),
            start=request.args.get("start"),
            end=request.args.get("end"),
            page=page,
            limit=limit,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "items": [s.to_dict() for s in items],
        "total": total,
        "page": page,
        "limit": limit,
    }), 200


@registers_bp.get("/<int:session_id>/report")
def session_report_route(session_id: int):
    try:
        report = reporting_service.session_report(session_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(report), 200


@registers_bp.get("/export")
def export_sessions_route():
    """Session history as CSV. Same filters as /history, no pagination."""
    try:
        body = reporting_service.export_sessions_csv(
            facility_id=request.args.get("facility_id", type=int),
            operator_id=request.args.get("operator_id", type=int),
            status=request.args.get("status"),
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    filename = f"register_sessions_{utcnow().strftime('%Y%m%d')}.csv"
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
