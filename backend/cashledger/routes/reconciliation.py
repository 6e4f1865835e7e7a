# Overview: Flask API route that runs a reconciliation pass; parses input and returns the JSON report.

"""
Reconciliation API

POST /api/reconciliation
{
    "facility_id": 1,        (omit for every facility)
    "confirm": true,         (required unless dry_run)
    "dry_run": false,
    "touched_only": false
}

A committed pass cannot be undone, so the caller must confirm it explicitly.
A dry run reports what would happen and writes nothing.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import reconciliation_service, register_service
from ..services.concurrency import single_flight
from cashledger.validation import ConflictError, NotFoundError, ValidationError

reconciliation_bp = Blueprint("reconciliation", __name__, url_prefix="/api/reconciliation")


@reconciliation_bp.post("")
def reconcile_route():
    data = request.get_json(silent=True) or {}

    facility_id = data.get("facility_id")
    dry_run = bool(data.get("dry_run", False))
    touched_only = bool(data.get("touched_only", False))

    if facility_id is not None and (not isinstance(facility_id, int) or isinstance(facility_id, bool)):
        return jsonify({"error": "facility_id must be an integer"}), 400

    if not dry_run and data.get("confirm") is not True:
        return jsonify({
            "error": "Reconciliation is irreversible; resend with \"confirm\": true or use \"dry_run\": true",
        }), 400

    try:
        if facility_id is not None:
            register_service.get_facility(facility_id)

        with single_flight(reconciliation_service.scope_key(facility_id)):
            report = reconciliation_service.reconcile(
                facility_id,
                touched_only=touched_only,
                dry_run=dry_run,
            )
        return jsonify({"report": report.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        # reconcile() has already rolled back and logged the traceback
        current_app.logger.error("Reconciliation request failed (facility_id=%s)", facility_id)
        return jsonify({"error": "Internal server error"}), 500
