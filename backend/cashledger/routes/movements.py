# Overview: Flask API routes for the cash movement ledger; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import movement_service
from cashledger.validation import InvalidStateError, NotFoundError, ValidationError

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start/end filtering is inclusive on registered_at.
- Amounts are integer cents, always positive; movement_type carries the direction.
"""

movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")


@movements_bp.get("")
def list_movements_route():
    """
    Query: session_id or facility_id (one required), movement_type,
    payment_method, start, end, page, limit.
    """
    page = request.args.get("page", default=1, type=int)
    limit = request.args.get("limit", default=current_app.config["MOVEMENTS_PAGE_LIMIT"], type=int)
    limit = max(1, min(limit, current_app.config["MAX_PAGE_LIMIT"]))

    try:
        items, total = movement_service.search_movements(
            session_id=request.args.get("session_id", type=int),
            facility_id=request.args.get("facility_id", type=int),
            kind=request.args.get("movement_type"),
            payment_method=request.args.get("payment_method"),
            start=request.args.get("start"),
            end=request.args.get("end"),
            page=page,
            limit=limit,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "items": [m.to_dict() for m in items],
        "total": total,
        "page": page,
        "limit": limit,
    }), 200


@movements_bp.post("")
def record_movement_route():
    """
    Record a live movement.

    Request body:
    {
        "session_id": 3,              (or "facility_id": 1 for its open session)
        "movement_type": "expense",
        "amount_cents": 2500,
        "payment_method": "cash",
        "expense_category": "cleaning",   (expenses only)
        "order_id": null,
        "booking_id": null,
        "operator_id": 7,
        "description": "...",
        "notes": "..."
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        session_id = data.get("session_id")
        facility_id = data.get("facility_id")
        if session_id is None and facility_id is None:
            return jsonify({"error": "session_id or facility_id required"}), 400

        for field in ("movement_type", "amount_cents", "payment_method"):
            if data.get(field) is None:
                return jsonify({"error": f"{field} required"}), 400

        kwargs = dict(
            operator_id=data.get("operator_id"),
            order_id=data.get("order_id"),
            booking_id=data.get("booking_id"),
            expense_category=data.get("expense_category"),
            description=data.get("description"),
            notes=data.get("notes"),
        )

        if session_id is not None:
            movement = movement_service.record_movement(
                session_id,
                data["movement_type"],
                data["amount_cents"],
                data["payment_method"],
                **kwargs,
            )
        else:
            movement = movement_service.record_for_facility(
                facility_id,
                data["movement_type"],
                data["amount_cents"],
                data["payment_method"],
                **kwargs,
            )

        return jsonify({"movement": movement.to_dict()}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record cash movement")
        return jsonify({"error": "Internal server error"}), 500
