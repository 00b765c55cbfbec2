"""
Extra Meal Blueprint — HR approval workflow for supplementary meals.

Endpoints (all require a bearer session):
    GET    /api/v1/extra-meals                 — list (status, date_from, date_to,
                                                 company_id, search, limit, offset)
    POST   /api/v1/extra-meals                 — create (pending)
    GET    /api/v1/extra-meals/stats           — counts per status + total value
    GET    /api/v1/extra-meals/<id>            — detail
    PUT    /api/v1/extra-meals/<id>            — edit fields (never status)
    DELETE /api/v1/extra-meals/<id>            — delete (not when approved)
    POST   /api/v1/extra-meals/<id>/approve    — { "note": "..." }
    POST   /api/v1/extra-meals/<id>/reject     — { "justification": "..." } (required)

Requester in bodies:
    internal  { "holder_id": 7 }
    external  { "external_name": "...", "external_company": "...",
                "external_document": "..." }
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from mealpass.blueprints import paginate_list, register_error_handlers
from mealpass.core.exceptions import ValidationError
from mealpass.middleware.session_auth import require_session
from mealpass.models.extra_meal import ExternalVisitor, InternalHolder
from mealpass.services.extra_meal_service import ExtraMealWorkflow
from mealpass.utils.helpers import parse_date, parse_date_input, parse_int

logger = logging.getLogger(__name__)

extra_meal_bp = Blueprint("extra_meal", __name__, url_prefix="/api/v1/extra-meals")
register_error_handlers(extra_meal_bp)


def _workflow():
    return ExtraMealWorkflow.from_config(current_app.config)


def _requester_from(data):
    """Build the requester union from a request body, or None if absent."""
    holder_id = parse_int(data.get("holder_id"), "holder_id")
    has_external = any(data.get(f) for f in ("external_name", "external_company", "external_document"))
    if holder_id is not None and has_external:
        raise ValidationError(
            "Send either holder_id or external visitor fields, not both",
            details={"holder_id": "conflicts with external_*"},
        )
    if holder_id is not None:
        return InternalHolder(holder_id=holder_id)
    if has_external:
        return ExternalVisitor(
            name=data.get("external_name") or "",
            company=data.get("external_company") or "",
            document=data.get("external_document"),
        )
    return None


def _filters_from_args():
    return {
        "status": request.args.get("status"),
        "date_from": parse_date(request.args.get("date_from")),
        "date_to": parse_date(request.args.get("date_to")),
        "company_id": parse_int(request.args.get("company_id"), "company_id"),
        "search": request.args.get("search"),
    }


# ═════════════════════════════════════════════════════════════════════════
# Collection
# ═════════════════════════════════════════════════════════════════════════


@extra_meal_bp.route("", methods=["GET"])
def list_extra_meals():
    rows = _workflow().list_requests(require_session(), _filters_from_args())
    page, total = paginate_list(rows)
    return jsonify({"items": [r.to_dict() for r in page], "total": total}), 200


@extra_meal_bp.route("", methods=["POST"])
def create_extra_meal():
    data = request.get_json(silent=True) or {}
    requester = _requester_from(data)
    if requester is None:
        raise ValidationError(
            "holder_id or external visitor fields are required",
            details={"holder_id": "required"},
        )
    meal_type_id = parse_int(data.get("meal_type_id"), "meal_type_id")
    if meal_type_id is None:
        raise ValidationError("meal_type_id is required", details={"meal_type_id": "required"})

    row = _workflow().create_request(
        require_session(),
        requester,
        meal_type_id=meal_type_id,
        meal_date=parse_date_input(data.get("meal_date"), "meal_date"),
        meal_time=data.get("meal_time") or "",
        reason=data.get("reason"),
        requested_by_name=data.get("requested_by_name"),
        notes=data.get("notes"),
        idempotency_key=data.get("idempotency_key") or request.headers.get("Idempotency-Key"),
    )
    return jsonify(row.to_dict()), 201


@extra_meal_bp.route("/stats", methods=["GET"])
def extra_meal_stats():
    stats = _workflow().get_stats(require_session(), _filters_from_args())
    return jsonify(stats), 200


# ═════════════════════════════════════════════════════════════════════════
# Item
# ═════════════════════════════════════════════════════════════════════════


@extra_meal_bp.route("/<int:request_id>", methods=["GET"])
def get_extra_meal(request_id):
    require_session()
    return jsonify(_workflow().get_request(request_id).to_dict()), 200


@extra_meal_bp.route("/<int:request_id>", methods=["PUT"])
def update_extra_meal(request_id):
    data = request.get_json(silent=True) or {}
    changes = {}
    requester = _requester_from(data)
    if requester is not None:
        changes["requester"] = requester
    for field in ("status", "reason", "requested_by_name", "notes", "meal_time"):
        if field in data:
            changes[field] = data[field]
    if "meal_type_id" in data:
        changes["meal_type_id"] = parse_int(data["meal_type_id"], "meal_type_id")
    if "meal_date" in data:
        changes["meal_date"] = parse_date_input(data["meal_date"], "meal_date")

    row = _workflow().update_request(require_session(), request_id, changes)
    return jsonify(row.to_dict()), 200


@extra_meal_bp.route("/<int:request_id>", methods=["DELETE"])
def delete_extra_meal(request_id):
    _workflow().delete_request(require_session(), request_id)
    return jsonify({"message": "Extra meal request deleted", "id": request_id}), 200


@extra_meal_bp.route("/<int:request_id>/approve", methods=["POST"])
def approve_extra_meal(request_id):
    data = request.get_json(silent=True) or {}
    row = _workflow().approve_request(require_session(), request_id, note=data.get("note"))
    return jsonify(row.to_dict()), 200


@extra_meal_bp.route("/<int:request_id>/reject", methods=["POST"])
def reject_extra_meal(request_id):
    data = request.get_json(silent=True) or {}
    row = _workflow().reject_request(require_session(), request_id, data.get("justification"))
    return jsonify(row.to_dict()), 200
