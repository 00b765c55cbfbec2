"""
Voucher Blueprint — kiosk redemption endpoints.

Endpoints:
    POST /api/v1/vouchers/validate        — run the guard chain, write nothing
    POST /api/v1/vouchers/redeem          — validate + write the meal record
    GET  /api/v1/meal-types/available     — regular meal types open right now

Guard failures come back as 422 with the guard's own code
(VOUCHER_NOT_FOUND, OUT_OF_SHIFT, DAILY_LIMIT_REACHED, MEAL_ALREADY_USED,
NO_MEAL_AVAILABLE); a lost race on the uniqueness index is 409
DUPLICATE_REDEMPTION; exhausted retries are 503.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from mealpass.blueprints import register_error_handlers
from mealpass.core.exceptions import ValidationError
from mealpass.services.redemption_service import RedemptionService
from mealpass.services.time_window import local_now
from mealpass.utils.helpers import parse_int

logger = logging.getLogger(__name__)

voucher_bp = Blueprint("voucher", __name__, url_prefix="/api/v1")
register_error_handlers(voucher_bp)


def _now():
    return local_now(current_app.config.get("LOCAL_TIMEZONE"))


def _service():
    return RedemptionService.from_config(current_app.config)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/vouchers/validate
# ═══════════════════════════════════════════════════════════════
@voucher_bp.route("/vouchers/validate", methods=["POST"])
def validate_voucher():
    """
    Body: { "voucher_code": "1234", "meal_type_id": 2 (optional) }
    """
    data = request.get_json(silent=True) or {}
    meal_type_id = parse_int(data.get("meal_type_id"), "meal_type_id")

    result = _service().validate(data.get("voucher_code"), _now(), meal_type_id=meal_type_id)
    return jsonify({
        "valid": True,
        "holder": result.holder.to_dict(),
        "meals_today": result.meals_today,
        "available_meal_types": [m.to_dict() for m in result.available_meal_types],
        "selected_meal_type": result.selected_meal_type.to_dict(),
    }), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/vouchers/redeem
# ═══════════════════════════════════════════════════════════════
@voucher_bp.route("/vouchers/redeem", methods=["POST"])
def redeem_voucher():
    """
    Body: { "voucher_code": "1234", "meal_type_id": 2, "idempotency_key": "..." }

    Header ``Idempotency-Key`` is accepted in place of the body field.
    """
    data = request.get_json(silent=True) or {}
    meal_type_id = parse_int(data.get("meal_type_id"), "meal_type_id")
    if meal_type_id is None:
        raise ValidationError("meal_type_id is required", details={"meal_type_id": "required"})
    key = data.get("idempotency_key") or request.headers.get("Idempotency-Key")
    if key is not None and not (0 < len(str(key)) <= 64):
        raise ValidationError("idempotency_key must be 1-64 characters", details={"idempotency_key": "invalid"})

    record = _service().redeem(data.get("voucher_code"), meal_type_id, _now(), idempotency_key=key)
    return jsonify(record.to_dict()), 201


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/meal-types/available
# ═══════════════════════════════════════════════════════════════
@voucher_bp.route("/meal-types/available", methods=["GET"])
def available_meal_types():
    monitor = current_app.extensions.get("availability_monitor")
    if monitor is not None and monitor.running:
        snapshot = monitor.snapshot()
        return jsonify({
            "items": [m.to_dict() for m in snapshot.meal_types],
            "online": snapshot.online,
            "checked_at": snapshot.checked_at.isoformat() if snapshot.checked_at else None,
        }), 200

    now = _now()
    items = _service().open_meal_types(now)
    return jsonify({
        "items": [m.to_dict() for m in items],
        "online": True,
        "checked_at": now.isoformat(),
    }), 200
