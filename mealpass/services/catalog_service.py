"""
Catalog Service — validated writes for shifts, meal types and voucher holders.

The redemption flow trusts this master data, so the invariants it relies
on are enforced here on every create/update:
  - a window's start and end must differ (wraparound is fine)
  - meal type prices are non-negative
  - a voucher code is 4 digits and unique among *active* holders
  - a CPF, when given, passes the check-digit test
"""

import logging
import secrets
from decimal import Decimal, InvalidOperation

from mealpass.core.exceptions import ConflictError, NotFoundError, ValidationError
from mealpass.models import db
from mealpass.models.catalog import Company, MealType, Shift
from mealpass.models.holder import VoucherHolder
from mealpass.services.redemption_service import VOUCHER_CODE_RE
from mealpass.services.time_window import InvalidWindowError, parse_time_of_day, validate_window

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 50


# ═════════════════════════════════════════════════════════════════════════════
# Field validation
# ═════════════════════════════════════════════════════════════════════════════


def parse_window(data, current=None):
    """Return (start, end) from ``data``, falling back to ``current``'s values."""
    errors = {}
    bounds = {}
    for field in ("start_time", "end_time"):
        raw = data.get(field)
        if raw in (None, ""):
            if current is not None:
                bounds[field] = getattr(current, field)
                continue
            errors[field] = "Horário é obrigatório"
            continue
        try:
            bounds[field] = parse_time_of_day(raw)
        except ValueError as exc:
            errors[field] = str(exc)
    if errors:
        raise ValidationError("Invalid time window", details=errors)
    try:
        validate_window(bounds["start_time"], bounds["end_time"])
    except InvalidWindowError as exc:
        raise ValidationError(
            "Horário de início e fim não podem ser iguais",
            details={"end_time": "equal to start_time"},
        ) from exc
    return bounds["start_time"], bounds["end_time"]


def parse_price(raw):
    try:
        price = Decimal(str(raw if raw is not None else "0"))
    except InvalidOperation as exc:
        raise ValidationError("price must be a number", details={"price": "invalid"}) from exc
    if not price.is_finite() or price < 0:
        raise ValidationError("price must be zero or positive", details={"price": "negative"})
    return price.quantize(Decimal("0.01"))


def is_valid_cpf(cpf: str) -> bool:
    """Brazilian CPF check-digit validation."""
    digits = "".join(ch for ch in str(cpf or "") if ch.isdigit())
    if len(digits) != 11 or digits == digits[0] * 11:
        return False
    for length in (9, 10):
        total = sum(int(digits[i]) * (length + 1 - i) for i in range(length))
        check = 11 - (total % 11)
        if check >= 10:
            check = 0
        if check != int(digits[length]):
            return False
    return True


def _required_name(data, current=None):
    if "name" not in data and current is not None:
        return current.name
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    return name


# ═════════════════════════════════════════════════════════════════════════════
# Shifts
# ═════════════════════════════════════════════════════════════════════════════


def create_shift(data):
    start, end = parse_window(data)
    shift = Shift(
        name=_required_name(data),
        start_time=start,
        end_time=end,
        is_active=bool(data.get("is_active", True)),
        description=data.get("description"),
    )
    db.session.add(shift)
    db.session.commit()
    logger.info("Shift created id=%s window=%s-%s", shift.id, start, end)
    return shift


def update_shift(shift_id, data):
    shift = db.session.get(Shift, shift_id)
    if not shift:
        raise NotFoundError(resource="Shift", resource_id=shift_id)
    shift.name = _required_name(data, shift)
    shift.start_time, shift.end_time = parse_window(data, shift)
    if "is_active" in data:
        shift.is_active = bool(data["is_active"])
    if "description" in data:
        shift.description = data["description"]
    db.session.commit()
    return shift


# ═════════════════════════════════════════════════════════════════════════════
# Meal types
# ═════════════════════════════════════════════════════════════════════════════


def create_meal_type(data):
    start, end = parse_window(data)
    meal_type = MealType(
        name=_required_name(data),
        start_time=start,
        end_time=end,
        price=parse_price(data.get("price")),
        is_special=bool(data.get("is_special", False)),
        is_active=bool(data.get("is_active", True)),
        description=data.get("description"),
    )
    db.session.add(meal_type)
    db.session.commit()
    logger.info("Meal type created", extra={"meal_type_id": meal_type.id})
    return meal_type


def update_meal_type(meal_type_id, data):
    meal_type = db.session.get(MealType, meal_type_id)
    if not meal_type:
        raise NotFoundError(resource="MealType", resource_id=meal_type_id)
    meal_type.name = _required_name(data, meal_type)
    meal_type.start_time, meal_type.end_time = parse_window(data, meal_type)
    if "price" in data:
        meal_type.price = parse_price(data["price"])
    for flag in ("is_special", "is_active"):
        if flag in data:
            setattr(meal_type, flag, bool(data[flag]))
    if "description" in data:
        meal_type.description = data["description"]
    db.session.commit()
    return meal_type


# ═════════════════════════════════════════════════════════════════════════════
# Voucher holders
# ═════════════════════════════════════════════════════════════════════════════


def _active_code_taken(code, exclude_id=None):
    q = VoucherHolder.query.filter_by(voucher_code=code, is_active=True)
    if exclude_id is not None:
        q = q.filter(VoucherHolder.id != exclude_id)
    return db.session.query(q.exists()).scalar()


def generate_voucher_code():
    """Random 4-digit code (1000–9999) not held by any active holder."""
    for _ in range(MAX_CODE_ATTEMPTS):
        code = str(1000 + secrets.randbelow(9000))
        if not _active_code_taken(code):
            return code
    raise ConflictError("VoucherHolder", "voucher_code", "no free code found")


def _holder_fields(data, holder=None):
    errors = {}
    fields = {}

    if "full_name" in data or holder is None:
        full_name = (data.get("full_name") or "").strip()
        if not full_name:
            errors["full_name"] = "required"
        fields["full_name"] = full_name

    if "voucher_code" in data or holder is None:
        code = str(data.get("voucher_code") or "").strip() or generate_voucher_code()
        if not VOUCHER_CODE_RE.match(code):
            errors["voucher_code"] = "Código deve ter 4 dígitos"
        fields["voucher_code"] = code

    if data.get("cpf"):
        if not is_valid_cpf(data["cpf"]):
            errors["cpf"] = "CPF inválido"
        fields["cpf"] = "".join(ch for ch in data["cpf"] if ch.isdigit())

    for ref, model in (("company_id", Company), ("shift_id", Shift)):
        if ref in data:
            value = data[ref]
            if value is not None and db.session.get(model, value) is None:
                errors[ref] = "not found"
            fields[ref] = value

    for field in ("department", "position"):
        if field in data:
            fields[field] = data[field]
    if "is_active" in data:
        fields["is_active"] = bool(data["is_active"])

    if errors:
        raise ValidationError("Invalid voucher holder", details=errors)
    return fields


def create_holder(data):
    fields = _holder_fields(data)
    is_active = fields.get("is_active", True)
    if is_active and _active_code_taken(fields["voucher_code"]):
        raise ConflictError("VoucherHolder", "voucher_code", fields["voucher_code"])
    holder = VoucherHolder(**fields)
    db.session.add(holder)
    db.session.commit()
    logger.info("Voucher holder created", extra={"holder_id": holder.id})
    return holder


def update_holder(holder_id, data):
    holder = db.session.get(VoucherHolder, holder_id)
    if not holder:
        raise NotFoundError(resource="VoucherHolder", resource_id=holder_id)
    fields = _holder_fields(data, holder)
    code = fields.get("voucher_code", holder.voucher_code)
    will_be_active = fields.get("is_active", holder.is_active)
    if will_be_active and _active_code_taken(code, exclude_id=holder.id):
        raise ConflictError("VoucherHolder", "voucher_code", code)
    for field, value in fields.items():
        setattr(holder, field, value)
    db.session.commit()
    return holder


def delete_holder(holder_id):
    """Hard delete; the holder's meal records go with it."""
    holder = db.session.get(VoucherHolder, holder_id)
    if not holder:
        raise NotFoundError(resource="VoucherHolder", resource_id=holder_id)
    db.session.delete(holder)
    db.session.commit()
    logger.info("Voucher holder deleted", extra={"holder_id": holder_id})
