"""Shared request-parsing helpers for the blueprints.

parse_date:        returns None on empty/bad input (list filters)
parse_date_input:  raises ValidationError on bad input (request bodies)
parse_int:         optional integer query/body values
"""
import logging
from datetime import date, datetime

from mealpass.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD/MM/YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD/MM/YYYY (Brazilian format used by the admin panel)
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d/%m/%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value, field="date"):
    """Same as parse_date() but raises ValidationError instead of returning None."""
    if value in (None, ""):
        raise ValidationError(f"{field} is required", details={field: "required"})
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(
            f"Invalid {field} {value!r}. Use YYYY-MM-DD.",
            details={field: "invalid"},
        )
    return parsed


def parse_int(value, field):
    """Optional integer: None/"" → None, anything non-numeric → ValidationError."""
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer", details={field: "invalid"}) from exc
