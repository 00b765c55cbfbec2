"""Standardised API error responses.

Usage
-----
    from mealpass.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Extra meal request not found")
    return api_error(E.VALIDATION_REQUIRED, "voucher_code is required")
    return api_error(E.CONNECTIVITY, "Store unreachable", details={"attempts": 4})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • guard failures reuse the GuardFailure.code of the raised exception
    """

    # Validation – HTTP 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    SESSION_EXPIRED = "ERR_SESSION_EXPIRED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Redemption guards – HTTP 422
    GUARD_FAILED = "GUARD_FAILED"

    # Infrastructure – HTTP 500 / 503
    CONNECTIVITY = "ERR_CONNECTIVITY"
    SCHEMA = "ERR_SCHEMA"
    CONFIGURATION = "ERR_CONFIGURATION"
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 422,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.UNAUTHORIZED: 401,
    E.SESSION_EXPIRED: 401,
    E.FORBIDDEN: 403,
    E.GUARD_FAILED: 422,
    E.CONNECTIVITY: 503,
    E.SCHEMA: 500,
    E.CONFIGURATION: 500,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for the kiosk / admin UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (title, remediation, field errors).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
