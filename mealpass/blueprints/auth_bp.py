"""
Auth Blueprint — manager sessions.

Endpoints:
  POST /api/v1/auth/session   — username + password → bearer token
  GET  /api/v1/auth/session   — current session (re-validated against the store)
"""

from flask import Blueprint, jsonify, request

from mealpass.blueprints import register_error_handlers
from mealpass.core.exceptions import ValidationError
from mealpass.middleware.session_auth import require_session
from mealpass.services import session_service
from mealpass.services.record_store import SqlRecordStore

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/session
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/session", methods=["POST"])
def login():
    """
    Authenticate with username + password, return a session token.

    Body: { "username": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        raise ValidationError(
            "Username and password are required",
            details={"username": "required", "password": "required"},
        )

    session = session_service.authenticate(SqlRecordStore(), username, password)
    return jsonify({
        "token": session_service.issue_token(session),
        "token_type": "Bearer",
        "expires_at": session.expires_at.isoformat(),
        "session": session.to_dict(),
    }), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/session
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/session", methods=["GET"])
def current_session():
    session = session_service.revalidate(SqlRecordStore(), require_session())
    return jsonify(session.to_dict()), 200
