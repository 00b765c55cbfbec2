"""
Session Auth Middleware — parses the bearer token, sets g.actor_session.

Decoding only establishes *who* is calling.  Whether that actor may act is
decided by the services, which re-validate the session against the store.

Usage in views:
    from mealpass.middleware.session_auth import require_session

    session = require_session()      # raises AuthenticationError / SessionExpiredError
"""

from flask import g, request

from mealpass.core.exceptions import AuthenticationError
from mealpass.services.session_service import decode_token

# Paths that never need a session
SESSION_SKIP_PREFIXES = (
    "/api/v1/health",
    "/api/v1/vouchers",
    "/api/v1/meal-types",
)


def init_session_middleware(app):
    """Register session middleware as a before_request hook."""

    @app.before_request
    def _session_auth():
        g.actor_session = None
        g.session_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in SESSION_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        try:
            g.actor_session = decode_token(auth_header[7:])
        except AuthenticationError as exc:
            # Views that need a session raise it; open views ignore it
            g.session_error = exc


def require_session():
    """Return the request's ActorSession or raise the reason there is none."""
    session = g.get("actor_session")
    if session is not None:
        return session
    error = g.get("session_error")
    if error is not None:
        raise error
    raise AuthenticationError("Login required")
