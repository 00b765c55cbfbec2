"""
Session Service — explicit actor sessions for the admin side.

A session is a small immutable value (ActorSession) carried as an HS256
bearer token:

    {
        "sub": "<manager_id>",
        "name": "<full_name>",
        "role": "admin",
        "permissions": ["rh-extras", ...],
        "type": "session",
        "iat": <issued_at>,
        "exp": <expires_at>,
        "jti": <unique_id>
    }

Token contents are a snapshot.  Every privileged transition calls
``revalidate`` so a deactivated manager, or one whose ``rh-extras``
capability was revoked, loses access immediately instead of at expiry.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from mealpass.core.exceptions import AuthenticationError, SessionExpiredError
from mealpass.utils.crypto import verify_password

logger = logging.getLogger(__name__)

DEFAULT_SESSION_EXPIRES = 8 * 3600
ALGORITHM = "HS256"
TOKEN_TYPE = "session"

APPROVER_ROLES = frozenset({"super_admin", "admin"})
APPROVAL_PERMISSION = "rh-extras"


@dataclass(frozen=True)
class ActorSession:
    actor_id: int
    full_name: str
    role: str
    permissions: frozenset
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def to_dict(self):
        return {
            "actor_id": self.actor_id,
            "full_name": self.full_name,
            "role": self.role,
            "permissions": sorted(self.permissions),
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "can_approve_extra_meals": has_approval_permission(self),
        }


def has_approval_permission(session: ActorSession) -> bool:
    """super_admin / admin, or a manager holding the ``rh-extras`` capability."""
    return session.role in APPROVER_ROLES or APPROVAL_PERMISSION in session.permissions


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_expires():
    return current_app.config.get("SESSION_EXPIRES", DEFAULT_SESSION_EXPIRES)


def session_for_manager(manager, now: datetime | None = None, expires_in: int | None = None) -> ActorSession:
    issued_at = now or datetime.now(timezone.utc)
    lifetime = expires_in if expires_in is not None else _get_expires()
    return ActorSession(
        actor_id=manager.id,
        full_name=manager.full_name,
        role=manager.role,
        permissions=frozenset(manager.permission_list()),
        issued_at=issued_at,
        expires_at=issued_at + timedelta(seconds=lifetime),
    )


# ═══════════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════════
def authenticate(store, username: str, password: str) -> ActorSession:
    """Verify credentials and open a new session.

    Raises:
        AuthenticationError: unknown user, wrong password or inactive account.
            The message does not say which.
    """
    manager = store.find_manager_by_username(username or "")
    if manager is None or not verify_password(password, manager.password_hash):
        logger.info("Login failed for username=%s", username)
        raise AuthenticationError("Usuário ou senha inválidos.")
    if not manager.is_active:
        logger.info("Login refused for inactive manager", extra={"actor_id": manager.id})
        raise AuthenticationError("Usuário ou senha inválidos.")

    session = session_for_manager(manager)
    store.touch_manager_login(manager.id, session.issued_at.replace(tzinfo=None))
    logger.info("Manager logged in", extra={"actor_id": manager.id})
    return session


# ═══════════════════════════════════════════════════════════════
# Tokens
# ═══════════════════════════════════════════════════════════════
def issue_token(session: ActorSession) -> str:
    payload = {
        "sub": str(session.actor_id),
        "name": session.full_name,
        "role": session.role,
        "permissions": sorted(session.permissions),
        "type": TOKEN_TYPE,
        "iat": session.issued_at,
        "exp": session.expires_at,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def decode_token(token: str) -> ActorSession:
    """Decode and verify a session token.

    Raises:
        SessionExpiredError: the token is past ``exp``.
        AuthenticationError: signature, format or type is wrong.
    """
    try:
        payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise SessionExpiredError("Sessão expirada. Faça login novamente.") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Token de sessão inválido.") from exc

    if payload.get("type") != TOKEN_TYPE:
        raise AuthenticationError("Token de sessão inválido.")

    return ActorSession(
        actor_id=int(payload["sub"]),
        full_name=payload.get("name", ""),
        role=payload.get("role", "manager"),
        permissions=frozenset(payload.get("permissions") or []),
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


# ═══════════════════════════════════════════════════════════════
# Re-validation
# ═══════════════════════════════════════════════════════════════
def revalidate(store, session: ActorSession, now: datetime | None = None) -> ActorSession:
    """Reload the actor and return a session with current role/permissions.

    Expiry is unchanged; re-validation never extends a session.

    Raises:
        SessionExpiredError: the session expired, or the manager was removed
            or deactivated since the token was issued.
    """
    if session.is_expired(now):
        raise SessionExpiredError("Sessão expirada. Faça login novamente.")

    manager = store.get_manager(session.actor_id)
    if manager is None or not manager.is_active:
        logger.warning("Session actor no longer active", extra={"actor_id": session.actor_id})
        raise SessionExpiredError("Usuário inativo ou removido. Faça login novamente.")

    return replace(
        session,
        full_name=manager.full_name,
        role=manager.role,
        permissions=frozenset(manager.permission_list()),
    )
