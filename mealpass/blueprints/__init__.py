"""
MealPass
Blueprint registry and shared view helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from mealpass.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    ConnectivityError,
    DuplicateRedemptionError,
    GuardFailure,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SchemaError,
    SessionExpiredError,
    ValidationError,
)
from mealpass.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_list(items, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to an already-loaded list.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (page_items, total_count)
    """
    total = len(items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return items[offset:offset + limit], total


def register_error_handlers(bp):
    """Translate the service exception family into api_error responses."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(InvalidTransitionError)
    def _handle_transition(error: InvalidTransitionError):
        return api_error(
            E.CONFLICT_STATE,
            str(error),
            details={"from": error.from_status, "to": error.to_status},
        )

    @bp.errorhandler(AuthenticationError)
    def _handle_unauthenticated(error: AuthenticationError):
        return api_error(E.UNAUTHORIZED, str(error))

    @bp.errorhandler(SessionExpiredError)
    def _handle_session_expired(error: SessionExpiredError):
        return api_error(E.SESSION_EXPIRED, str(error))

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error: PermissionDeniedError):
        details = {"required": error.required} if error.required else None
        return api_error(E.FORBIDDEN, str(error), details=details)

    @bp.errorhandler(GuardFailure)
    def _handle_guard(error: GuardFailure):
        return api_error(error.code, error.message, status=422, details={"title": error.title})

    @bp.errorhandler(DuplicateRedemptionError)
    def _handle_duplicate(error: DuplicateRedemptionError):
        return api_error(error.code, error.message, status=409, details={"title": error.title})

    @bp.errorhandler(ConnectivityError)
    def _handle_connectivity(error: ConnectivityError):
        return api_error(
            E.CONNECTIVITY,
            "Não foi possível conectar ao banco de dados. Tente novamente.",
            details={"title": error.title, "operation": error.operation, "attempts": error.attempts},
        )

    @bp.errorhandler(ConfigurationError)
    def _handle_configuration(error: ConfigurationError):
        logger.error("Configuration error endpoint=%s: %s", request.endpoint, error)
        return api_error(
            E.CONFIGURATION,
            str(error),
            details={"title": error.title, "remediation": error.remediation},
        )

    @bp.errorhandler(SchemaError)
    def _handle_schema(error: SchemaError):
        logger.error("Schema error endpoint=%s: %s", request.endpoint, error)
        return api_error(E.SCHEMA, str(error), details={"remediation": error.remediation})

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
