"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.  The redemption flow uses
the same classes to decide which notification to show and which state to
return to.

Families:
    NotFoundError, ValidationError, ConflictError   plain service errors
    AuthenticationError, SessionExpiredError,
    PermissionDeniedError                           actor/session problems
    GuardFailure (+ subclasses)                     redemption business rules
    ConnectivityError                               transient failures that
                                                    outlived every retry
    ConfigurationError, SchemaError                 unusable master data or a
                                                    store missing expected
                                                    structure (operator action)

Usage:
    from mealpass.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ExtraMealRequest", resource_id=42)
    raise ValidationError("reason is required", details={"reason": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "MealType").
        resource_id: The key that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness or state rule.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class InvalidTransitionError(Exception):
    """Raised when a workflow transition is not allowed from the current status.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, from_status: str, to_status: str) -> None:
        self.resource = resource
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"{resource} cannot move from '{from_status}' to '{to_status}'")


class PermissionDeniedError(Exception):
    """Raised when the acting session lacks the capability for an action.

    Maps to HTTP 403.
    """

    def __init__(self, message: str, required: str | None = None) -> None:
        self.required = required
        super().__init__(message)


class AuthenticationError(Exception):
    """Raised when no valid actor can be established (bad credentials/token).

    Maps to HTTP 401.
    """


class SessionExpiredError(AuthenticationError):
    """Raised when a session is past its expiry or its actor was deactivated."""


# ── Redemption guard failures ─────────────────────────────────────────────────


class GuardFailure(Exception):
    """A redemption attempt failed a business rule.

    Terminal and never retried.  ``title`` and ``message`` are holder-facing
    and rendered verbatim by the kiosk; ``code`` is machine-readable.
    """

    code = "GUARD_FAILED"
    title = "Não autorizado"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class HolderNotFound(GuardFailure):
    code = "VOUCHER_NOT_FOUND"
    title = "Voucher inválido"

    def __init__(self, voucher_code: str) -> None:
        self.voucher_code = voucher_code
        super().__init__("Código não encontrado no sistema ou usuário inativo.")


class OutOfShift(GuardFailure):
    code = "OUT_OF_SHIFT"
    title = "Acesso negado"


class DailyLimitReached(GuardFailure):
    code = "DAILY_LIMIT_REACHED"
    title = "Limite diário atingido"

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Você já utilizou o limite de {limit} refeições por dia.")


class MealAlreadyUsed(GuardFailure):
    code = "MEAL_ALREADY_USED"
    title = "Refeição já utilizada"

    def __init__(self, meal_type_name: str) -> None:
        self.meal_type_name = meal_type_name
        super().__init__(f"Você já utilizou {meal_type_name} hoje.")


class NoMealAvailable(GuardFailure):
    code = "NO_MEAL_AVAILABLE"
    title = "Horário indisponível"

    def __init__(self, meal_type_name: str | None = None) -> None:
        self.meal_type_name = meal_type_name
        if meal_type_name:
            super().__init__(f"{meal_type_name} não está disponível no momento.")
        else:
            super().__init__("Nenhum tipo de refeição está disponível no momento.")


class DuplicateRedemptionError(MealAlreadyUsed):
    """The storage uniqueness constraint rejected a second ``used`` record.

    Raised at commit time, after the guard chain had passed; this is the
    authoritative duplicate signal when two terminals race.
    """

    code = "DUPLICATE_REDEMPTION"


# ── Infrastructure failures ───────────────────────────────────────────────────


class TransientStoreError(Exception):
    """Explicit network-error signal from a store adapter.  Always retried."""


class ConnectivityError(Exception):
    """A transient failure persisted through every retry attempt.

    Distinct from business failures: the holder should try again, the
    voucher itself is not the problem.  Maps to HTTP 503.
    """

    title = "Erro de conexão"

    def __init__(self, operation: str, attempts: int, last_error: BaseException | None = None) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}"
        )


class ConfigurationError(Exception):
    """Stored master data or schema cannot be used as-is.

    Never retried.  ``remediation`` tells the operator what to fix.
    """

    title = "Erro de configuração"
    DEFAULT_REMEDIATION = "Review the shift and meal type setup in the admin panel."

    def __init__(self, message: str, remediation: str | None = None) -> None:
        self.remediation = remediation or self.DEFAULT_REMEDIATION
        super().__init__(message)


class SchemaError(ConfigurationError):
    """The record store is missing a table or column the code expects."""

    DEFAULT_REMEDIATION = (
        "Database schema is out of date. Run 'flask db upgrade' "
        "(or restart the app to let it create missing tables)."
    )
