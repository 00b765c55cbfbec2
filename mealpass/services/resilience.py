"""
Resilient Operation Executor — bounded exponential-backoff retry.

Every network-bound step of the redemption and extra-meal flows (holder
lookup, record counts, inserts) is wrapped by ``ResilientExecutor.run``.

Policy:
  - Transient failures (connection refused/reset, timeouts, DNS, pool
    timeouts, dropped DB connections, explicit TransientStoreError) are
    retried up to ``max_retries`` times (4 attempts total by default).
  - Schema failures (missing table/column) raise SchemaError at once, with
    remediation guidance for the operator.
  - Anything else (validation, not-found, guard failures, programming
    errors) propagates immediately and untouched.
  - Delay before retry N (0-based) is ``base_delay * 2**N`` (1 s, 2 s, 4 s),
    each delay capped by ``max_delay`` and the cumulative wait capped by
    ``max_total_delay``.
  - Exhaustion raises ConnectivityError, never a not-found.

Retried writes must carry an idempotency key (see record_store) so that a
retry after a lost acknowledgement cannot create a second row.

Testability: pass ``sleep=`` to record delays instead of waiting.
"""

from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, TypeVar

from sqlalchemy import exc as sa_exc

from mealpass.core.exceptions import (
    ConnectivityError,
    SchemaError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Failure classes ──────────────────────────────────────────────────────────
TRANSIENT = "transient"
SCHEMA = "schema"
PERMANENT = "permanent"

_SCHEMA_MARKERS = (
    "no such table",
    "no such column",
    "has no column named",
    "undefinedtable",
    "undefinedcolumn",
    "does not exist",
)

_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TransientStoreError,
    ConnectionError,
    TimeoutError,
    socket.gaierror,
    socket.timeout,
    sa_exc.DisconnectionError,
    sa_exc.TimeoutError,
    sa_exc.InterfaceError,
)


def _looks_like_schema_error(exc: BaseException) -> bool:
    text = f"{type(getattr(exc, 'orig', exc)).__name__} {exc}".lower()
    return any(marker in text for marker in _SCHEMA_MARKERS)


def classify_failure(exc: BaseException) -> str:
    """Return TRANSIENT, SCHEMA or PERMANENT for an exception."""
    if isinstance(exc, SchemaError):
        return SCHEMA
    if isinstance(exc, _TRANSIENT_TYPES):
        return TRANSIENT
    if isinstance(exc, (sa_exc.OperationalError, sa_exc.ProgrammingError)):
        if _looks_like_schema_error(exc):
            return SCHEMA
        if isinstance(exc, sa_exc.OperationalError):
            return TRANSIENT
        return PERMANENT
    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return TRANSIENT
    return PERMANENT


# ── Policy ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float | None = 8.0
    max_total_delay: float | None = 15.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_index: int) -> float:
        """Backoff before retry ``retry_index`` (0-based), per-delay cap applied."""
        delay = self.base_delay * (2 ** retry_index)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return max(delay, 0.0)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "RetryPolicy":
        return cls(
            max_retries=int(config.get("RETRY_MAX_RETRIES", 3)),
            base_delay=float(config.get("RETRY_BASE_DELAY", 1.0)),
            max_delay=config.get("RETRY_MAX_DELAY", 8.0),
            max_total_delay=config.get("RETRY_MAX_TOTAL_DELAY", 15.0),
        )


@dataclass(frozen=True)
class RetryNotice:
    """Progress notification emitted before each retry."""

    label: str
    attempt: int          # the attempt about to run (2..max_attempts)
    max_attempts: int
    delay: float
    error: str

    @property
    def message(self) -> str:
        return f"Tentativa {self.attempt} de {self.max_attempts} - Aguarde..."


# ── Executor ─────────────────────────────────────────────────────────────────


class ResilientExecutor:
    """Run one logical data operation with retry-on-transient-failure."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def run(
        self,
        operation: Callable[[], T],
        *,
        label: str = "operation",
        on_retry: Callable[[RetryNotice], None] | None = None,
    ) -> T:
        """Execute ``operation`` and return its result.

        Raises:
            ConnectivityError: every attempt failed with a transient error.
            SchemaError: the store is missing expected structure.
            Exception: any permanent failure raised by ``operation``.
        """
        policy = self.policy
        waited = 0.0
        last_error: BaseException | None = None

        for attempt in range(policy.max_attempts):
            try:
                return operation()
            except Exception as exc:
                kind = classify_failure(exc)
                if kind == SCHEMA:
                    if isinstance(exc, SchemaError):
                        raise
                    logger.error("Schema error during %s: %s", label, exc)
                    raise SchemaError(f"{label}: {exc}") from exc
                if kind == PERMANENT:
                    raise

                last_error = exc
                logger.warning(
                    "%s failed attempt=%d/%d error=%s",
                    label, attempt + 1, policy.max_attempts, exc,
                )

            if attempt + 1 >= policy.max_attempts:
                break

            delay = policy.delay_for(attempt)
            if policy.max_total_delay is not None:
                delay = min(delay, max(policy.max_total_delay - waited, 0.0))

            notice = RetryNotice(
                label=label,
                attempt=attempt + 2,
                max_attempts=policy.max_attempts,
                delay=delay,
                error=str(last_error),
            )
            if on_retry is not None:
                on_retry(notice)
            logger.info("Retrying %s in %.2fs (attempt %d)", label, delay, attempt + 2)
            if delay > 0:
                self._sleep(delay)
            waited += delay

        logger.error("%s gave up after %d attempts", label, policy.max_attempts)
        raise ConnectivityError(label, policy.max_attempts, last_error) from last_error
