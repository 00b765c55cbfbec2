"""
Redemption Flow — the kiosk interaction as an explicit state machine.

    INITIAL ──submit──▶ VALIDATING ──ok──▶ AWAITING_CONFIRMATION ──commit──▶ SUCCESS
       ▲                    │ fail / cancel          │ cancel                  │
       └────────────────────┴────────────────────────┘◀──────start_over───────┘

Actions per state (FLOW_ACTIONS):
    INITIAL                press_digit, backspace, clear, submit
    VALIDATING             cancel
    AWAITING_CONFIRMATION  select_meal_type, commit, cancel
    SUCCESS                start_over

Every terminal failure produces exactly one error notification.  Retry
progress is reported separately through ``progress`` and ``on_progress``
and never counts as a notification.

Validation may run on a worker thread while the UI thread calls
``cancel``.  Each validation carries a generation number; a result whose
generation is no longer current is discarded.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from mealpass.core.exceptions import (
    ConfigurationError,
    ConnectivityError,
    GuardFailure,
    InvalidTransitionError,
    NoMealAvailable,
    ValidationError,
)
from mealpass.services.eligibility import available_meal_types
from mealpass.services.redemption_service import RedemptionService, new_idempotency_key
from mealpass.services.resilience import RetryNotice
from mealpass.services.time_window import local_now

logger = logging.getLogger(__name__)

CODE_LENGTH = 4


class RedemptionState(str, enum.Enum):
    INITIAL = "initial"
    VALIDATING = "validating"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SUCCESS = "success"


FLOW_ACTIONS = {
    RedemptionState.INITIAL: ["press_digit", "backspace", "clear", "submit"],
    RedemptionState.VALIDATING: ["cancel"],
    RedemptionState.AWAITING_CONFIRMATION: ["select_meal_type", "commit", "cancel"],
    RedemptionState.SUCCESS: ["start_over"],
}


@dataclass(frozen=True)
class Notification:
    level: str          # success | error | warning
    title: str
    message: str
    code: str | None = None


def failure_notification(exc: Exception) -> Notification:
    """Map a terminal failure to the single notification shown for it."""
    if isinstance(exc, GuardFailure):
        return Notification("error", exc.title, exc.message, exc.code)
    if isinstance(exc, ConnectivityError):
        return Notification(
            "error",
            ConnectivityError.title,
            "Não foi possível conectar ao banco de dados. "
            "Verifique sua conexão com a internet e tente novamente.",
            "CONNECTIVITY",
        )
    if isinstance(exc, ConfigurationError):
        return Notification(
            "error",
            exc.title,
            "Problema na configuração do sistema. Entre em contato com o suporte.",
            "CONFIGURATION",
        )
    if isinstance(exc, ValidationError):
        return Notification("error", "Código incompleto", str(exc), "VALIDATION")
    return Notification("error", "Erro de validação", "Tente novamente em alguns segundos.", "UNEXPECTED")


class RedemptionFlow:
    """One kiosk's redemption interaction."""

    def __init__(
        self,
        service: RedemptionService,
        *,
        clock: Callable[[], datetime] | None = None,
        availability=None,
        notify: Callable[[Notification], None] | None = None,
        on_progress: Callable[[RetryNotice], None] | None = None,
    ) -> None:
        self.service = service
        self._clock = clock or local_now
        self._availability = availability
        self._notify = notify
        self._on_progress = on_progress
        self._lock = threading.RLock()
        self._generation = 0

        self.notifications: list[Notification] = []
        self.state = RedemptionState.INITIAL
        self.code = ""
        self.holder = None
        self.available_meal_types: list = []
        self.selected_meal_type = None
        self.record = None
        self.progress: str | None = None
        self._idempotency_key: str | None = None

    # ── Introspection ────────────────────────────────────────────────────

    def available_transitions(self) -> list[str]:
        return list(FLOW_ACTIONS[self.state])

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "state": self.state.value,
                "code_length": len(self.code),
                "holder": self.holder.to_dict() if self.holder is not None else None,
                "available_meal_types": [m.to_dict() for m in self.available_meal_types],
                "selected_meal_type_id": self.selected_meal_type.id if self.selected_meal_type else None,
                "record": self.record.to_dict() if self.record is not None else None,
                "progress": self.progress,
                "available_transitions": self.available_transitions(),
            }

    # ── Code entry ───────────────────────────────────────────────────────

    def press_digit(self, digit) -> None:
        with self._lock:
            self._require("press_digit")
            text = str(digit)
            if len(text) != 1 or not text.isdigit():
                raise ValidationError("Only digits 0-9 can be entered", details={"digit": text})
            if len(self.code) < CODE_LENGTH:
                self.code += text

    def backspace(self) -> None:
        with self._lock:
            self._require("backspace")
            self.code = self.code[:-1]

    def clear(self) -> None:
        with self._lock:
            self._require("clear")
            self.code = ""

    # ── Validation ───────────────────────────────────────────────────────

    def submit(self) -> bool:
        """Validate the entered code.  Returns True when confirmation is next."""
        with self._lock:
            self._require("submit")
            if len(self.code) != CODE_LENGTH:
                self._emit(Notification(
                    "error", "Código incompleto", "Por favor, digite um código de 4 dígitos.", "VALIDATION",
                ))
                return False
            code = self.code
            now = self._clock()
            self._generation += 1
            generation = self._generation
            self.state = RedemptionState.VALIDATING
            self.progress = None

        try:
            open_now = self._open_meal_types(now, generation)
            if not open_now:
                raise NoMealAvailable()
            result = self.service.validate(code, now, on_retry=self._progress_callback(generation))
        except Exception as exc:
            with self._lock:
                if generation != self._generation:
                    logger.info("Discarding failure of superseded validation: %s", exc)
                    return False
                self._reset()
                self._emit(failure_notification(exc))
            if isinstance(exc, (GuardFailure, ConnectivityError, ConfigurationError, ValidationError)):
                return False
            raise

        with self._lock:
            if generation != self._generation:
                logger.info("Discarding result of superseded validation", extra={"holder_id": result.holder.id})
                return False
            self.holder = result.holder
            self.available_meal_types = result.available_meal_types
            self.selected_meal_type = result.selected_meal_type
            self._idempotency_key = new_idempotency_key()
            self.progress = None
            self.state = RedemptionState.AWAITING_CONFIRMATION
            self._emit(Notification("success", "Voucher válido!", f"Bem-vindo(a), {self.holder.full_name}"))
            return True

    # ── Confirmation ─────────────────────────────────────────────────────

    def select_meal_type(self, meal_type_id: int) -> None:
        with self._lock:
            self._require("select_meal_type")
            current = self._clock().time()
            still_open = available_meal_types(
                self.available_meal_types, current, self.service.rules.meal_type_tolerance_minutes,
            )
            chosen = next((m for m in still_open if m.id == meal_type_id), None)
            if chosen is None:
                raise ValidationError(
                    "Meal type is not open right now",
                    details={"meal_type_id": meal_type_id},
                )
            if self.selected_meal_type is None or chosen.id != self.selected_meal_type.id:
                # A different meal is a different logical redemption
                self._idempotency_key = new_idempotency_key()
            self.selected_meal_type = chosen

    def commit(self):
        """Write the meal record.  Returns it, or None when the commit failed."""
        with self._lock:
            self._require("commit")
            generation = self._generation
            holder, meal_type, key = self.holder, self.selected_meal_type, self._idempotency_key
            now = self._clock()
            self.progress = None

        try:
            record = self.service.commit(
                holder, meal_type, now, key, on_retry=self._progress_callback(generation),
            )
        except Exception as exc:
            with self._lock:
                if generation != self._generation:
                    logger.info("Discarding failure of superseded commit: %s", exc)
                    return None
                self.progress = None
                self._emit(failure_notification(exc))
            if isinstance(exc, (GuardFailure, ConnectivityError, ConfigurationError)):
                return None
            raise

        with self._lock:
            if generation != self._generation:
                # Row is written; a later replay with the same key resolves to it
                logger.warning("Commit finished after cancel", extra={"record_id": record.id})
                return None
            self.record = record
            self.progress = None
            self.state = RedemptionState.SUCCESS
            self._emit(Notification(
                "success", "Refeição registrada!", "Sua refeição foi registrada com sucesso. Bom apetite!",
            ))
            return record

    # ── Reset paths ──────────────────────────────────────────────────────

    def cancel(self) -> None:
        with self._lock:
            self._require("cancel")
            self._generation += 1
            self._reset()

    def start_over(self) -> None:
        with self._lock:
            self._require("start_over")
            self._reset()

    # ── Internals ────────────────────────────────────────────────────────

    def _require(self, action: str) -> None:
        if action not in FLOW_ACTIONS[self.state]:
            raise InvalidTransitionError("RedemptionFlow", self.state.value, action)

    def _reset(self) -> None:
        self.state = RedemptionState.INITIAL
        self.code = ""
        self.holder = None
        self.available_meal_types = []
        self.selected_meal_type = None
        self.record = None
        self.progress = None
        self._idempotency_key = None

    def _emit(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if self._notify is not None:
            self._notify(notification)

    def _open_meal_types(self, now: datetime, generation: int) -> list:
        if self._availability is not None:
            return self._availability.snapshot().meal_types
        return self.service.open_meal_types(now, on_retry=self._progress_callback(generation))

    def _progress_callback(self, generation: int):
        def on_retry(notice: RetryNotice) -> None:
            with self._lock:
                if generation != self._generation:
                    return
                self.progress = notice.message
            if self._on_progress is not None:
                self._on_progress(notice)

        return on_retry
