"""
Eligibility Guard Chain — may this voucher be exchanged for a meal right now?

Guards run strictly in this order and stop at the first failure:

    1. holder lookup      active holder with this code        HolderNotFound
    2. shift membership   inside assigned shift (+tolerance)  OutOfShift
    3. daily quota        fewer than DAILY_MEAL_LIMIT today   DailyLimitReached
    4. meal-type dedup    selected type not used today        MealAlreadyUsed
    5. availability       a regular meal window is open       NoMealAvailable

No guard writes anything.  Every store call goes through the resilient
executor, so a flaky connection surfaces as ConnectivityError after the
retries rather than as a business failure.

"Today" is the local calendar date of the ``now`` passed in by the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any, Callable, Iterable, Mapping

from mealpass.core.exceptions import (
    ConfigurationError,
    DailyLimitReached,
    HolderNotFound,
    MealAlreadyUsed,
    NoMealAvailable,
    OutOfShift,
)
from mealpass.services.resilience import ResilientExecutor, RetryNotice
from mealpass.services.time_window import (
    InvalidWindowError,
    format_window,
    is_within_window,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedemptionRules:
    daily_limit: int = 2
    shift_tolerance_minutes: int = 15
    meal_type_tolerance_minutes: int = 0

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "RedemptionRules":
        return cls(
            daily_limit=int(config.get("DAILY_MEAL_LIMIT", 2)),
            shift_tolerance_minutes=int(config.get("SHIFT_TOLERANCE_MINUTES", 15)),
            meal_type_tolerance_minutes=int(config.get("MEAL_TYPE_TOLERANCE_MINUTES", 0)),
        )


@dataclass
class EligibilityResult:
    holder: Any
    meals_today: int
    available_meal_types: list = field(default_factory=list)
    selected_meal_type: Any = None


def available_meal_types(meal_types: Iterable, current: time, tolerance_minutes: int = 0) -> list:
    """Active, regular meal types whose window contains ``current``.

    Windows stored with start == end are skipped with a warning; they should
    never have passed catalog validation.
    """
    open_now = []
    for meal_type in meal_types:
        if meal_type.is_special or not meal_type.is_active:
            continue
        try:
            if is_within_window(current, meal_type.start_time, meal_type.end_time, tolerance_minutes):
                open_now.append(meal_type)
        except InvalidWindowError:
            logger.warning("Skipping meal type %s with empty window", meal_type.id)
    return open_now


def check_shift(shift, current: time, tolerance_minutes: int) -> None:
    """Raise OutOfShift unless ``current`` is inside the shift window.

    A holder without an assigned shift always passes.
    """
    if shift is None:
        return
    if not shift.is_active:
        raise OutOfShift(f'O turno "{shift.name}" está inativo no momento.')
    try:
        inside = is_within_window(current, shift.start_time, shift.end_time, tolerance_minutes)
    except InvalidWindowError as exc:
        raise ConfigurationError(
            f"Shift {shift.id} has an empty window",
            remediation=f'Fix the start/end times of shift "{shift.name}".',
        ) from exc
    if not inside:
        raise OutOfShift(
            f'Fora do turno "{shift.name}" ({format_window(shift.start_time, shift.end_time)}'
            f" + {tolerance_minutes}min tolerância). Horário atual: {current:%H:%M}"
        )


class EligibilityGuardChain:
    """Ordered, fail-fast redemption guards."""

    def __init__(self, store, executor: ResilientExecutor, rules: RedemptionRules | None = None) -> None:
        self.store = store
        self.executor = executor
        self.rules = rules or RedemptionRules()

    def evaluate(
        self,
        voucher_code: str,
        now: datetime,
        meal_type_id: int | None = None,
        on_retry: Callable[[RetryNotice], None] | None = None,
    ) -> EligibilityResult:
        """Run every guard for ``voucher_code`` at local instant ``now``.

        Args:
            meal_type_id: meal type the holder intends to redeem.  When None
                the first open regular meal type is selected.

        Returns:
            EligibilityResult with the resolved holder and open meal types.

        Raises:
            GuardFailure subclass on the first failing guard.
            ConnectivityError / SchemaError from the executor.
        """
        today = now.date()
        current = now.time()

        def call(label, fn):
            return self.executor.run(fn, label=label, on_retry=on_retry)

        # 1. Holder lookup
        holder = call("holder lookup", lambda: self.store.find_active_holder_by_code(voucher_code))
        if holder is None:
            logger.info("Voucher %s not found", voucher_code)
            raise HolderNotFound(voucher_code)

        # 2. Shift membership
        shift = None
        if holder.shift_id is not None:
            shift = call("shift lookup", lambda: self.store.get_shift_for_holder(holder.id))
        check_shift(shift, current, self.rules.shift_tolerance_minutes)

        # 3. Daily quota
        meals_today = call(
            "daily meal count",
            lambda: self.store.count_successful_records(holder.id, today),
        )
        if meals_today >= self.rules.daily_limit:
            logger.info(
                "Daily limit reached",
                extra={"holder_id": holder.id, "meals_today": meals_today},
            )
            raise DailyLimitReached(self.rules.daily_limit)

        meal_types = call("meal type list", lambda: self.store.list_active_meal_types(special=False))
        open_now = available_meal_types(meal_types, current, self.rules.meal_type_tolerance_minutes)
        selected = _select(open_now, meal_type_id)
        if meal_type_id is None:
            requested = selected
        else:
            requested = next((m for m in meal_types if m.id == meal_type_id), None)

        # 4. Meal-type de-duplication (an explicit request is checked even when closed)
        if requested is not None:
            already_used = call(
                "meal type usage",
                lambda: self.store.exists_successful_record(holder.id, today, requested.id),
            )
            if already_used:
                raise MealAlreadyUsed(requested.name)

        # 5. Availability
        if selected is None:
            raise NoMealAvailable(requested.name if requested is not None else None)

        return EligibilityResult(
            holder=holder,
            meals_today=meals_today,
            available_meal_types=open_now,
            selected_meal_type=selected,
        )


def _select(open_now: list, meal_type_id: int | None):
    if meal_type_id is None:
        return open_now[0] if open_now else None
    return next((m for m in open_now if m.id == meal_type_id), None)
