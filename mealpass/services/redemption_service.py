"""
Redemption Service — validate a voucher and commit the meal record.

Two entry points share the same guard chain:

    validate()  read-only; returns the holder and the open meal types
    commit()    writes one immutable MealRecord for an already-validated
                holder (used by RedemptionFlow after confirmation)
    redeem()    validate + commit in one call (used by the HTTP API, where
                no interactive confirmation step exists)

The idempotency key is the caller's.  RedemptionFlow generates one per
logical redemption; HTTP clients may send their own so that a resubmitted
request after a timeout resolves to the original record.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable

from mealpass.core.exceptions import ConflictError, ValidationError
from mealpass.services.eligibility import (
    EligibilityGuardChain,
    EligibilityResult,
    RedemptionRules,
    available_meal_types,
)
from mealpass.services.record_store import NewMealRecord, SqlRecordStore
from mealpass.services.resilience import ResilientExecutor, RetryNotice, RetryPolicy

logger = logging.getLogger(__name__)

VOUCHER_CODE_RE = re.compile(r"^\d{4}$")


def validate_voucher_code(code) -> str:
    """Return the normalised code or raise ValidationError."""
    text = str(code or "").strip()
    if not VOUCHER_CODE_RE.match(text):
        raise ValidationError(
            "Por favor, digite um código de 4 dígitos.",
            details={"voucher_code": "must be exactly 4 digits"},
        )
    return text


def new_idempotency_key() -> str:
    return uuid.uuid4().hex


class RedemptionService:
    """Guard chain + record write, bound to one store and executor."""

    def __init__(self, store, executor: ResilientExecutor | None = None, rules: RedemptionRules | None = None):
        self.store = store
        self.executor = executor or ResilientExecutor()
        self.rules = rules or RedemptionRules()
        self.guards = EligibilityGuardChain(store, self.executor, self.rules)

    @classmethod
    def from_config(cls, config, store=None) -> "RedemptionService":
        return cls(
            store or SqlRecordStore(),
            ResilientExecutor(RetryPolicy.from_config(config)),
            RedemptionRules.from_config(config),
        )

    def open_meal_types(self, now: datetime, on_retry: Callable[[RetryNotice], None] | None = None) -> list:
        """Regular meal types whose window is open at ``now``."""
        meal_types = self.executor.run(
            lambda: self.store.list_active_meal_types(special=False),
            label="meal type list",
            on_retry=on_retry,
        )
        return available_meal_types(meal_types, now.time(), self.rules.meal_type_tolerance_minutes)

    def validate(
        self,
        voucher_code: str,
        now: datetime,
        meal_type_id: int | None = None,
        on_retry: Callable[[RetryNotice], None] | None = None,
    ) -> EligibilityResult:
        code = validate_voucher_code(voucher_code)
        result = self.guards.evaluate(code, now, meal_type_id=meal_type_id, on_retry=on_retry)
        logger.info(
            "Voucher validated",
            extra={
                "holder_id": result.holder.id,
                "meal_type_id": result.selected_meal_type.id,
                "meals_today": result.meals_today,
            },
        )
        return result

    def build_record(self, holder, meal_type, now: datetime, idempotency_key: str) -> NewMealRecord:
        """Immutable record for ``holder`` redeeming ``meal_type`` at local ``now``."""
        return NewMealRecord(
            holder_id=holder.id,
            meal_type_id=meal_type.id,
            meal_type_name=meal_type.name,
            voucher_code=holder.voucher_code,
            meal_date=now.date(),
            meal_time=now.time().replace(microsecond=0, tzinfo=None),
            price=Decimal(meal_type.price or 0),
            idempotency_key=idempotency_key,
            validation_method="voucher",
            status="used",
            notes=f"Refeição registrada via voucher - {meal_type.name}",
        )

    def commit(
        self,
        holder,
        meal_type,
        now: datetime,
        idempotency_key: str,
        on_retry: Callable[[RetryNotice], None] | None = None,
    ):
        """Insert the meal record through the executor.

        Raises:
            DuplicateRedemptionError: the uniqueness index rejected the row.
            ConflictError: the key already belongs to another redemption.
            ConnectivityError: every retry failed.
        """
        new = self.build_record(holder, meal_type, now, idempotency_key)
        record = self.executor.run(
            lambda: self.store.insert_meal_record(new),
            label="meal record insert",
            on_retry=on_retry,
        )
        logger.info(
            "Meal redeemed",
            extra={
                "record_id": record.id,
                "holder_id": holder.id,
                "meal_type_id": meal_type.id,
                "idempotency_key": idempotency_key,
            },
        )
        return record

    def redeem(
        self,
        voucher_code: str,
        meal_type_id: int | None,
        now: datetime,
        idempotency_key: str | None = None,
        on_retry: Callable[[RetryNotice], None] | None = None,
    ):
        """Validate and commit in one step.

        A replay with an already-committed ``idempotency_key`` returns the
        original record without running the guards again, so a client retry
        after a lost response is not reported as "already used".

        Raises:
            ConflictError: the key belongs to a record for another voucher
                code or meal type.
        """
        code = validate_voucher_code(voucher_code)
        if idempotency_key:
            existing = self.executor.run(
                lambda: self.store.find_meal_record_by_idempotency_key(idempotency_key),
                label="meal record replay lookup",
                on_retry=on_retry,
            )
            if existing is not None:
                if existing.voucher_code != code or (
                    meal_type_id is not None and existing.meal_type_id != meal_type_id
                ):
                    logger.warning(
                        "Idempotency key reused for a different redemption",
                        extra={"record_id": existing.id, "idempotency_key": idempotency_key},
                    )
                    raise ConflictError("MealRecord", "idempotency_key", idempotency_key)
                return existing
        result = self.validate(code, now, meal_type_id=meal_type_id, on_retry=on_retry)
        return self.commit(
            result.holder,
            result.selected_meal_type,
            now,
            idempotency_key or new_idempotency_key(),
            on_retry=on_retry,
        )
