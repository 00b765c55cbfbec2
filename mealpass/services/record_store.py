"""
Record store — table-qualified reads and writes used by the core flows.

This is the only module of the redemption and extra-meal flows that touches
``db.session``.  Every method is a single logical operation suitable for
wrapping in ResilientExecutor.run: on any SQLAlchemy error the session is
rolled back before the exception propagates, so a retry starts clean.

Writes take plain value objects (NewMealRecord, dicts) rather than ORM
instances so that each retry builds a fresh row.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from mealpass.core.exceptions import ConflictError, DuplicateRedemptionError, NotFoundError
from mealpass.models import db
from mealpass.models.auth import Manager
from mealpass.models.base import utcnow
from mealpass.models.catalog import Company, MealType, Shift
from mealpass.models.extra_meal import ExtraMealRequest
from mealpass.models.holder import VoucherHolder
from mealpass.models.meal_record import MealRecord

logger = logging.getLogger(__name__)


def _rollback_on_error(fn):
    """Roll the session back when a store operation fails, then re-raise."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError:
            db.session.rollback()
            raise

    return wrapper


@dataclass(frozen=True)
class NewMealRecord:
    """Immutable description of a redemption about to be written."""

    holder_id: int
    meal_type_id: int
    meal_type_name: str
    voucher_code: str
    meal_date: date
    meal_time: time
    price: Decimal
    idempotency_key: str
    validation_method: str = "voucher"
    status: str = "used"
    validated_by: str | None = None
    notes: str | None = None


class SqlRecordStore:
    """SQLAlchemy-backed implementation of the record-store operations."""

    # ── Voucher holders / shifts ─────────────────────────────────────────

    @_rollback_on_error
    def find_active_holder_by_code(self, code: str) -> VoucherHolder | None:
        stmt = (
            select(VoucherHolder)
            .where(VoucherHolder.voucher_code == code, VoucherHolder.is_active.is_(True))
            .order_by(VoucherHolder.id)
            .limit(1)
        )
        return db.session.execute(stmt).unique().scalar_one_or_none()

    @_rollback_on_error
    def get_holder(self, holder_id: int) -> VoucherHolder | None:
        return db.session.get(VoucherHolder, holder_id)

    @_rollback_on_error
    def get_shift_for_holder(self, holder_id: int) -> Shift | None:
        stmt = (
            select(Shift)
            .join(VoucherHolder, VoucherHolder.shift_id == Shift.id)
            .where(VoucherHolder.id == holder_id)
        )
        return db.session.execute(stmt).scalar_one_or_none()

    # ── Meal types ───────────────────────────────────────────────────────

    @_rollback_on_error
    def list_active_meal_types(self, special: bool | None = None) -> list[MealType]:
        stmt = select(MealType).where(MealType.is_active.is_(True))
        if special is not None:
            stmt = stmt.where(MealType.is_special.is_(special))
        stmt = stmt.order_by(MealType.start_time, MealType.id)
        return list(db.session.execute(stmt).unique().scalars())

    @_rollback_on_error
    def get_meal_type(self, meal_type_id: int) -> MealType | None:
        return db.session.get(MealType, meal_type_id)

    # ── Meal records ─────────────────────────────────────────────────────

    @_rollback_on_error
    def count_successful_records(self, holder_id: int, day: date) -> int:
        stmt = select(func.count(MealRecord.id)).where(
            MealRecord.holder_id == holder_id,
            MealRecord.meal_date == day,
            MealRecord.status == "used",
        )
        return int(db.session.execute(stmt).scalar() or 0)

    @_rollback_on_error
    def exists_successful_record(self, holder_id: int, day: date, meal_type_id: int) -> bool:
        stmt = select(MealRecord.id).where(
            MealRecord.holder_id == holder_id,
            MealRecord.meal_date == day,
            MealRecord.meal_type_id == meal_type_id,
            MealRecord.status == "used",
        ).limit(1)
        return db.session.execute(stmt).first() is not None

    @_rollback_on_error
    def find_meal_record_by_idempotency_key(self, key: str) -> MealRecord | None:
        return self._find_by_idempotency_key(MealRecord, key)

    def insert_meal_record(self, new: NewMealRecord) -> MealRecord:
        """Insert a redemption; idempotent on ``new.idempotency_key``.

        Raises:
            DuplicateRedemptionError: a ``used`` record already exists for the
                same (holder, date, meal type), written by someone else.
        """
        values = asdict(new)
        meal_type_name = values.pop("meal_type_name")
        record = MealRecord(**values)
        try:
            db.session.add(record)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            existing = self._find_by_idempotency_key(MealRecord, new.idempotency_key)
            if existing is not None:
                if (existing.holder_id, existing.meal_type_id) != (new.holder_id, new.meal_type_id):
                    raise ConflictError("MealRecord", "idempotency_key", new.idempotency_key) from exc
                logger.info(
                    "Meal record replay resolved to existing row",
                    extra={"record_id": existing.id, "idempotency_key": new.idempotency_key},
                )
                return existing
            if self.exists_successful_record(new.holder_id, new.meal_date, new.meal_type_id):
                raise DuplicateRedemptionError(meal_type_name) from exc
            raise
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return record

    # ── Extra meal requests ──────────────────────────────────────────────

    def insert_extra_meal_request(self, values: dict) -> ExtraMealRequest:
        request_row = ExtraMealRequest(**values)
        try:
            db.session.add(request_row)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = self._find_by_idempotency_key(ExtraMealRequest, values.get("idempotency_key"))
            if existing is not None:
                return existing
            raise
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return request_row

    @_rollback_on_error
    def get_extra_meal_request(self, request_id: int) -> ExtraMealRequest | None:
        return db.session.get(ExtraMealRequest, request_id)

    @_rollback_on_error
    def update_extra_meal_request(self, request_id: int, patch: dict) -> ExtraMealRequest:
        row = db.session.get(ExtraMealRequest, request_id)
        if row is None:
            raise NotFoundError(resource="ExtraMealRequest", resource_id=request_id)
        for field, value in patch.items():
            setattr(row, field, value)
        db.session.commit()
        return row

    @_rollback_on_error
    def transition_extra_meal_request(
        self, request_id: int, expected_status: str, patch: dict,
    ) -> ExtraMealRequest | None:
        """Apply ``patch`` only if the row is still in ``expected_status``.

        Returns the refreshed row, or None when another actor moved it first.
        """
        result = db.session.execute(
            update(ExtraMealRequest)
            .where(ExtraMealRequest.id == request_id, ExtraMealRequest.status == expected_status)
            .values(**patch, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        if result.rowcount == 0:
            return None
        row = db.session.get(ExtraMealRequest, request_id)
        db.session.refresh(row)
        return row

    @_rollback_on_error
    def delete_extra_meal_request(self, request_id: int) -> None:
        row = db.session.get(ExtraMealRequest, request_id)
        if row is None:
            raise NotFoundError(resource="ExtraMealRequest", resource_id=request_id)
        db.session.delete(row)
        db.session.commit()

    @_rollback_on_error
    def query_extra_meal_requests(
        self,
        *,
        status: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        company_id: int | None = None,
        search: str | None = None,
    ) -> list[ExtraMealRequest]:
        stmt = select(ExtraMealRequest).outerjoin(
            VoucherHolder, VoucherHolder.id == ExtraMealRequest.holder_id,
        )
        if status:
            stmt = stmt.where(ExtraMealRequest.status == status)
        if date_from:
            stmt = stmt.where(ExtraMealRequest.meal_date >= date_from)
        if date_to:
            stmt = stmt.where(ExtraMealRequest.meal_date <= date_to)
        if company_id:
            stmt = stmt.where(VoucherHolder.company_id == company_id)
        if search:
            like = f"%{search.lower()}%"
            stmt = stmt.outerjoin(Company, Company.id == VoucherHolder.company_id).where(
                or_(
                    func.lower(VoucherHolder.full_name).like(like),
                    func.lower(ExtraMealRequest.external_name).like(like),
                    func.lower(ExtraMealRequest.reason).like(like),
                    func.lower(ExtraMealRequest.external_company).like(like),
                    func.lower(Company.name).like(like),
                )
            )
        stmt = stmt.order_by(ExtraMealRequest.created_at.desc(), ExtraMealRequest.id.desc())
        return list(db.session.execute(stmt).unique().scalars())

    # ── Managers / health ────────────────────────────────────────────────

    @_rollback_on_error
    def get_manager(self, manager_id: int) -> Manager | None:
        return db.session.get(Manager, manager_id)

    @_rollback_on_error
    def find_manager_by_username(self, username: str) -> Manager | None:
        stmt = select(Manager).where(func.lower(Manager.username) == username.lower())
        return db.session.execute(stmt).scalar_one_or_none()

    @_rollback_on_error
    def touch_manager_login(self, manager_id: int, when: datetime) -> None:
        row = db.session.get(Manager, manager_id)
        if row is None:
            raise NotFoundError(resource="Manager", resource_id=manager_id)
        row.last_login_at = when
        db.session.commit()

    @_rollback_on_error
    def ping(self) -> bool:
        db.session.execute(db.text("SELECT 1"))
        return True

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _find_by_idempotency_key(model, key: str | None):
        if not key:
            return None
        stmt = select(model).where(model.idempotency_key == key)
        return db.session.execute(stmt).unique().scalar_one_or_none()
