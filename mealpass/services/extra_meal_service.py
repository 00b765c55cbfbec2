"""
Extra-Meal Request Workflow — supplementary meals outside the voucher quota.

Lifecycle (EXTRA_MEAL_TRANSITIONS):
    pending → approved   set approved_by_*, approved_at, optional note
    pending → rejected   set approved_by_*, approved_at, mandatory justification

Rules:
  - The requester is an InternalHolder (active voucher holder) or an
    ExternalVisitor (name + company, document optional).
  - The meal type must be special and active.  Its price is captured.
  - meal_date may not be in the past (local calendar; today is allowed).
  - Approve / reject need role super_admin or admin, or the ``rh-extras``
    capability.  The actor is re-validated against the store on every call.
  - An approved request cannot be deleted, and can only be edited by an
    actor with approval permission.  Status never changes through edit.
  - A rejection's justification is checked before anything is written.

Usage:
    from mealpass.services.extra_meal_service import ExtraMealWorkflow

    workflow = ExtraMealWorkflow.from_config(app.config)
    row = workflow.create_request(session, InternalHolder(7), meal_type_id=3,
                                  meal_date=date(2025, 3, 1), meal_time="12:00",
                                  reason="Overtime", requested_by_name="Ana")
    workflow.reject_request(session, row.id, "Duplicate request")
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Callable

from mealpass.core.exceptions import (
    AuthenticationError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from mealpass.models.base import utcnow
from mealpass.models.extra_meal import (
    EXTRA_MEAL_STATUSES,
    ExternalVisitor,
    InternalHolder,
    validate_extra_meal_transition,
)
from mealpass.services import session_service
from mealpass.services.record_store import SqlRecordStore
from mealpass.services.resilience import ResilientExecutor, RetryPolicy
from mealpass.services.session_service import ActorSession, has_approval_permission
from mealpass.services.time_window import is_date_not_in_past, local_now, parse_time_of_day

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({
    "requester",
    "meal_type_id",
    "meal_date",
    "meal_time",
    "reason",
    "requested_by_name",
    "notes",
})


class ExtraMealWorkflow:
    """Create, edit and decide extra-meal requests."""

    def __init__(
        self,
        store,
        executor: ResilientExecutor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.executor = executor or ResilientExecutor()
        self._clock = clock or local_now

    @classmethod
    def from_config(cls, config, store=None) -> "ExtraMealWorkflow":
        tz_name = config.get("LOCAL_TIMEZONE")
        return cls(
            store or SqlRecordStore(),
            ResilientExecutor(RetryPolicy.from_config(config)),
            clock=lambda: local_now(tz_name),
        )

    def _run(self, label, fn):
        return self.executor.run(fn, label=label)

    # ── Authorization ────────────────────────────────────────────────────

    def _current_actor(self, actor: ActorSession) -> ActorSession:
        if actor is None:
            raise AuthenticationError("Login required")
        return self._run("session revalidation", lambda: session_service.revalidate(self.store, actor))

    def can_approve(self, actor: ActorSession) -> bool:
        """Approval capability, checked against the actor's current record."""
        return has_approval_permission(self._current_actor(actor))

    def _require_approver(self, actor: ActorSession) -> ActorSession:
        current = self._current_actor(actor)
        if not has_approval_permission(current):
            logger.warning("Approval refused", extra={"actor_id": current.actor_id})
            raise PermissionDeniedError(
                "Você não tem permissão para aprovar ou rejeitar refeições extras.",
                required="rh-extras",
            )
        return current

    # ── Validation helpers ───────────────────────────────────────────────

    def _special_meal_type(self, meal_type_id):
        meal_type = self._run("meal type lookup", lambda: self.store.get_meal_type(meal_type_id))
        if meal_type is None:
            raise NotFoundError(resource="MealType", resource_id=meal_type_id)
        if not meal_type.is_active:
            raise ValidationError("Meal type is inactive", details={"meal_type_id": "inactive"})
        if not meal_type.is_special:
            raise ValidationError(
                "Extra meals must use a special meal type",
                details={"meal_type_id": "not special"},
            )
        return meal_type

    def _check_requester(self, requester) -> None:
        if isinstance(requester, InternalHolder):
            holder = self._run("holder lookup", lambda: self.store.get_holder(requester.holder_id))
            if holder is None:
                raise NotFoundError(resource="VoucherHolder", resource_id=requester.holder_id)
            if not holder.is_active:
                raise ValidationError("Holder is inactive", details={"holder_id": "inactive"})
        elif isinstance(requester, ExternalVisitor):
            missing = {}
            if not (requester.name or "").strip():
                missing["external_name"] = "required"
            if not (requester.company or "").strip():
                missing["external_company"] = "required"
            if missing:
                raise ValidationError("External visitor needs a name and a company", details=missing)
        else:
            raise ValidationError("requester must be an internal holder or an external visitor")

    def _check_date(self, meal_date: date) -> None:
        today = self._clock().date()
        if not is_date_not_in_past(meal_date, today):
            raise ValidationError(
                "A data da refeição não pode ser no passado.",
                details={"meal_date": "in the past"},
            )

    @staticmethod
    def _required_text(value, field: str) -> str:
        text = (value or "").strip()
        if not text:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return text

    # ── Create ───────────────────────────────────────────────────────────

    def create_request(
        self,
        actor: ActorSession,
        requester: InternalHolder | ExternalVisitor,
        meal_type_id: int,
        meal_date: date,
        meal_time,
        reason: str,
        requested_by_name: str,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ):
        """Create a pending request.  Replays with the same key return the first row."""
        current = self._current_actor(actor)
        reason = self._required_text(reason, "reason")
        requested_by_name = self._required_text(requested_by_name, "requested_by_name")
        try:
            parsed_time = parse_time_of_day(meal_time)
        except ValueError as exc:
            raise ValidationError(str(exc), details={"meal_time": "invalid"}) from exc
        self._check_requester(requester)
        meal_type = self._special_meal_type(meal_type_id)
        self._check_date(meal_date)

        values = _requester_columns(requester)
        values.update(
            meal_type_id=meal_type.id,
            meal_date=meal_date,
            meal_time=parsed_time,
            reason=reason,
            requested_by_name=requested_by_name,
            price=Decimal(meal_type.price or 0),
            status="pending",
            notes=notes,
            idempotency_key=idempotency_key,
        )
        row = self._run("extra meal insert", lambda: self.store.insert_extra_meal_request(values))
        logger.info(
            "Extra meal requested",
            extra={"extra_meal_id": row.id, "actor_id": current.actor_id, "meal_type_id": meal_type.id},
        )
        return row

    # ── Edit / delete ────────────────────────────────────────────────────

    def get_request(self, request_id: int):
        row = self._run("extra meal lookup", lambda: self.store.get_extra_meal_request(request_id))
        if row is None:
            raise NotFoundError(resource="ExtraMealRequest", resource_id=request_id)
        return row

    def update_request(self, actor: ActorSession, request_id: int, changes: dict):
        """Edit request fields.  ``status`` is not editable here."""
        if "status" in changes:
            raise ValidationError(
                "Status changes only through approve/reject",
                details={"status": "read-only"},
            )
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown fields: {', '.join(sorted(unknown))}",
                details={f: "unknown" for f in sorted(unknown)},
            )

        current = self._current_actor(actor)
        row = self.get_request(request_id)
        if row.status == "approved" and not has_approval_permission(current):
            raise PermissionDeniedError(
                "Refeições aprovadas só podem ser editadas por quem pode aprovar.",
                required="rh-extras",
            )

        patch: dict = {}
        if "requester" in changes:
            self._check_requester(changes["requester"])
            patch.update(_requester_columns(changes["requester"]))
        if "meal_type_id" in changes and changes["meal_type_id"] != row.meal_type_id:
            meal_type = self._special_meal_type(changes["meal_type_id"])
            patch["meal_type_id"] = meal_type.id
            patch["price"] = Decimal(meal_type.price or 0)
        if "meal_date" in changes:
            self._check_date(changes["meal_date"])
            patch["meal_date"] = changes["meal_date"]
        if "meal_time" in changes:
            try:
                patch["meal_time"] = parse_time_of_day(changes["meal_time"])
            except ValueError as exc:
                raise ValidationError(str(exc), details={"meal_time": "invalid"}) from exc
        for field in ("reason", "requested_by_name"):
            if field in changes:
                patch[field] = self._required_text(changes[field], field)
        if "notes" in changes:
            patch["notes"] = changes["notes"]

        if not patch:
            return row
        row = self._run("extra meal update", lambda: self.store.update_extra_meal_request(request_id, patch))
        logger.info("Extra meal updated", extra={"extra_meal_id": request_id, "actor_id": current.actor_id})
        return row

    def delete_request(self, actor: ActorSession, request_id: int) -> None:
        current = self._current_actor(actor)
        row = self.get_request(request_id)
        if row.status == "approved":
            raise InvalidTransitionError("ExtraMealRequest", row.status, "deleted")
        self._run("extra meal delete", lambda: self.store.delete_extra_meal_request(request_id))
        logger.info("Extra meal deleted", extra={"extra_meal_id": request_id, "actor_id": current.actor_id})

    # ── Decisions ────────────────────────────────────────────────────────

    def approve_request(self, actor: ActorSession, request_id: int, note: str | None = None):
        current = self._require_approver(actor)
        patch = {}
        if note is not None and note.strip():
            patch["notes"] = note.strip()
        return self._decide(current, request_id, "approved", patch)

    def reject_request(self, actor: ActorSession, request_id: int, justification: str):
        """Reject a pending request.  An empty justification changes nothing."""
        text = (justification or "").strip()
        if not text:
            raise ValidationError(
                "Por favor, informe o motivo da rejeição.",
                details={"justification": "required"},
            )
        current = self._require_approver(actor)
        return self._decide(current, request_id, "rejected", {"notes": text})

    def _decide(self, actor: ActorSession, request_id: int, new_status: str, patch: dict):
        row = self.get_request(request_id)
        if not validate_extra_meal_transition(row.status, new_status):
            raise InvalidTransitionError("ExtraMealRequest", row.status, new_status)

        patch.update(
            status=new_status,
            approved_by_id=actor.actor_id,
            approved_by_name=actor.full_name,
            approved_at=utcnow(),
        )
        updated = self._run(
            f"extra meal {new_status}",
            lambda: self.store.transition_extra_meal_request(request_id, row.status, patch),
        )
        if updated is None:
            latest = self.get_request(request_id)
            raise InvalidTransitionError("ExtraMealRequest", latest.status, new_status)

        logger.info(
            "Extra meal %s",
            new_status,
            extra={"extra_meal_id": request_id, "actor_id": actor.actor_id, "request_status": new_status},
        )
        return updated

    # ── Listing / stats ──────────────────────────────────────────────────

    def list_requests(self, actor: ActorSession, filters: dict | None = None) -> list:
        self._current_actor(actor)
        criteria = _normalise_filters(filters)
        return self._run(
            "extra meal query",
            lambda: self.store.query_extra_meal_requests(**criteria),
        )

    def get_stats(self, actor: ActorSession, filters: dict | None = None) -> dict:
        """Counts per status and the summed captured price of matching rows."""
        rows = self.list_requests(actor, filters)
        total_value = sum((Decimal(r.price or 0) for r in rows), Decimal("0"))
        return {
            "total": len(rows),
            "pending": sum(1 for r in rows if r.status == "pending"),
            "approved": sum(1 for r in rows if r.status == "approved"),
            "rejected": sum(1 for r in rows if r.status == "rejected"),
            "total_value": float(total_value),
        }


def _requester_columns(requester) -> dict:
    if isinstance(requester, InternalHolder):
        return {
            "holder_id": requester.holder_id,
            "external_name": None,
            "external_company": None,
            "external_document": None,
        }
    return {
        "holder_id": None,
        "external_name": requester.name.strip(),
        "external_company": requester.company.strip(),
        "external_document": (requester.document or "").strip() or None,
    }


def _normalise_filters(filters: dict | None) -> dict:
    filters = dict(filters or {})
    status = filters.get("status")
    if status in (None, "", "all"):
        status = None
    elif status not in EXTRA_MEAL_STATUSES:
        raise ValidationError(f"Unknown status {status!r}", details={"status": "invalid"})
    company_id = filters.get("company_id")
    if company_id in ("", "all"):
        company_id = None
    return {
        "status": status,
        "date_from": filters.get("date_from"),
        "date_to": filters.get("date_to"),
        "company_id": company_id,
        "search": (filters.get("search") or "").strip() or None,
    }
