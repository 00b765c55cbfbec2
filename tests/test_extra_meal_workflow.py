"""
Extra-meal approval workflow tests (mealpass/services/extra_meal_service.py).

Lifecycle:
    pending → approved   (terminal)
    pending → rejected   (terminal, justification mandatory)

Authorization:
    approve / reject need role super_admin|admin or the ``rh-extras``
    capability, re-checked against the managers table on every call.
"""

from datetime import timedelta

import pytest

from mealpass.core.exceptions import (
    AuthenticationError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SessionExpiredError,
    ValidationError,
)
from mealpass.models import db
from mealpass.models.extra_meal import (
    EXTRA_MEAL_TRANSITIONS,
    ExternalVisitor,
    ExtraMealRequest,
    InternalHolder,
    validate_extra_meal_transition,
)
from mealpass.services import session_service
from mealpass.services.extra_meal_service import ExtraMealWorkflow
from mealpass.services.record_store import SqlRecordStore

from conftest import (
    TODAY,
    at,
    fast_executor,
    make_company,
    make_holder,
    make_manager,
    make_meal_type,
    session_of,
)


def _workflow(store=None):
    executor, _ = fast_executor(base_delay=0.0)
    return ExtraMealWorkflow(store or SqlRecordStore(), executor, clock=lambda: at(10, 0))


@pytest.fixture()
def special():
    return make_meal_type("Refeição extra", "00:01", "23:59", "25.00", is_special=True)


@pytest.fixture()
def holder():
    return make_holder("1234", full_name="Maria Souza", company=make_company("Acme"))


@pytest.fixture()
def requester_actor():
    return session_of(make_manager("recepcao", role="manager"))


@pytest.fixture()
def approver():
    return session_of(make_manager("rh", role="manager", permissions=["rh-extras"], full_name="Rita RH"))


@pytest.fixture()
def admin():
    return session_of(make_manager("admin", role="admin", full_name="Ana Admin"))


def _create(actor, special, requester, **overrides):
    fields = dict(
        meal_type_id=special.id,
        meal_date=TODAY,
        meal_time="19:30",
        reason="Plantão estendido",
        requested_by_name="Carlos Supervisor",
    )
    fields.update(overrides)
    return _workflow().create_request(actor, requester, **fields)


# ═════════════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionTable:
    @pytest.mark.parametrize("old, new", [("pending", "approved"), ("pending", "rejected")])
    def test_valid(self, old, new):
        assert validate_extra_meal_transition(old, new) is True

    @pytest.mark.parametrize("old, new", [
        ("approved", "rejected"),
        ("approved", "pending"),
        ("rejected", "approved"),
        ("rejected", "pending"),
        ("pending", "pending"),
    ])
    def test_invalid(self, old, new):
        assert validate_extra_meal_transition(old, new) is False

    def test_terminal_states_have_no_exits(self):
        assert EXTRA_MEAL_TRANSITIONS["approved"] == []
        assert EXTRA_MEAL_TRANSITIONS["rejected"] == []


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_internal_holder(self, requester_actor, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        assert row.status == "pending"
        assert float(row.price) == 25.0
        assert row.requester == InternalHolder(holder.id)
        data = row.to_dict()
        assert data["requester_name"] == "Maria Souza"
        assert data["company"] == "Acme"
        assert data["is_external"] is False

    def test_external_visitor_without_document(self, requester_actor, special):
        row = _create(requester_actor, special, ExternalVisitor(name=" João Visitante ", company="Fornecedor X"))
        assert row.requester == ExternalVisitor(name="João Visitante", company="Fornecedor X", document=None)
        assert row.is_external is True

    def test_today_is_allowed(self, requester_actor, special, holder):
        assert _create(requester_actor, special, InternalHolder(holder.id), meal_date=TODAY).id

    def test_past_date_rejected(self, requester_actor, special, holder):
        with pytest.raises(ValidationError) as info:
            _create(requester_actor, special, InternalHolder(holder.id), meal_date=TODAY - timedelta(days=1))
        assert str(info.value) == "A data da refeição não pode ser no passado."
        assert db.session.query(ExtraMealRequest).count() == 0

    def test_regular_meal_type_rejected(self, requester_actor, holder):
        lunch = make_meal_type("Almoço", "11:00", "14:00")
        with pytest.raises(ValidationError) as info:
            _create(requester_actor, lunch, InternalHolder(holder.id))
        assert info.value.details == {"meal_type_id": "not special"}

    def test_inactive_special_type_rejected(self, requester_actor, holder):
        retired = make_meal_type("Extra antigo", "00:01", "23:59", is_special=True, is_active=False)
        with pytest.raises(ValidationError):
            _create(requester_actor, retired, InternalHolder(holder.id))

    def test_unknown_holder(self, requester_actor, special):
        with pytest.raises(NotFoundError):
            _create(requester_actor, special, InternalHolder(9999))

    def test_inactive_holder(self, requester_actor, special):
        gone = make_holder("4321", is_active=False)
        with pytest.raises(ValidationError):
            _create(requester_actor, special, InternalHolder(gone.id))

    def test_external_needs_company(self, requester_actor, special):
        with pytest.raises(ValidationError) as info:
            _create(requester_actor, special, ExternalVisitor(name="João", company=" "))
        assert info.value.details == {"external_company": "required"}

    def test_reason_required(self, requester_actor, special, holder):
        with pytest.raises(ValidationError):
            _create(requester_actor, special, InternalHolder(holder.id), reason="  ")

    def test_invalid_meal_time(self, requester_actor, special, holder):
        with pytest.raises(ValidationError):
            _create(requester_actor, special, InternalHolder(holder.id), meal_time="7 da noite")

    def test_idempotent_create(self, requester_actor, special, holder):
        first = _create(requester_actor, special, InternalHolder(holder.id), idempotency_key="req-1")
        second = _create(requester_actor, special, InternalHolder(holder.id), idempotency_key="req-1")
        assert first.id == second.id
        assert db.session.query(ExtraMealRequest).count() == 1

    def test_anonymous_actor_rejected(self, special, holder):
        with pytest.raises(AuthenticationError):
            _create(None, special, InternalHolder(holder.id))


# ═════════════════════════════════════════════════════════════════════════════
# Decisions
# ═════════════════════════════════════════════════════════════════════════════


class TestApprove:
    def test_admin_approves_with_note(self, requester_actor, admin, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        approved = _workflow().approve_request(admin, row.id, note="ok pelo RH")
        assert approved.status == "approved"
        assert approved.approved_by_id == admin.actor_id
        assert approved.approved_by_name == "Ana Admin"
        assert approved.approved_at is not None
        assert approved.notes == "ok pelo RH"

    def test_rh_extras_capability_approves(self, requester_actor, approver, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        assert _workflow().approve_request(approver, row.id).status == "approved"

    def test_plain_manager_cannot_approve(self, requester_actor, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        with pytest.raises(PermissionDeniedError) as info:
            _workflow().approve_request(requester_actor, row.id)
        assert info.value.required == "rh-extras"
        assert _workflow().get_request(row.id).status == "pending"

    def test_revoked_capability_takes_effect_immediately(self, requester_actor, special, holder):
        manager = make_manager("temp", role="manager", permissions=["rh-extras"])
        token_session = session_of(manager)
        manager.permissions = ["usuarios"]
        db.session.commit()

        row = _create(requester_actor, special, InternalHolder(holder.id))
        with pytest.raises(PermissionDeniedError):
            _workflow().approve_request(token_session, row.id)

    def test_deactivated_approver_session_expired(self, requester_actor, special, holder):
        manager = make_manager("saiu", role="admin")
        token_session = session_of(manager)
        manager.is_active = False
        db.session.commit()

        row = _create(requester_actor, special, InternalHolder(holder.id))
        with pytest.raises(SessionExpiredError):
            _workflow().approve_request(token_session, row.id)

    def test_expired_session(self, requester_actor, special, holder):
        manager = make_manager("velho", role="admin")
        stale = session_service.session_for_manager(manager, expires_in=-1)
        row = _create(requester_actor, special, InternalHolder(holder.id))
        with pytest.raises(SessionExpiredError):
            _workflow().approve_request(stale, row.id)

    def test_lost_race_is_invalid_transition(self, requester_actor, admin, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))

        class RacingStore(SqlRecordStore):
            def transition_extra_meal_request(self, request_id, expected_status, patch):
                # Another approver rejects first
                super().transition_extra_meal_request(
                    request_id, "pending", {"status": "rejected", "notes": "duplicado"},
                )
                return super().transition_extra_meal_request(request_id, expected_status, patch)

        with pytest.raises(InvalidTransitionError) as info:
            _workflow(store=RacingStore()).approve_request(admin, row.id)
        assert info.value.from_status == "rejected"
        assert _workflow().get_request(row.id).status == "rejected"


class TestReject:
    def test_reject_requires_justification(self, requester_actor, admin, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id), notes="original")
        for empty in ("", "   ", None):
            with pytest.raises(ValidationError) as info:
                _workflow().reject_request(admin, row.id, empty)
            assert str(info.value) == "Por favor, informe o motivo da rejeição."
        unchanged = _workflow().get_request(row.id)
        assert unchanged.status == "pending"
        assert unchanged.notes == "original"
        assert unchanged.approved_by_id is None

    def test_reject_with_justification(self, requester_actor, admin, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        rejected = _workflow().reject_request(admin, row.id, "  Fora da política  ")
        assert rejected.status == "rejected"
        assert rejected.notes == "Fora da política"
        assert rejected.approved_by_name == "Ana Admin"

    def test_plain_manager_cannot_reject(self, requester_actor, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        with pytest.raises(PermissionDeniedError):
            _workflow().reject_request(requester_actor, row.id, "não")


class TestTerminalStates:
    def test_approved_cannot_be_rejected(self, requester_actor, admin, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        _workflow().approve_request(admin, row.id)
        with pytest.raises(InvalidTransitionError):
            _workflow().reject_request(admin, row.id, "mudei de ideia")

    def test_rejected_cannot_be_approved(self, requester_actor, admin, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        _workflow().reject_request(admin, row.id, "não")
        with pytest.raises(InvalidTransitionError):
            _workflow().approve_request(admin, row.id)

    def test_approved_cannot_be_deleted(self, requester_actor, admin, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        _workflow().approve_request(admin, row.id)
        with pytest.raises(InvalidTransitionError):
            _workflow().delete_request(admin, row.id)
        assert db.session.query(ExtraMealRequest).count() == 1

    @pytest.mark.parametrize("decision", ["pending", "rejected"])
    def test_pending_and_rejected_can_be_deleted(self, requester_actor, admin, special, holder, decision):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        if decision == "rejected":
            _workflow().reject_request(admin, row.id, "não")
        _workflow().delete_request(requester_actor, row.id)
        assert db.session.query(ExtraMealRequest).count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# Edit
# ═════════════════════════════════════════════════════════════════════════════


class TestUpdate:
    def test_status_not_editable(self, requester_actor, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        with pytest.raises(ValidationError):
            _workflow().update_request(requester_actor, row.id, {"status": "approved"})

    def test_unknown_field(self, requester_actor, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        with pytest.raises(ValidationError):
            _workflow().update_request(requester_actor, row.id, {"price": 0})

    def test_approved_needs_approver_to_edit(self, requester_actor, admin, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        _workflow().approve_request(admin, row.id)
        with pytest.raises(PermissionDeniedError):
            _workflow().update_request(requester_actor, row.id, {"reason": "outro"})
        edited = _workflow().update_request(admin, row.id, {"reason": "outro"})
        assert edited.reason == "outro"
        assert edited.status == "approved"

    def test_switch_to_external_requester(self, requester_actor, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        visitor = ExternalVisitor(name="Pedro", company="Auditoria", document="123")
        edited = _workflow().update_request(requester_actor, row.id, {"requester": visitor})
        assert edited.requester == visitor
        assert edited.holder_id is None

    def test_meal_type_change_recaptures_price(self, requester_actor, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        pricier = make_meal_type("Extra noturno", "00:01", "23:59", "31.50", is_special=True)
        edited = _workflow().update_request(requester_actor, row.id, {"meal_type_id": pricier.id})
        assert float(edited.price) == 31.5

    def test_past_date_rejected_on_edit(self, requester_actor, special, holder):
        row = _create(requester_actor, special, InternalHolder(holder.id))
        with pytest.raises(ValidationError):
            _workflow().update_request(
                requester_actor, row.id, {"meal_date": TODAY - timedelta(days=2)},
            )


# ═════════════════════════════════════════════════════════════════════════════
# Listing / stats
# ═════════════════════════════════════════════════════════════════════════════


class TestListing:
    @pytest.fixture()
    def three_requests(self, requester_actor, admin, special, holder):
        a = _create(requester_actor, special, InternalHolder(holder.id))
        b = _create(requester_actor, special, ExternalVisitor(name="João Visitante", company="Fornecedor X"))
        c = _create(requester_actor, special, InternalHolder(holder.id), meal_date=TODAY + timedelta(days=3))
        _workflow().approve_request(admin, a.id)
        _workflow().reject_request(admin, b.id, "sem justificativa")
        return a, b, c

    def test_stats(self, requester_actor, three_requests):
        stats = _workflow().get_stats(requester_actor)
        assert stats == {
            "total": 3,
            "pending": 1,
            "approved": 1,
            "rejected": 1,
            "total_value": 75.0,
        }

    def test_status_filter(self, requester_actor, three_requests):
        rows = _workflow().list_requests(requester_actor, {"status": "pending"})
        assert [r.id for r in rows] == [three_requests[2].id]

    def test_all_means_no_filter(self, requester_actor, three_requests):
        assert len(_workflow().list_requests(requester_actor, {"status": "all"})) == 3

    def test_search_external_name(self, requester_actor, three_requests):
        rows = _workflow().list_requests(requester_actor, {"search": "visitante"})
        assert [r.id for r in rows] == [three_requests[1].id]

    def test_search_company(self, requester_actor, three_requests):
        rows = _workflow().list_requests(requester_actor, {"search": "acme"})
        assert {r.id for r in rows} == {three_requests[0].id, three_requests[2].id}

    def test_date_range(self, requester_actor, three_requests):
        rows = _workflow().list_requests(
            requester_actor, {"date_from": TODAY + timedelta(days=1)},
        )
        assert [r.id for r in rows] == [three_requests[2].id]

    def test_unknown_status(self, requester_actor):
        with pytest.raises(ValidationError):
            _workflow().list_requests(requester_actor, {"status": "archived"})
