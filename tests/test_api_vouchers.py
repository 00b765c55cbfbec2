"""
Kiosk API tests — /api/v1/vouchers/* and /api/v1/meal-types/available.

Time is pinned by patching ``voucher_bp._now``.
Uses shared fixtures from conftest.py: client, session (autouse).
"""

import pytest

from mealpass.blueprints import voucher_bp as voucher_module
from mealpass.models import db
from mealpass.models.meal_record import MealRecord

from conftest import at, make_holder, make_meal_type, make_record, make_shift

BASE = "/api/v1"


@pytest.fixture()
def clock(monkeypatch):
    """Set the kiosk clock: ``clock(12, 30)``."""
    def _set(hh, mm=0):
        monkeypatch.setattr(voucher_module, "_now", lambda: at(hh, mm))
    _set(12, 0)
    return _set


@pytest.fixture()
def lunch():
    return make_meal_type("Almoço", "11:00", "14:00", "22.00")


@pytest.fixture()
def holder():
    return make_holder("1234", full_name="Maria Souza", shift=make_shift("Comercial", "08:00", "17:00"))


# ═══════════════════════════════════════════════════════════════
# POST /vouchers/validate
# ═══════════════════════════════════════════════════════════════

class TestValidate:
    def test_valid_voucher(self, client, clock, lunch, holder):
        res = client.post(f"{BASE}/vouchers/validate", json={"voucher_code": "1234"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["valid"] is True
        assert body["holder"]["full_name"] == "Maria Souza"
        assert body["meals_today"] == 0
        assert [m["name"] for m in body["available_meal_types"]] == ["Almoço"]
        assert body["selected_meal_type"]["id"] == lunch.id
        assert db.session.query(MealRecord).count() == 0

    @pytest.mark.parametrize("code", ["123", "12345", "12a4", "", None])
    def test_malformed_code(self, client, clock, code):
        res = client.post(f"{BASE}/vouchers/validate", json={"voucher_code": code})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_unknown_code(self, client, clock, lunch):
        res = client.post(f"{BASE}/vouchers/validate", json={"voucher_code": "9999"})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "VOUCHER_NOT_FOUND"
        assert body["details"]["title"] == "Voucher inválido"

    def test_out_of_shift_at_1720(self, client, clock, holder):
        make_meal_type("Jantar", "17:00", "21:00")
        clock(17, 20)
        res = client.post(f"{BASE}/vouchers/validate", json={"voucher_code": "1234"})
        assert res.status_code == 422
        assert res.get_json()["code"] == "OUT_OF_SHIFT"

    def test_inside_tolerance_at_1710(self, client, clock, holder):
        make_meal_type("Jantar", "17:00", "21:00")
        clock(17, 10)
        res = client.post(f"{BASE}/vouchers/validate", json={"voucher_code": "1234"})
        assert res.status_code == 200

    def test_bad_meal_type_id(self, client, clock):
        res = client.post(f"{BASE}/vouchers/validate", json={"voucher_code": "1234", "meal_type_id": "x"})
        assert res.status_code == 422


# ═══════════════════════════════════════════════════════════════
# POST /vouchers/redeem
# ═══════════════════════════════════════════════════════════════

class TestRedeem:
    def test_redeem_creates_record(self, client, clock, lunch, holder):
        res = client.post(f"{BASE}/vouchers/redeem", json={"voucher_code": "1234", "meal_type_id": lunch.id})
        assert res.status_code == 201
        body = res.get_json()
        assert body["holder_id"] == holder.id
        assert body["price"] == 22.0
        assert body["status"] == "used"
        assert body["meal_date"] == "2025-03-12"
        assert body["idempotency_key"]

    def test_second_redemption_rejected_at_dedup(self, client, clock, lunch, holder):
        first = client.post(f"{BASE}/vouchers/redeem", json={"voucher_code": "1234", "meal_type_id": lunch.id})
        assert first.status_code == 201
        second = client.post(f"{BASE}/vouchers/redeem", json={"voucher_code": "1234", "meal_type_id": lunch.id})
        assert second.status_code == 422
        assert second.get_json()["code"] == "MEAL_ALREADY_USED"
        assert db.session.query(MealRecord).count() == 1

    def test_replay_with_same_key_returns_original(self, client, clock, lunch, holder):
        payload = {"voucher_code": "1234", "meal_type_id": lunch.id}
        headers = {"Idempotency-Key": "kiosk-3-000123"}
        first = client.post(f"{BASE}/vouchers/redeem", json=payload, headers=headers)
        replay = client.post(f"{BASE}/vouchers/redeem", json=payload, headers=headers)
        assert first.status_code == 201
        assert replay.status_code == 201
        assert replay.get_json()["id"] == first.get_json()["id"]
        assert db.session.query(MealRecord).count() == 1

    def test_key_owned_by_other_holder_is_conflict(self, client, clock, lunch, holder):
        make_record(holder, lunch, key="kiosk-3-000123")
        make_holder("2222", full_name="João Lima")
        res = client.post(
            f"{BASE}/vouchers/redeem",
            json={"voucher_code": "2222", "meal_type_id": lunch.id},
            headers={"Idempotency-Key": "kiosk-3-000123"},
        )
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"
        assert db.session.query(MealRecord).count() == 1

    def test_closed_but_used_meal_type_reports_used(self, client, clock, lunch, holder):
        make_record(holder, lunch)
        clock(16, 0)
        res = client.post(f"{BASE}/vouchers/redeem", json={"voucher_code": "1234", "meal_type_id": lunch.id})
        assert res.status_code == 422
        assert res.get_json()["code"] == "MEAL_ALREADY_USED"

    def test_daily_limit(self, client, clock, lunch, holder):
        cafe = make_meal_type("Café", "06:00", "09:00")
        jantar = make_meal_type("Jantar", "17:00", "21:00")
        make_record(holder, cafe)
        make_record(holder, jantar)
        res = client.post(f"{BASE}/vouchers/redeem", json={"voucher_code": "1234", "meal_type_id": lunch.id})
        assert res.status_code == 422
        assert res.get_json()["code"] == "DAILY_LIMIT_REACHED"

    def test_meal_type_required(self, client, clock, lunch, holder):
        res = client.post(f"{BASE}/vouchers/redeem", json={"voucher_code": "1234"})
        assert res.status_code == 422
        assert res.get_json()["details"] == {"meal_type_id": "required"}

    def test_oversized_key_rejected(self, client, clock, lunch, holder):
        res = client.post(
            f"{BASE}/vouchers/redeem",
            json={"voucher_code": "1234", "meal_type_id": lunch.id, "idempotency_key": "k" * 65},
        )
        assert res.status_code == 422

    def test_closed_meal_type(self, client, clock, lunch, holder):
        jantar = make_meal_type("Jantar", "17:00", "21:00")
        res = client.post(f"{BASE}/vouchers/redeem", json={"voucher_code": "1234", "meal_type_id": jantar.id})
        assert res.status_code == 422
        assert res.get_json()["code"] == "NO_MEAL_AVAILABLE"
        assert res.get_json()["error"] == "Jantar não está disponível no momento."


# ═══════════════════════════════════════════════════════════════
# GET /meal-types/available
# ═══════════════════════════════════════════════════════════════

class TestAvailableMealTypes:
    def test_lists_open_regular_types(self, client, clock, lunch):
        make_meal_type("Jantar", "17:00", "21:00")
        make_meal_type("Extra", "00:01", "23:59", is_special=True)
        res = client.get(f"{BASE}/meal-types/available")
        assert res.status_code == 200
        body = res.get_json()
        assert [m["name"] for m in body["items"]] == ["Almoço"]
        assert body["online"] is True

    def test_overnight_type_after_midnight(self, client, clock):
        make_meal_type("Ceia", "22:00", "02:00")
        clock(0, 30)
        res = client.get(f"{BASE}/meal-types/available")
        assert [m["name"] for m in res.get_json()["items"]] == ["Ceia"]


def test_responses_carry_request_id(client, clock, lunch):
    res = client.get(f"{BASE}/meal-types/available", headers={"X-Request-ID": "abc123"})
    assert res.headers["X-Request-ID"] == "abc123"
    assert "X-Request-Duration-Ms" in res.headers
