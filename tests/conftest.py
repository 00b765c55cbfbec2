"""
Shared pytest fixtures for the MealPass test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_* factories for master data and managers
    - auth_header(manager): bearer header for a manager's session
    - RecordingSleep / FlakyStore: retry helpers without wall-clock waits
"""

from datetime import datetime, time
from decimal import Decimal

import pytest

from mealpass import create_app
from mealpass.core.exceptions import TransientStoreError
from mealpass.models import db as _db
from mealpass.models.auth import Manager
from mealpass.models.catalog import Company, MealType, Shift
from mealpass.models.holder import VoucherHolder
from mealpass.models.meal_record import MealRecord
from mealpass.services import session_service
from mealpass.services.resilience import ResilientExecutor, RetryPolicy
from mealpass.utils.crypto import hash_password

# A Wednesday, used as "now" across the suite
TODAY = datetime(2025, 3, 12).date()


def at(hh, mm=0, day=TODAY):
    """Local naive datetime on ``day`` at hh:mm."""
    return datetime.combine(day, time(hh, mm))


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM factories (bypass services to set arbitrary states) ─────────────


def make_company(name="Acme Alimentos"):
    c = Company(name=name)
    _db.session.add(c)
    _db.session.commit()
    return c


def make_shift(name="Comercial", start="08:00", end="17:00", is_active=True):
    s = Shift(
        name=name,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end),
        is_active=is_active,
    )
    _db.session.add(s)
    _db.session.commit()
    return s


def make_meal_type(name="Almoço", start="11:00", end="14:00", price="22.00",
                   is_special=False, is_active=True):
    m = MealType(
        name=name,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end),
        price=Decimal(price),
        is_special=is_special,
        is_active=is_active,
    )
    _db.session.add(m)
    _db.session.commit()
    return m


def make_holder(code="1234", full_name="Maria Souza", shift=None, company=None, is_active=True):
    h = VoucherHolder(
        voucher_code=code,
        full_name=full_name,
        shift_id=shift.id if shift else None,
        company_id=company.id if company else None,
        is_active=is_active,
    )
    _db.session.add(h)
    _db.session.commit()
    return h


def make_record(holder, meal_type, day=TODAY, status="used", key=None):
    r = MealRecord(
        holder_id=holder.id,
        meal_type_id=meal_type.id,
        voucher_code=holder.voucher_code,
        meal_date=day,
        meal_time=time(12, 0),
        price=meal_type.price,
        status=status,
        idempotency_key=key,
    )
    _db.session.add(r)
    _db.session.commit()
    return r


def make_manager(username="gestor", role="manager", permissions=None, password="S3nha!forte",
                 is_active=True, full_name=None):
    m = Manager(
        username=username,
        full_name=full_name or username.title(),
        email=f"{username}@example.com",
        password_hash=hash_password(password, rounds=4),
        role=role,
        permissions=list(permissions or []),
        is_active=is_active,
    )
    _db.session.add(m)
    _db.session.commit()
    return m


def session_of(manager):
    return session_service.session_for_manager(manager)


def auth_header(manager):
    token = session_service.issue_token(session_of(manager))
    return {"Authorization": f"Bearer {token}"}


# ── Retry helpers ────────────────────────────────────────────────────────


class RecordingSleep:
    """Stand-in for time.sleep that records requested delays."""

    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


def fast_executor(max_retries=3, base_delay=1.0, max_delay=8.0, max_total_delay=15.0):
    sleep = RecordingSleep()
    policy = RetryPolicy(
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=max_delay,
        max_total_delay=max_total_delay,
    )
    return ResilientExecutor(policy, sleep=sleep), sleep


class FlakyStore:
    """Wraps a store; the named methods fail ``failures`` times before delegating."""

    def __init__(self, inner, failures=0, methods=()):
        self._inner = inner
        self._remaining = {name: failures for name in methods}
        self.calls = []

    def __getattr__(self, name):
        target = getattr(self._inner, name)
        if not callable(target):
            return target

        def wrapper(*args, **kwargs):
            self.calls.append(name)
            if self._remaining.get(name, 0) > 0:
                self._remaining[name] -= 1
                raise TransientStoreError(f"{name}: connection reset")
            return target(*args, **kwargs)

        return wrapper
