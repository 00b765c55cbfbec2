"""
Tests for the resilient operation executor (mealpass/services/resilience.py).

Delays are recorded by a fake sleep; nothing here waits on the wall clock.
"""

import socket

import pytest
from sqlalchemy import exc as sa_exc

from mealpass.core.exceptions import (
    ConnectivityError,
    HolderNotFound,
    NotFoundError,
    SchemaError,
    TransientStoreError,
)
from mealpass.services.resilience import (
    PERMANENT,
    SCHEMA,
    TRANSIENT,
    ResilientExecutor,
    RetryPolicy,
    classify_failure,
)

from conftest import RecordingSleep, fast_executor


class Flaky:
    """Callable failing with ``error`` for the first ``failures`` calls."""

    def __init__(self, failures, error=None, result="ok"):
        self.failures = failures
        self.error = error or TransientStoreError("connection reset by peer")
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


def _operational(message):
    return sa_exc.OperationalError("SELECT 1", {}, Exception(message))


# ═════════════════════════════════════════════════════════════════════════════
# Retry bound
# ═════════════════════════════════════════════════════════════════════════════


class TestRetryBound:
    def test_three_failures_then_success(self):
        executor, sleep = fast_executor()
        op = Flaky(3)
        assert executor.run(op, label="holder lookup") == "ok"
        assert op.calls == 4
        assert sleep.delays == [1.0, 2.0, 4.0]

    def test_four_failures_is_connectivity_error(self):
        executor, sleep = fast_executor()
        op = Flaky(4)
        with pytest.raises(ConnectivityError) as info:
            executor.run(op, label="holder lookup")
        assert op.calls == 4
        assert info.value.attempts == 4
        assert info.value.operation == "holder lookup"
        assert isinstance(info.value.last_error, TransientStoreError)
        # No sleep after the final attempt
        assert sleep.delays == [1.0, 2.0, 4.0]

    def test_exhaustion_is_never_a_not_found(self):
        executor, _ = fast_executor()
        with pytest.raises(ConnectivityError):
            executor.run(Flaky(10), label="holder lookup")

    def test_success_first_try_never_sleeps(self):
        executor, sleep = fast_executor()
        assert executor.run(lambda: 42) == 42
        assert sleep.delays == []

    def test_on_retry_reports_progress(self):
        executor, _ = fast_executor()
        notices = []
        executor.run(Flaky(2), label="daily meal count", on_retry=notices.append)
        assert [n.attempt for n in notices] == [2, 3]
        assert notices[0].message == "Tentativa 2 de 4 - Aguarde..."
        assert notices[0].label == "daily meal count"
        assert notices[1].delay == 2.0


class TestBackoffCaps:
    def test_per_delay_cap(self):
        executor, sleep = fast_executor(max_retries=5, base_delay=1.0, max_delay=3.0, max_total_delay=None)
        executor.run(Flaky(5))
        assert sleep.delays == [1.0, 2.0, 3.0, 3.0, 3.0]

    def test_total_delay_cap(self):
        executor, sleep = fast_executor(max_retries=3, base_delay=2.0, max_delay=None, max_total_delay=5.0)
        with pytest.raises(ConnectivityError):
            executor.run(Flaky(10))
        # 2 + 3 (clipped) + 0 (budget exhausted, not slept)
        assert sleep.delays == [2.0, 3.0]

    def test_zero_base_delay_never_sleeps(self):
        executor, sleep = fast_executor(base_delay=0.0)
        executor.run(Flaky(3))
        assert sleep.delays == []

    def test_policy_from_config(self):
        policy = RetryPolicy.from_config({
            "RETRY_MAX_RETRIES": 5,
            "RETRY_BASE_DELAY": 0.5,
            "RETRY_MAX_DELAY": None,
            "RETRY_MAX_TOTAL_DELAY": 30.0,
        })
        assert policy.max_attempts == 6
        assert policy.delay_for(3) == 4.0
        assert policy.max_total_delay == 30.0

    def test_default_policy(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 4
        assert [policy.delay_for(i) for i in range(3)] == [1.0, 2.0, 4.0]


# ═════════════════════════════════════════════════════════════════════════════
# Failure classes
# ═════════════════════════════════════════════════════════════════════════════


class TestClassification:
    @pytest.mark.parametrize("error", [
        TransientStoreError("reset"),
        ConnectionRefusedError("refused"),
        TimeoutError("timed out"),
        socket.gaierror("name resolution"),
        sa_exc.TimeoutError("QueuePool limit"),
    ])
    def test_transient(self, error):
        assert classify_failure(error) == TRANSIENT

    def test_operational_connection_loss_is_transient(self):
        assert classify_failure(_operational("server closed the connection unexpectedly")) == TRANSIENT

    @pytest.mark.parametrize("message", [
        "no such table: meal_records",
        'relation "meal_records" does not exist',
        "no such column: meal_records.idempotency_key",
    ])
    def test_schema(self, message):
        assert classify_failure(_operational(message)) == SCHEMA

    @pytest.mark.parametrize("error", [
        HolderNotFound("1234"),
        NotFoundError("MealType", 1),
        ValueError("bad"),
        KeyError("x"),
    ])
    def test_permanent(self, error):
        assert classify_failure(error) == PERMANENT


class TestNonRetryable:
    def test_schema_error_raised_without_retry(self):
        executor, sleep = fast_executor()
        op = Flaky(1, error=_operational("no such table: voucher_holders"))
        with pytest.raises(SchemaError) as info:
            executor.run(op, label="holder lookup")
        assert op.calls == 1
        assert sleep.delays == []
        assert "flask db upgrade" in info.value.remediation

    def test_business_failure_propagates_untouched(self):
        executor, sleep = fast_executor()
        op = Flaky(1, error=HolderNotFound("9999"))
        with pytest.raises(HolderNotFound):
            executor.run(op)
        assert op.calls == 1
        assert sleep.delays == []

    def test_default_sleep_is_injectable(self):
        sleep = RecordingSleep()
        executor = ResilientExecutor(sleep=sleep)
        executor.run(Flaky(1))
        assert sleep.delays == [1.0]
