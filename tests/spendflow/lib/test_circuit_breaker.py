"""
Tests for CircuitBreaker (spendflow/lib/circuit_breaker.py).

Covers state transitions, recovery timeout with an injected clock, the
async context manager with a trip classifier, listeners, and quota error
classification.
"""

from __future__ import annotations

import pytest

from spendflow.lib.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    is_quota_error,
    quota_breaker,
)
from spendflow.lib.exceptions import CircuitOpenError, QuotaExceededError, StoreError


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# =============================================================================
# Basic transitions
# =============================================================================


@pytest.mark.asyncio
async def test_initial_state():
    """Test circuit breaker starts in CLOSED state."""
    cb = CircuitBreaker(name="test")
    assert cb.state == CircuitState.CLOSED
    assert cb.failure_count == 0
    assert await cb.allow_request() is True


@pytest.mark.asyncio
async def test_opens_after_threshold():
    """Test circuit opens once consecutive failures reach the threshold."""
    cb = CircuitBreaker(name="test", failure_threshold=3)
    await cb.record_failure()
    await cb.record_failure()
    assert cb.state == CircuitState.CLOSED
    await cb.record_failure()
    assert cb.state == CircuitState.OPEN
    assert await cb.allow_request() is False


@pytest.mark.asyncio
async def test_success_resets_failure_count():
    cb = CircuitBreaker(name="test", failure_threshold=3)
    await cb.record_failure()
    await cb.record_success()
    assert cb.failure_count == 0


@pytest.mark.asyncio
async def test_half_open_after_recovery_timeout():
    """Test a probe is allowed once the recovery timeout has elapsed."""
    clock = FakeClock()
    cb = CircuitBreaker(name="test", recovery_timeout=60, clock=clock)
    await cb.trip()
    assert await cb.allow_request() is False

    clock.now += 61
    assert await cb.allow_request() is True
    assert cb.state == CircuitState.HALF_OPEN
    # only one probe slot
    assert await cb.allow_request() is False

    await cb.record_success()
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_failure_reopens():
    clock = FakeClock()
    cb = CircuitBreaker(name="test", recovery_timeout=60, clock=clock)
    await cb.trip()
    clock.now += 61
    assert await cb.allow_request() is True
    await cb.record_failure()
    assert cb.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_no_recovery_timeout_stays_open_until_reset():
    clock = FakeClock()
    cb = CircuitBreaker(name="test", recovery_timeout=None, clock=clock)
    await cb.trip()
    clock.now += 10_000
    assert await cb.allow_request() is False
    assert cb.retry_after_seconds() is None

    await cb.reset()
    assert cb.state == CircuitState.CLOSED
    assert await cb.allow_request() is True


@pytest.mark.asyncio
async def test_retry_after_seconds_counts_down():
    clock = FakeClock()
    cb = CircuitBreaker(name="test", recovery_timeout=60, clock=clock)
    assert cb.retry_after_seconds() == 0.0
    await cb.trip()
    clock.now += 20
    assert cb.retry_after_seconds() == pytest.approx(40.0)


# =============================================================================
# Context manager
# =============================================================================


@pytest.mark.asyncio
async def test_context_manager_raises_when_open():
    cb = CircuitBreaker(name="test", recovery_timeout=None)
    await cb.trip()
    with pytest.raises(CircuitOpenError):
        async with cb:
            pass


@pytest.mark.asyncio
async def test_quota_breaker_trips_on_quota_error_only():
    """Test the quota breaker ignores unrelated errors and trips on quota errors."""
    cb = quota_breaker(recovery_timeout=None)

    with pytest.raises(StoreError):
        async with cb:
            raise StoreError("constraint failed")
    assert cb.state == CircuitState.CLOSED

    with pytest.raises(QuotaExceededError):
        async with cb:
            raise QuotaExceededError("quota exceeded")
    assert cb.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_listeners_receive_transitions():
    seen: list[CircuitState] = []
    cb = CircuitBreaker(name="test", recovery_timeout=None)
    cb.add_listener(seen.append)
    await cb.trip()
    await cb.trip()
    await cb.reset()
    assert seen == [CircuitState.OPEN, CircuitState.CLOSED]


# =============================================================================
# Error classification
# =============================================================================


class TestIsQuotaError:
    def test_quota_exceeded_error(self):
        assert is_quota_error(QuotaExceededError("x")) is True

    def test_resource_exhausted_code(self):
        exc = RuntimeError("boom")
        exc.code = "RESOURCE-EXHAUSTED"
        assert is_quota_error(exc) is True

    @pytest.mark.parametrize(
        "message",
        ["Quota exceeded for writes", "429 Too Many Requests", "rate limit hit"],
    )
    def test_message_markers(self, message):
        assert is_quota_error(RuntimeError(message)) is True

    def test_unrelated_error(self):
        assert is_quota_error(ValueError("database is locked")) is False
