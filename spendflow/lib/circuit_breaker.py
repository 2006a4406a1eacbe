"""
Circuit Breaker for writes against the backing store.

Used to stop non-essential background writes (activity timestamps and the
like) once the store starts rejecting requests for quota or rate-limit
reasons, instead of compounding the problem.

States:
- CLOSED: Normal operation, writes pass through.
- OPEN: Store is over quota, guarded writes are rejected immediately.
- HALF_OPEN: Recovery timeout elapsed, a limited number of probe writes allowed.

Breakers are plain objects carried by a ProcessingContext; there is no
module-level registry, so each test (or each app instance) owns its state.

Usage:
    breaker = quota_breaker(recovery_timeout=300)

    async with breaker:  # quota errors raised inside trip the circuit
        await store.update(User, user_id, last_active_at=now)

    # or, when the caller classifies the error itself
    if await breaker.allow_request():
        try:
            await write()
            await breaker.record_success()
        except QuotaExceededError:
            await breaker.trip()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from spendflow.lib.exceptions import CircuitOpenError, QuotaExceededError

logger = logging.getLogger(__name__)

# Substrings that identify quota / rate-limit failures coming back from a driver
_QUOTA_MARKERS: tuple[str, ...] = (
    "quota exceeded",
    "resource-exhausted",
    "resource exhausted",
    "too many requests",
    "rate limit",
)


def is_quota_error(exc: BaseException) -> bool:
    """Return True if the exception signals a quota or rate-limit rejection."""
    if isinstance(exc, QuotaExceededError):
        return True
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code.lower() == "resource-exhausted":
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _QUOTA_MARKERS)


class CircuitState(StrEnum):
    """Possible states for a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker with explicit CLOSED / OPEN / HALF_OPEN state.

    Tracks consecutive failures and transitions between states. Access is
    serialized with an asyncio.Lock.

    Args:
        name: Identifier for the protected resource (used in logging).
        failure_threshold: Consecutive failures before opening.
        recovery_timeout: Seconds in OPEN before a HALF_OPEN probe is allowed.
            None keeps the circuit open until reset() is called.
        half_open_max_calls: Probe calls allowed in HALF_OPEN.
        trip_on: Classifier for errors raised inside ``async with``. Matching
            errors trip the circuit, others are ignored. None counts every
            error as an ordinary failure.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 1,
        recovery_timeout: float | None = 300.0,
        half_open_max_calls: int = 1,
        trip_on: Callable[[BaseException], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self._trip_on = trip_on
        self._clock = clock

        self._state: CircuitState = CircuitState.CLOSED
        self._failure_count: int = 0
        self._half_open_calls: int = 0
        self._opened_at: float | None = None
        self._lock: asyncio.Lock = asyncio.Lock()
        self._listeners: list[Callable[[CircuitState], None]] = []

    @property
    def state(self) -> CircuitState:
        """Return the current circuit state."""
        return self._state

    @property
    def failure_count(self) -> int:
        """Return the current consecutive failure count."""
        return self._failure_count

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def add_listener(self, listener: Callable[[CircuitState], None]) -> None:
        """Register a callback invoked with the new state on every transition."""
        self._listeners.append(listener)

    def _should_attempt_recovery(self) -> bool:
        if self.recovery_timeout is None or self._opened_at is None:
            return False
        return self._clock() - self._opened_at >= self.recovery_timeout

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        logger.info(
            "Circuit breaker '%s' state transition: %s -> %s",
            self.name,
            old_state.value,
            new_state.value,
        )
        for listener in self._listeners:
            listener(new_state)

    async def allow_request(self) -> bool:
        """
        Check whether a guarded call should go through.

        Returns:
            True if the call is allowed, False if it should be skipped.
        """
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._should_attempt_recovery():
                    self._transition_to(CircuitState.HALF_OPEN)
                    self._half_open_calls = 1
                    return True
                return False

            if self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True
            return False

    async def record_success(self) -> None:
        """Record a successful call. Closes the circuit if HALF_OPEN."""
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
                self._half_open_calls = 0
            self._failure_count = 0

    async def record_failure(self) -> None:
        """Record a failed call. May open the circuit if the threshold is reached."""
        async with self._lock:
            self._failure_count += 1

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    "Circuit breaker '%s' probe failed in HALF_OPEN. Reopening.",
                    self.name,
                )
                self._half_open_calls = 0
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                logger.warning(
                    "Circuit breaker '%s' failure threshold reached (%d/%d). Opening.",
                    self.name,
                    self._failure_count,
                    self.failure_threshold,
                )
                self._transition_to(CircuitState.OPEN)

    async def trip(self) -> None:
        """Force the circuit OPEN regardless of the failure count."""
        async with self._lock:
            self._failure_count = max(self._failure_count, self.failure_threshold)
            self._half_open_calls = 0
            if self._state == CircuitState.OPEN:
                self._opened_at = self._clock()
            else:
                self._transition_to(CircuitState.OPEN)

    async def reset(self) -> None:
        """Manually reset the circuit breaker to CLOSED."""
        async with self._lock:
            old_state = self._state
            self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0
            self._half_open_calls = 0
            self._opened_at = None
            if old_state != CircuitState.CLOSED:
                logger.info(
                    "Circuit breaker '%s' manually reset from %s.",
                    self.name,
                    old_state.value,
                )

    def retry_after_seconds(self) -> float | None:
        """Seconds until a probe is allowed; None if the circuit only closes on reset()."""
        if self._state != CircuitState.OPEN:
            return 0.0
        if self.recovery_timeout is None or self._opened_at is None:
            return None
        return max(0.0, self.recovery_timeout - (self._clock() - self._opened_at))

    async def __aenter__(self) -> CircuitBreaker:
        """Raise CircuitOpenError if the call is not allowed."""
        if not await self.allow_request():
            raise CircuitOpenError(f"Circuit breaker '{self.name}' is {self._state.value}")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Record the outcome of the guarded call."""
        if exc_val is None:
            await self.record_success()
        elif self._trip_on is None:
            await self.record_failure()
        elif self._trip_on(exc_val):
            await self.trip()
        else:
            # unrelated error: give the probe slot back
            async with self._lock:
                if self._state == CircuitState.HALF_OPEN:
                    self._half_open_calls = max(0, self._half_open_calls - 1)


def quota_breaker(recovery_timeout: float | None = 300.0, **kwargs: Any) -> CircuitBreaker:
    """Build the breaker that guards non-essential writes against store quota errors."""
    return CircuitBreaker(
        name="store_quota",
        failure_threshold=1,
        recovery_timeout=recovery_timeout,
        trip_on=is_quota_error,
        **kwargs,
    )
