"""Circuit breaker pattern for external platform dependencies.

Retries smooth over transient hiccups inside one call; the circuit breaker
stops calling a dependency that is clearly down, across calls and across
runs in the same process.

The circuit breaker has three states (plus a reporting-only DEGRADED):
- CLOSED: Normal operation, calls flow through
- DEGRADED: Closed, but at least one consecutive failure is recorded
- OPEN: Rejecting calls until the cooldown elapses
- HALF_OPEN: Cooldown elapsed, exactly one trial call is permitted

State transitions:
- CLOSED -> OPEN: When consecutive failures reach failure_threshold
- OPEN -> HALF_OPEN: After cooldown_seconds have elapsed
- HALF_OPEN -> CLOSED: On success of the trial call
- HALF_OPEN -> OPEN: On failure of the trial call

Example usage:
    from repairflow.execution.circuit_breaker import CircuitBreakerRegistry

    registry = CircuitBreakerRegistry(failure_threshold=3, cooldown_seconds=120)
    estimate = await registry.call("shop_api", lambda: shop.create_estimate(...))
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, TypeVar

from repairflow.core.config import CircuitBreakerConfig
from repairflow.core.errors import CircuitOpenError
from repairflow.core.logging import get_logger

_logger = get_logger("circuit_breaker")

T = TypeVar("T")

Clock = Callable[[], float]


class CircuitState(str, Enum):
    """Externally reported state of a circuit breaker."""

    CLOSED = "closed"
    """Normal operation, no failures outstanding."""

    DEGRADED = "degraded"
    """Still closed, but consecutive failures have been recorded."""

    OPEN = "open"
    """Rejecting calls until the cooldown elapses."""

    HALF_OPEN = "half-open"
    """Cooldown elapsed; the next call is a trial."""


@dataclass
class CircuitBreakerStats:
    """Counters for health reporting."""

    total_successes: int = 0
    total_failures: int = 0
    total_rejections: int = 0
    times_opened: int = 0
    consecutive_failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "times_opened": self.times_opened,
            "consecutive_failures": self.consecutive_failures,
        }


class CircuitBreaker:
    """Circuit breaker guarding one named dependency.

    Thread-safe: state is protected by a lock, which is never held across
    the awaited operation.

    Attributes:
        name: Dependency name (used in errors and logs).
        failure_threshold: Consecutive failures that open the circuit.
        cooldown_seconds: Time the circuit stays open before a trial call.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 3,
        cooldown_seconds: float = 120.0,
        clock: Clock = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if cooldown_seconds <= 0:
            raise ValueError("cooldown_seconds must be positive")

        self._name = name
        self._failure_threshold = failure_threshold
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock

        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False
        self._stats = CircuitBreakerStats()
        self._lock = Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown_seconds

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def get_state(self) -> CircuitState:
        """Pure read of the current state, for health reporting."""
        with self._lock:
            return self._state_locked()

    def _state_locked(self) -> CircuitState:
        if self._opened_at is not None:
            if self._clock() - self._opened_at < self._cooldown_seconds:
                return CircuitState.OPEN
            return CircuitState.HALF_OPEN
        if self._consecutive_failures > 0:
            return CircuitState.DEGRADED
        return CircuitState.CLOSED

    def time_until_retry(self) -> float | None:
        """Seconds until a trial call is allowed, or None if not OPEN."""
        with self._lock:
            if self._opened_at is None:
                return None
            remaining = self._cooldown_seconds - (self._clock() - self._opened_at)
            return remaining if remaining > 0 else None

    def _acquire(self) -> None:
        """Admit a call or raise CircuitOpenError."""
        with self._lock:
            opened_at = self._opened_at
            if opened_at is None:
                return
            elapsed = self._clock() - opened_at
            if elapsed >= self._cooldown_seconds and not self._trial_in_flight:
                self._trial_in_flight = True
                _logger.info(
                    "circuit_breaker.state_changed",
                    name=self._name,
                    from_state=CircuitState.OPEN.value,
                    to_state=CircuitState.HALF_OPEN.value,
                    reason="cooldown_elapsed",
                )
                return
            # Open, or half-open with the trial call still running
            self._stats.total_rejections += 1
            raise CircuitOpenError(self._name, max(0.0, self._cooldown_seconds - elapsed))

    def record_success(self) -> None:
        """Record a successful call; closes a half-open circuit."""
        with self._lock:
            was_open = self._opened_at is not None
            self._stats.total_successes += 1
            self._consecutive_failures = 0
            self._stats.consecutive_failures = 0
            self._opened_at = None
            self._trial_in_flight = False
            if was_open:
                _logger.info(
                    "circuit_breaker.state_changed",
                    name=self._name,
                    from_state=CircuitState.HALF_OPEN.value,
                    to_state=CircuitState.CLOSED.value,
                    reason="trial_succeeded",
                )

    def record_failure(self) -> None:
        """Record a failed call; may open the circuit."""
        with self._lock:
            self._stats.total_failures += 1
            self._consecutive_failures += 1
            self._stats.consecutive_failures = self._consecutive_failures

            if self._trial_in_flight:
                self._trial_in_flight = False
                self._opened_at = self._clock()
                self._stats.times_opened += 1
                _logger.warning(
                    "circuit_breaker.state_changed",
                    name=self._name,
                    from_state=CircuitState.HALF_OPEN.value,
                    to_state=CircuitState.OPEN.value,
                    reason="trial_failed",
                )
            elif (
                self._opened_at is None
                and self._consecutive_failures >= self._failure_threshold
            ):
                self._opened_at = self._clock()
                self._stats.times_opened += 1
                _logger.warning(
                    "circuit_breaker.state_changed",
                    name=self._name,
                    from_state=CircuitState.DEGRADED.value,
                    to_state=CircuitState.OPEN.value,
                    reason="failure_threshold_reached",
                    consecutive_failures=self._consecutive_failures,
                    failure_threshold=self._failure_threshold,
                )
            else:
                _logger.debug(
                    "circuit_breaker.failure_recorded",
                    name=self._name,
                    consecutive_failures=self._consecutive_failures,
                    failure_threshold=self._failure_threshold,
                )

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Invoke ``operation`` through the breaker.

        Raises:
            CircuitOpenError: Without invoking the operation, while OPEN.
            Exception: Whatever the operation raised (after recording it).
            asyncio.CancelledError: When the caller's timeout cancels the
                operation; recorded as a failure so a hung dependency trips
                the breaker and a cancelled trial reopens it.
        """
        self._acquire()
        try:
            result = await operation()
        except (Exception, asyncio.CancelledError):
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Clear failure count and open timestamp unconditionally."""
        with self._lock:
            self._consecutive_failures = 0
            self._stats.consecutive_failures = 0
            self._opened_at = None
            self._trial_in_flight = False
        _logger.info("circuit_breaker.reset", name=self._name)

    def get_stats(self) -> CircuitBreakerStats:
        """Return a copy of the current counters."""
        with self._lock:
            return CircuitBreakerStats(**self._stats.to_dict())


class CircuitBreakerRegistry:
    """Lazily created breakers keyed by dependency name.

    One registry is meant to be shared by every run in a process so failures
    seen by one run inform the next. State is in-memory only.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown_seconds: float = 120.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    @classmethod
    def from_config(cls, config: CircuitBreakerConfig) -> CircuitBreakerRegistry:
        return cls(
            failure_threshold=config.failure_threshold,
            cooldown_seconds=config.cooldown_seconds,
        )

    def get(self, name: str) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it on first use."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name=name,
                    failure_threshold=self._failure_threshold,
                    cooldown_seconds=self._cooldown_seconds,
                    clock=self._clock,
                )
                self._breakers[name] = breaker
            return breaker

    async def call(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.get(name).call(operation)

    def get_state(self, name: str) -> CircuitState:
        return self.get(name).get_state()

    def reset(self, name: str) -> None:
        self.get(name).reset()

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._breakers)


_shared_registry: CircuitBreakerRegistry | None = None


def get_shared_registry() -> CircuitBreakerRegistry:
    """Process-wide registry used when a run is not given its own."""
    global _shared_registry
    if _shared_registry is None:
        _shared_registry = CircuitBreakerRegistry()
    return _shared_registry


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerStats",
    "CircuitState",
    "get_shared_registry",
]
