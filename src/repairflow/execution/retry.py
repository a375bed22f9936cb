"""Retry policy: exponential backoff with jitter, gated by failure class.

Transient failures (timeouts, stale sessions, network hiccups) are retried
up to a fixed budget. Deterministic failures (auth, not found, parse errors,
open circuits) are re-raised immediately so no budget is spent on them.

Example usage:
    from repairflow.execution.retry import RetryContext, with_retry

    ctx = RetryContext(max_retries=2, base_delay_seconds=1.0, jitter_fraction=0.2)
    customer = await with_retry(lambda: shop.search_customer(phone), ctx,
                                name="search_customer")
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from repairflow.core.config import RetryConfig
from repairflow.core.errors import FailureClassifier, classify, is_retryable
from repairflow.core.logging import get_logger

_logger = get_logger("retry")

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryContext:
    """Immutable retry settings for one call site.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        base_delay_seconds: Delay before retry 0; doubles with each attempt.
        jitter_fraction: Each delay is scaled by a random factor in
            [1 - jitter_fraction, 1 + jitter_fraction].
        max_delay_seconds: Optional cap applied before jitter.
    """

    max_retries: int = 2
    base_delay_seconds: float = 1.0
    jitter_fraction: float = 0.2
    max_delay_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_seconds < 0:
            raise ValueError(
                f"base_delay_seconds must be >= 0, got {self.base_delay_seconds}"
            )
        if not 0.0 <= self.jitter_fraction <= 1.0:
            raise ValueError(f"jitter_fraction must be 0.0-1.0, got {self.jitter_fraction}")

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryContext:
        return cls(
            max_retries=config.max_retries,
            base_delay_seconds=config.base_delay_seconds,
            jitter_fraction=config.jitter_fraction,
            max_delay_seconds=config.max_delay_seconds,
        )

    def base_delay_for(self, attempt: int) -> float:
        """Un-jittered delay after failed attempt ``attempt`` (0-indexed)."""
        delay = self.base_delay_seconds * (2**attempt)
        if self.max_delay_seconds is not None:
            delay = min(delay, self.max_delay_seconds)
        return delay

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Jittered delay after failed attempt ``attempt``.

        Args:
            attempt: Index of the attempt that just failed.
            rng: Source of uniform floats in [0, 1).
        """
        delay = self.base_delay_for(attempt)
        return delay * (1 + (rng() * 2 - 1) * self.jitter_fraction)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    context: RetryContext,
    *,
    name: str = "operation",
    classifier: FailureClassifier | None = None,
    sleep: SleepFn = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    """Invoke ``operation`` under the retry policy.

    The operation is called at most ``context.max_retries + 1`` times.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        context: Retry settings for this call site.
        name: Operation name used in log entries.
        classifier: Classifier to use instead of the default one.
        sleep: Awaitable sleep, injectable for tests.
        rng: Jitter source, injectable for tests.

    Returns:
        The operation's result.

    Raises:
        Exception: The last error, when it is terminal or the budget is spent.
    """
    classify_fn = classifier.classify if classifier is not None else classify

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            override = getattr(exc, "retryable", None)
            failure = classify_fn(exc)

            if override is False or (not is_retryable(failure) and override is not True):
                _logger.debug(
                    "retry.terminal_failure",
                    operation=name,
                    attempt=attempt + 1,
                    failure_class=failure.value,
                    error=str(exc),
                )
                raise

            if attempt >= context.max_retries:
                _logger.warning(
                    "retry.budget_exhausted",
                    operation=name,
                    attempts=attempt + 1,
                    failure_class=failure.value,
                    error=str(exc),
                )
                raise

            delay = context.delay_for(attempt, rng)
            _logger.info(
                "retry.attempt_failed",
                operation=name,
                attempt=attempt + 1,
                max_retries=context.max_retries,
                failure_class=failure.value,
                delay_seconds=round(delay, 3),
            )
            await sleep(delay)
            attempt += 1


__all__ = ["RetryContext", "with_retry"]
