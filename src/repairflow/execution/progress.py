"""One-way progress channel for estimate runs.

The sequencer pushes phase names; consumers subscribe with sync or async
callbacks. Delivery is best-effort: a failing subscriber is logged and,
after repeated failures, disabled. It never affects the run.

Usage::

    channel = ProgressChannel()
    sub_id = channel.subscribe(lambda event: print(event.phase))
    await channel.publish("source_parts", run_id="abc123")
    channel.unsubscribe(sub_id)
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from repairflow.core.logging import get_logger

_logger = get_logger("progress")

ProgressCallback = Callable[["ProgressEvent"], Any]

_MAX_CONSECUTIVE_FAILURES = 5


@dataclass(frozen=True)
class ProgressEvent:
    """A phase transition notice."""

    phase: str
    run_id: str | None = None
    estimate_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class _Subscriber:
    callback: ProgressCallback
    consecutive_failures: int = 0


class ProgressChannel:
    """Fan-out of phase names to subscribers."""

    def __init__(self) -> None:
        self._subscribers: dict[str, _Subscriber] = {}

    def subscribe(self, callback: ProgressCallback) -> str:
        """Register a sync or async callback. Returns a subscription ID."""
        sub_id = str(uuid.uuid4())
        self._subscribers[sub_id] = _Subscriber(callback=callback)
        _logger.debug("progress.subscribed", sub_id=sub_id)
        return sub_id

    def unsubscribe(self, sub_id: str) -> bool:
        """Remove a subscriber. Returns True if it existed."""
        return self._subscribers.pop(sub_id, None) is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(
        self,
        phase: str,
        *,
        run_id: str | None = None,
        estimate_id: str | None = None,
    ) -> None:
        """Deliver ``phase`` to every active subscriber. Never raises."""
        event = ProgressEvent(phase=phase, run_id=run_id, estimate_id=estimate_id)
        for sub_id, sub in list(self._subscribers.items()):
            if sub.consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
                continue
            try:
                result = sub.callback(event)
                if asyncio.iscoroutine(result):
                    await result
                sub.consecutive_failures = 0
            except Exception:
                sub.consecutive_failures += 1
                _logger.warning(
                    "progress.subscriber_error",
                    sub_id=sub_id,
                    phase=phase,
                    consecutive_failures=sub.consecutive_failures,
                    exc_info=True,
                )
                if sub.consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
                    _logger.error(
                        "progress.subscriber_disabled",
                        sub_id=sub_id,
                        reason=f"{_MAX_CONSECUTIVE_FAILURES} consecutive failures",
                    )


__all__ = ["ProgressCallback", "ProgressChannel", "ProgressEvent"]
