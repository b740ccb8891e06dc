"""
Backpressure feedback for the worker pool.

Each pool owns one FeedbackBus; worker queues publish an event whenever they
cross their high or low watermark so producers (or just the log) can react.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from loguru import logger


class BackpressureLevel(str, Enum):
    """Backpressure severity levels."""

    OK = "ok"  # back below low watermark
    HARD = "hard"  # at/above high watermark - producers will start to block


@dataclass(frozen=True)
class FeedbackEvent:
    """Immutable backpressure feedback event.

    Attributes:
        coordinator_id: Identifies the pool and worker (e.g. "public.events#2")
        queue_size: Current queue depth
        capacity: Maximum queue capacity
        level: Backpressure severity
    """

    coordinator_id: str
    queue_size: int
    capacity: int
    level: BackpressureLevel

    @property
    def utilization(self) -> float:
        """Queue utilization as a fraction (0.0 to 1.0)."""
        return self.queue_size / self.capacity if self.capacity > 0 else 0.0


class FeedbackSubscriber(Protocol):
    async def __call__(self, event: FeedbackEvent) -> None: ...


class FeedbackBus:
    """In-process pub/sub bus for backpressure feedback.

    One subscriber's failure does not affect others. Best-effort delivery.

    Example:
        async def on_feedback(event: FeedbackEvent):
            if event.level == BackpressureLevel.HARD:
                await slow_down_producer()

        pool.feedback.subscribe(on_feedback)
    """

    def __init__(self) -> None:
        self._subs: list[FeedbackSubscriber] = []

    def subscribe(self, callback: FeedbackSubscriber) -> None:
        if callback not in self._subs:
            self._subs.append(callback)
            logger.debug(f"Feedback subscriber added (total: {len(self._subs)})")

    def unsubscribe(self, callback: FeedbackSubscriber) -> None:
        """Remove a subscriber; no-op if it was never added."""
        try:
            self._subs.remove(callback)
            logger.debug(f"Feedback subscriber removed (total: {len(self._subs)})")
        except ValueError:
            pass

    async def publish(self, event: FeedbackEvent) -> None:
        if not self._subs:
            return

        logger.debug(
            f"Publishing feedback: coord={event.coordinator_id} "
            f"level={event.level.value} "
            f"queue={event.queue_size}/{event.capacity} ({event.utilization:.1%})"
        )

        # Iterate over copy to allow unsubscribe during iteration
        for callback in list(self._subs):
            try:
                await callback(event)
            except Exception as exc:
                logger.debug(f"Feedback subscriber error (ignored): {type(exc).__name__}: {exc}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)
