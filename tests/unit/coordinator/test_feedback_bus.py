"""
Unit tests for FeedbackBus and backpressure events.
"""

import asyncio
import pytest

from copy_sink.coordinator.feedback import (
    BackpressureLevel,
    FeedbackEvent,
    FeedbackBus,
)


@pytest.fixture
def bus():
    """Fresh FeedbackBus for each test."""
    return FeedbackBus()


@pytest.fixture
def event():
    """Sample feedback event."""
    return FeedbackEvent(
        coordinator_id="public.events#0",
        queue_size=7,
        capacity=8,
        level=BackpressureLevel.HARD,
    )


@pytest.mark.asyncio
async def test_feedback_event_immutable(event):
    """FeedbackEvent is frozen (immutable)."""
    with pytest.raises(Exception):
        event.queue_size = 9  # type: ignore


@pytest.mark.asyncio
async def test_feedback_event_utilization():
    event = FeedbackEvent(
        coordinator_id="test",
        queue_size=6,
        capacity=8,
        level=BackpressureLevel.HARD,
    )
    assert event.utilization == 0.75


@pytest.mark.asyncio
async def test_feedback_event_utilization_zero_capacity():
    """FeedbackEvent.utilization handles zero capacity gracefully."""
    event = FeedbackEvent(
        coordinator_id="test",
        queue_size=0,
        capacity=0,
        level=BackpressureLevel.OK,
    )
    assert event.utilization == 0.0


@pytest.mark.asyncio
async def test_subscribe_and_publish(bus, event):
    """Subscribe to feedback and receive published events."""
    received = []

    async def subscriber(evt: FeedbackEvent):
        received.append(evt)

    bus.subscribe(subscriber)
    await bus.publish(event)

    assert received == [event]
    assert received[0].level == BackpressureLevel.HARD


@pytest.mark.asyncio
async def test_unsubscribe(bus, event):
    received = []

    async def subscriber(evt: FeedbackEvent):
        received.append(evt)

    bus.subscribe(subscriber)
    bus.unsubscribe(subscriber)
    await bus.publish(event)

    assert received == []


@pytest.mark.asyncio
async def test_unsubscribe_not_found(bus):
    """Unsubscribe is safe when callback not found."""

    async def subscriber(evt: FeedbackEvent):
        pass

    bus.unsubscribe(subscriber)
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_subscribe_duplicate_ignored(bus, event):
    received = []

    async def subscriber(evt: FeedbackEvent):
        received.append(evt)

    bus.subscribe(subscriber)
    bus.subscribe(subscriber)
    await bus.publish(event)

    assert len(received) == 1
    assert bus.subscriber_count == 1


@pytest.mark.asyncio
async def test_subscriber_exception_isolation(bus, event):
    """One subscriber's exception doesn't affect others."""
    received = []

    async def bad_subscriber(evt: FeedbackEvent):
        raise RuntimeError("Intentional error")

    async def good_subscriber(evt: FeedbackEvent):
        await asyncio.sleep(0)
        received.append(evt)

    bus.subscribe(bad_subscriber)
    bus.subscribe(good_subscriber)
    await bus.publish(event)

    assert received == [event]


@pytest.mark.asyncio
async def test_no_subscribers_no_error(bus, event):
    await bus.publish(event)


@pytest.mark.asyncio
async def test_backpressure_levels():
    assert BackpressureLevel.OK.value == "ok"
    assert BackpressureLevel.HARD.value == "hard"


@pytest.mark.asyncio
async def test_pools_do_not_share_a_bus(make_config, schema, warehouse, runtime_settings):
    """Each pool gets its own bus."""
    from copy_sink.coordinator import WorkerPool

    a = WorkerPool(make_config(), schema, warehouse.connect, settings=runtime_settings)
    b = WorkerPool(make_config(), schema, warehouse.connect, settings=runtime_settings)
    assert a.feedback is not b.feedback
