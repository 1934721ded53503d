from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from researcher.models.events import EventType, SSEEvent
from researcher.services import streaming
from researcher.services.broadcaster import (
    InProcessBroadcaster,
    RedisBroadcaster,
    Subscription,
    _EmitterMixin,
    room_name,
)


def test_step_messages():
    assert streaming.step_message("planning") == "Planning research strategy..."
    assert streaming.step_message("searching") == "Searching the web for relevant sources..."
    assert streaming.step_message("analyzing") == "Analyzing and synthesizing findings..."
    assert streaming.step_message("generating") == "Generating comprehensive report..."
    assert streaming.step_message("reticulating") == "Processing..."


def test_event_wire_format_round_trips():
    event = streaming.progress("planning")

    assert event.format().startswith("event: progress\ndata: {")
    restored = SSEEvent.from_json(event.to_json())
    assert restored.event == EventType.PROGRESS
    assert restored.data == event.data
    assert set(event.data) == {"step", "message", "timestamp"}


@pytest.mark.asyncio
async def test_emissions_fan_out_to_all_subscribers():
    broadcaster = InProcessBroadcaster()

    async with broadcaster.subscribe("t1") as first, broadcaster.subscribe("t1") as second:
        await broadcaster.emit_progress("t1", "planning")
        await broadcaster.emit_complete("t1", "# report")

        for sub in (first, second):
            received = [event async for event in sub]
            assert [e.event for e in received] == [EventType.PROGRESS, EventType.COMPLETE]
            assert received[0].data["message"] == "Planning research strategy..."
            assert received[1].data["report"] == "# report"

    assert broadcaster.subscriber_count("t1") == 0


@pytest.mark.asyncio
async def test_rooms_are_isolated_per_task():
    broadcaster = InProcessBroadcaster()

    async with broadcaster.subscribe("t1") as sub:
        await broadcaster.emit_error("t2", "other task failed")
        with pytest.raises(asyncio.TimeoutError):
            await sub.get(timeout=0.01)


@pytest.mark.asyncio
async def test_late_subscriber_gets_no_backlog():
    broadcaster = InProcessBroadcaster()
    await broadcaster.emit_progress("t1", "planning")

    async with broadcaster.subscribe("t1") as sub:
        await broadcaster.emit_error("t1", "boom")
        event = await sub.get(timeout=1)

    assert event.event == EventType.ERROR
    assert event.data["error"] == "boom"


@pytest.mark.asyncio
async def test_full_subscriber_queue_drops_events():
    broadcaster = InProcessBroadcaster(queue_size=1)

    async with broadcaster.subscribe("t1") as sub:
        await broadcaster.emit_progress("t1", "planning")
        await broadcaster.emit_progress("t1", "searching")

        first = await sub.get(timeout=1)
        assert first.data["step"] == "planning"
        with pytest.raises(asyncio.TimeoutError):
            await sub.get(timeout=0.01)


@pytest.mark.asyncio
async def test_redis_broadcaster_publishes_to_task_channel():
    client = AsyncMock()
    broadcaster = RedisBroadcaster(client=client)

    await broadcaster.emit_progress("t1", "searching")

    channel, payload = client.publish.await_args.args
    assert channel == room_name("t1") == "research:t1"
    assert SSEEvent.from_json(payload).data["step"] == "searching"


@pytest.mark.asyncio
async def test_redis_publish_errors_do_not_propagate():
    client = AsyncMock()
    client.publish.side_effect = RedisConnectionError("redis down")
    broadcaster = RedisBroadcaster(client=client)

    await broadcaster.emit_complete("t1", "report")

    client.publish.assert_awaited_once()


def test_subscription_without_get_cannot_be_created():
    class HalfSubscription(Subscription):
        async def open(self) -> None:
            pass

        async def close(self) -> None:
            pass

    with pytest.raises(TypeError):
        HalfSubscription("t1")


def test_broadcaster_without_publish_cannot_be_created():
    class NoPublish(_EmitterMixin):
        pass

    with pytest.raises(TypeError):
        NoPublish()
