"""Fan-out of task progress events to live subscribers.

Delivery is best-effort and at-most-once: events emitted before a
subscriber joins are not replayed, and a subscriber that cannot keep up
loses events rather than slowing the pipeline down.
"""
from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import AsyncIterator, Protocol

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from researcher.models.events import SSEEvent
from researcher.services import logger as log_service
from researcher.services import streaming

SUBSCRIBER_QUEUE_SIZE = 100


def room_name(task_id: str) -> str:
    return f"research:{task_id}"


class Subscription(ABC):
    """One observer's view of a task room.

    Use as an async context manager; iterating yields events until a
    terminal (complete/error) event has been delivered.
    """

    def __init__(self, task_id: str):
        self.task_id = task_id

    @abstractmethod
    async def open(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def get(self, timeout: float | None = None) -> SSEEvent:
        """Next event for this room; raises TimeoutError after `timeout` seconds."""

    async def __aenter__(self) -> "Subscription":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __aiter__(self) -> AsyncIterator[SSEEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[SSEEvent]:
        while True:
            event = await self.get()
            yield event
            if event.is_terminal:
                return


class ProgressBroadcaster(Protocol):
    def subscribe(self, task_id: str) -> Subscription: ...
    async def emit_progress(self, task_id: str, stage: str) -> None: ...
    async def emit_complete(self, task_id: str, report: str) -> None: ...
    async def emit_error(self, task_id: str, message: str) -> None: ...
    async def close(self) -> None: ...


class _EmitterMixin(ABC):
    @abstractmethod
    async def publish(self, task_id: str, event: SSEEvent) -> None:
        ...

    async def emit_progress(self, task_id: str, stage: str) -> None:
        await self.publish(task_id, streaming.progress(stage))

    async def emit_complete(self, task_id: str, report: str) -> None:
        await self.publish(task_id, streaming.complete(report))

    async def emit_error(self, task_id: str, message: str) -> None:
        await self.publish(task_id, streaming.error(message))


# --- In-process ---


class InProcessSubscription(Subscription):
    def __init__(self, broadcaster: "InProcessBroadcaster", task_id: str, maxsize: int):
        super().__init__(task_id)
        self._broadcaster = broadcaster
        self.queue: asyncio.Queue[SSEEvent] = asyncio.Queue(maxsize=maxsize)

    async def open(self) -> None:
        self._broadcaster._join(self.task_id, self.queue)

    async def close(self) -> None:
        self._broadcaster._leave(self.task_id, self.queue)

    async def get(self, timeout: float | None = None) -> SSEEvent:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)


class InProcessBroadcaster(_EmitterMixin):
    """Rooms of asyncio queues, one room per task id, in this process only."""

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self._queue_size = queue_size
        self._rooms: dict[str, set[asyncio.Queue[SSEEvent]]] = {}

    def subscribe(self, task_id: str) -> InProcessSubscription:
        return InProcessSubscription(self, task_id, self._queue_size)

    def subscriber_count(self, task_id: str) -> int:
        return len(self._rooms.get(task_id, ()))

    def _join(self, task_id: str, queue: asyncio.Queue[SSEEvent]) -> None:
        self._rooms.setdefault(task_id, set()).add(queue)
        log_service.logger.debug(f"Subscriber joined {room_name(task_id)}")

    def _leave(self, task_id: str, queue: asyncio.Queue[SSEEvent]) -> None:
        room = self._rooms.get(task_id)
        if room is None:
            return
        room.discard(queue)
        if not room:
            del self._rooms[task_id]

    async def publish(self, task_id: str, event: SSEEvent) -> None:
        if not self.subscriber_count(task_id):
            log_service.logger.debug(
                f"No subscribers in {room_name(task_id)}; {event.event.value} not delivered"
            )
            return
        for queue in list(self._rooms.get(task_id, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                log_service.log_event(
                    event_type="broadcast_dropped",
                    message="Subscriber queue full; event dropped",
                    level=logging.WARNING,
                    task_id=task_id,
                    event=event.event.value,
                )

    async def close(self) -> None:
        self._rooms.clear()


# --- Redis pub/sub ---


class RedisSubscription(Subscription):
    def __init__(self, redis: aioredis.Redis, task_id: str, poll_interval: float = 1.0):
        super().__init__(task_id)
        self._redis = redis
        self._poll_interval = poll_interval
        self._pubsub = None

    async def open(self) -> None:
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(room_name(self.task_id))

    async def close(self) -> None:
        if self._pubsub is None:
            return
        await self._pubsub.unsubscribe(room_name(self.task_id))
        await self._pubsub.aclose()
        self._pubsub = None

    async def get(self, timeout: float | None = None) -> SSEEvent:
        if self._pubsub is None:
            raise RuntimeError("Subscription is not open")
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=self._poll_interval
            )
            if message is not None and message.get("type") == "message":
                return SSEEvent.from_json(message["data"])
            if deadline is not None and time.monotonic() >= deadline:
                raise asyncio.TimeoutError()


class RedisBroadcaster(_EmitterMixin):
    """Publishes to one Redis channel per task so any API process can stream it."""

    def __init__(self, redis_url: str | None = None, *, client: aioredis.Redis | None = None):
        if client is None and not redis_url:
            raise ValueError("RedisBroadcaster needs a redis_url or a client")
        self._redis = client or aioredis.from_url(redis_url)

    def subscribe(self, task_id: str) -> RedisSubscription:
        return RedisSubscription(self._redis, task_id)

    async def publish(self, task_id: str, event: SSEEvent) -> None:
        try:
            await self._redis.publish(room_name(task_id), event.to_json())
        except RedisError as e:
            log_service.log_event(
                event_type="broadcast_failed",
                message="Could not publish progress event",
                level=logging.WARNING,
                task_id=task_id,
                event=event.event.value,
                error=str(e),
            )

    async def close(self) -> None:
        await self._redis.aclose()
