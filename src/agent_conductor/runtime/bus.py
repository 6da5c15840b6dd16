"""In-process fan-out of agent events to subscribers."""

from __future__ import annotations

import asyncio
import logging

from agent_conductor.protocol.events import AgentEvent

logger = logging.getLogger(__name__)


class Subscription:
    """Async iterator over events published after subscribing."""

    def __init__(self, bus: EventBus, queue: asyncio.Queue[AgentEvent], request_id: str | None) -> None:
        self._bus = bus
        self._queue = queue
        self.request_id = request_id
        self.closed = False

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> AgentEvent:
        while True:
            if self.closed and self._queue.empty():
                raise StopAsyncIteration
            event = await self._queue.get()
            if self.request_id is None or event.request_id == self.request_id:
                return event

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus._unsubscribe(self._queue)


class EventBus:
    def __init__(self, *, max_queue_size: int = 1000) -> None:
        self.max_queue_size = max_queue_size
        self._queues: list[asyncio.Queue[AgentEvent]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def subscribe(self, request_id: str | None = None) -> Subscription:
        queue: asyncio.Queue[AgentEvent] = asyncio.Queue(maxsize=self.max_queue_size)
        self._queues.append(queue)
        return Subscription(self, queue, request_id)

    def publish(self, event: AgentEvent) -> None:
        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "event_bus event=dropped request_id=%s type=%s",
                    event.request_id,
                    event.type,
                )

    def _unsubscribe(self, queue: asyncio.Queue[AgentEvent]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)
