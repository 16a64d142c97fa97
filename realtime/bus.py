from __future__ import annotations

import asyncio
from dataclasses import dataclass


@dataclass(frozen=True)
class Event:
    type: str
    data: dict


class EventBus:
    """In-process fan-out of disaster events to live subscribers.

    Each subscriber gets a bounded queue; a slow subscriber loses its oldest
    pending event rather than blocking the publisher.
    """

    def __init__(self, *, queue_size: int = 200) -> None:
        self._queue_size = queue_size
        self._lock = asyncio.Lock()
        self._subscribers: set[asyncio.Queue[Event]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self) -> asyncio.Queue[Event]:
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=self._queue_size)
        async with self._lock:
            self._subscribers.add(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue[Event]) -> None:
        async with self._lock:
            self._subscribers.discard(queue)

    async def publish(self, event: Event) -> int:
        async with self._lock:
            subscribers = list(self._subscribers)
        for queue in subscribers:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)
        return len(subscribers)
