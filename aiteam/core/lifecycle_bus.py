"""In-memory bus delivering service lifecycle notifications to subscribers."""
from __future__ import annotations

import asyncio
import itertools
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from .models import LifecycleEvent


class LifecycleBus:
    """Fan-out hub: every subscriber gets its own ordered queue of events."""

    def __init__(self) -> None:
        self._subscribers: Dict[int, asyncio.Queue[LifecycleEvent]] = {}
        self._ids = itertools.count()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: LifecycleEvent) -> None:
        """Deliver an event to all current subscribers without blocking."""
        for queue in list(self._subscribers.values()):
            queue.put_nowait(event)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue[LifecycleEvent]]:
        """Context manager yielding a queue that receives every later event."""
        subscriber_id = next(self._ids)
        queue: asyncio.Queue[LifecycleEvent] = asyncio.Queue()
        self._subscribers[subscriber_id] = queue
        try:
            yield queue
        finally:
            self._subscribers.pop(subscriber_id, None)
