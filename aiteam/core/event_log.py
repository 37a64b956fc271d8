"""Bounded in-memory log of coordination events."""
from __future__ import annotations

from collections import deque
from typing import Deque, List

from .models import CoordinationEvent


class EventLog:
    """Append-only ring buffer keeping the most recent ``capacity`` events."""

    def __init__(self, capacity: int = 1000) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._events: Deque[CoordinationEvent] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._events.maxlen or 0

    def __len__(self) -> int:
        return len(self._events)

    def append(self, event: CoordinationEvent) -> None:
        self._events.append(event)

    def recent(self, limit: int = 50) -> List[CoordinationEvent]:
        """Return up to ``limit`` newest events, oldest first."""
        if limit <= 0:
            return []
        events = list(self._events)
        return events[-limit:]
