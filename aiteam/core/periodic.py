"""Fixed-interval background loop used by the health collector and staleness sweep."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run ``callback`` every ``interval`` seconds until stopped.

    A cycle is never cancelled midway: ``stop`` waits for the running cycle to
    finish before returning.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], Awaitable[Any]]) -> None:
        self.name = name
        self.interval = interval
        self._callback = callback
        self._runner: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def start(self) -> None:
        if self._runner is not None:
            return
        self._stop_event.clear()
        self._runner = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        if self._runner is None:
            return
        self._stop_event.set()
        await self._runner
        self._runner = None

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                try:
                    await self._callback()
                except Exception:  # noqa: BLE001
                    logger.exception("Periodic task %s failed", self.name)
