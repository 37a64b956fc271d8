"""Deterministic port allocation for agent services."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

logger = logging.getLogger(__name__)


class PortPool:
    """Hands out the lowest free port in ``[port_min, port_max]``."""

    def __init__(self, port_min: int = 3001, port_max: int = 4000) -> None:
        if port_min > port_max:
            raise ValueError(f"Invalid port range {port_min}-{port_max}")
        self.port_min = port_min
        self.port_max = port_max
        self._used: Set[int] = set()
        self._lock = asyncio.Lock()

    @property
    def used_ports(self) -> Set[int]:
        return set(self._used)

    async def allocate(self) -> Optional[int]:
        """Claim the lowest free port, or return None when the range is exhausted."""
        async with self._lock:
            for port in range(self.port_min, self.port_max + 1):
                if port not in self._used:
                    self._used.add(port)
                    logger.debug("Allocated port %s", port)
                    return port
        logger.warning("No free port in range %s-%s", self.port_min, self.port_max)
        return None

    async def reserve(self, port: int) -> bool:
        """Claim a specific port; False if another holder already owns it."""
        async with self._lock:
            if port in self._used:
                return False
            self._used.add(port)
            logger.debug("Reserved port %s", port)
            return True

    async def release(self, port: Optional[int]) -> None:
        if port is None:
            return
        async with self._lock:
            self._used.discard(port)
            logger.debug("Released port %s", port)
