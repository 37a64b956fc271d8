"""Tests for deterministic port allocation."""
from __future__ import annotations

import pytest

from aiteam.supervisor.ports import PortPool


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_allocates_lowest_free_port() -> None:
    pool = PortPool(3001, 3003)

    assert await pool.allocate() == 3001
    assert await pool.allocate() == 3002
    await pool.release(3001)
    assert await pool.allocate() == 3001
    assert pool.used_ports == {3001, 3002}


@pytest.mark.anyio
async def test_exhausted_range_returns_none() -> None:
    pool = PortPool(3001, 3001)

    assert await pool.allocate() == 3001
    assert await pool.allocate() is None


@pytest.mark.anyio
async def test_reserve_rejects_port_in_use() -> None:
    pool = PortPool(3001, 3010)

    assert await pool.reserve(3005)
    assert not await pool.reserve(3005)
    assert await pool.allocate() == 3001

    await pool.release(3005)
    await pool.release(None)
    assert pool.used_ports == {3001}


def test_invalid_range_rejected() -> None:
    with pytest.raises(ValueError):
        PortPool(4000, 3000)
