"""Tests for the record store implementations."""
from __future__ import annotations

from pathlib import Path

import pytest

from aiteam.core.store import (
    AGENTS,
    InMemoryRecordStore,
    JsonFileRecordStore,
    RecordNotFoundError,
    store_from_url,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_upsert_merges_and_copies() -> None:
    store = InMemoryRecordStore()
    data = {"name": "Analyst", "capabilities": ["analysis"]}
    await store.upsert(AGENTS, "a1", data)
    data["capabilities"].append("mutated")

    await store.upsert(AGENTS, "a1", {"status": "busy"})
    record = await store.find_by_id(AGENTS, "a1")

    assert record == {"id": "a1", "name": "Analyst", "capabilities": ["analysis"], "status": "busy"}


@pytest.mark.anyio
async def test_update_missing_record_raises() -> None:
    store = InMemoryRecordStore()

    with pytest.raises(RecordNotFoundError):
        await store.update(AGENTS, "ghost", {"status": "idle"})


@pytest.mark.anyio
async def test_find_many_supports_membership_filters() -> None:
    store = InMemoryRecordStore()
    await store.upsert(AGENTS, "a1", {"status": "idle"})
    await store.upsert(AGENTS, "a2", {"status": "busy"})
    await store.upsert(AGENTS, "a3", {"status": "offline"})

    found = await store.find_many(AGENTS, status=("idle", "busy"))
    assert sorted(record["id"] for record in found) == ["a1", "a2"]
    assert [record["id"] for record in await store.find_many(AGENTS, status="offline")] == ["a3"]


@pytest.mark.anyio
async def test_json_file_store_survives_reload(tmp_path: Path) -> None:
    path = tmp_path / "state" / "records.json"
    store = JsonFileRecordStore(path)
    await store.upsert(AGENTS, "a1", {"status": "idle"})

    reloaded = JsonFileRecordStore(path)
    assert await reloaded.find_by_id(AGENTS, "a1") == {"id": "a1", "status": "idle"}


def test_store_from_url(tmp_path: Path) -> None:
    assert isinstance(store_from_url("memory://"), InMemoryRecordStore)
    assert isinstance(store_from_url(f"file://{tmp_path}/db.json"), JsonFileRecordStore)
    with pytest.raises(ValueError):
        store_from_url("postgres://localhost/db")
