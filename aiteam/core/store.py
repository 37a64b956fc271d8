"""Record store contract plus in-memory and JSON-file implementations."""
from __future__ import annotations

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

AGENTS = "agents"
SERVICES = "agent_services"
TASKS = "tasks"
ASSIGNMENTS = "task_assignments"


class RecordNotFoundError(KeyError):
    """Raised by ``update`` when the target record does not exist."""


class RecordStore(Protocol):
    """Narrow persistence contract used by the coordinator."""

    async def upsert(self, collection: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def find_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]: ...

    async def update(self, collection: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]: ...

    async def find_many(self, collection: str, **filters: Any) -> List[Dict[str, Any]]: ...


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, expected in filters.items():
        value = record.get(key)
        if isinstance(expected, (set, frozenset, list, tuple)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class InMemoryRecordStore:
    """Dictionary-backed store. Records are copied on the way in and out."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, collection: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock:
            table = self._collections.setdefault(collection, {})
            record = table.get(record_id, {})
            record.update(copy.deepcopy(data))
            record["id"] = record_id
            table[record_id] = record
            await self._flush()
            return copy.deepcopy(record)

    async def find_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._collections.get(collection, {}).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def update(self, collection: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock:
            table = self._collections.get(collection, {})
            if record_id not in table:
                raise RecordNotFoundError(f"{collection}/{record_id}")
            table[record_id].update(copy.deepcopy(patch))
            await self._flush()
            return copy.deepcopy(table[record_id])

    async def find_many(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        table = self._collections.get(collection, {})
        return [copy.deepcopy(record) for record in table.values() if _matches(record, filters)]

    async def _flush(self) -> None:
        return None


class JsonFileRecordStore(InMemoryRecordStore):
    """In-memory store mirrored to a JSON file after every write."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path
        if path.exists():
            self._collections = json.loads(path.read_text(encoding="utf-8"))
            logger.info("Loaded record store from %s", path)

    async def _flush(self) -> None:
        payload = json.dumps(self._collections, indent=2, default=str)
        await asyncio.to_thread(self._write, payload)

    def _write(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(self._path)


def store_from_url(database_url: str) -> RecordStore:
    """Build a record store from ``memory://`` or ``file:///path.json`` URLs."""
    parsed = urlparse(database_url)
    if parsed.scheme in ("", "memory"):
        return InMemoryRecordStore()
    if parsed.scheme == "file":
        return JsonFileRecordStore(Path(parsed.netloc + parsed.path))
    raise ValueError(f"Unsupported DATABASE_URL scheme: {parsed.scheme!r}")
