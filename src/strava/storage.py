"""Durable key-value persistence for sync state.

The subsystem persists three small values that must survive a restart:

    strava_rate_limit    — admission state blob (JSON)
    strava_last_sync_at  — ISO-8601 timestamp of the last successful sync
    strava_stats_cache   — merged aggregate rollup (JSON)

Backends:
    MemoryKeyValueStore   — process-local, for tests and ephemeral runs
    FileKeyValueStore     — single JSON document on disk
    PostgresKeyValueStore — ``sync_kv`` table through the asyncpg pool
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from src.services import database

logger = logging.getLogger("stride.storage")

RATE_LIMIT_KEY = "strava_rate_limit"
LAST_SYNC_KEY = "strava_last_sync_at"
STATS_CACHE_KEY = "strava_stats_cache"


class KeyValueStore(ABC):
    """Narrow string-to-string persistence interface."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``.  Deleting an absent key is a no-op."""

    async def ping(self) -> bool:
        """Return True if the backend is reachable."""
        return True


class MemoryKeyValueStore(KeyValueStore):
    """In-process store.  Nothing survives the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class FileKeyValueStore(KeyValueStore):
    """All keys in one JSON object on disk.

    Writes go to a temporary sibling file first and are then renamed over
    the target, so a crash mid-write leaves the previous document intact.
    Disk I/O runs in a worker thread; writes are serialized in call order.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._data: dict[str, str] | None = None
        self._write_lock = asyncio.Lock()

    def _read_file(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Corrupt store file %s (%s); starting empty", self._path, exc)
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _write_file(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, self._path)

    async def _load(self) -> dict[str, str]:
        if self._data is None:
            loaded = await asyncio.to_thread(self._read_file)
            # another caller may have loaded while this read was in the thread
            if self._data is None:
                self._data = loaded
        return self._data

    async def _flush(self) -> None:
        payload = json.dumps(self._data, sort_keys=True)
        async with self._write_lock:
            await asyncio.to_thread(self._write_file, payload)

    async def get(self, key: str) -> str | None:
        return (await self._load()).get(key)

    async def set(self, key: str, value: str) -> None:
        (await self._load())[key] = value
        await self._flush()

    async def delete(self, key: str) -> None:
        if (await self._load()).pop(key, None) is not None:
            await self._flush()

    async def ping(self) -> bool:
        try:
            await asyncio.to_thread(self._path.parent.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("Storage probe failed: %s", exc)
            return False
        return True


_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS sync_kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


class PostgresKeyValueStore(KeyValueStore):
    """Rows in the ``sync_kv`` table.  Requires ``database.init_pool()``."""

    _UPSERT = database.build_upsert_query("sync_kv", ["key", "value"], ["key"])

    async def ensure_schema(self) -> None:
        await database.execute(_CREATE_TABLE)
        logger.info("sync_kv table ready")

    async def get(self, key: str) -> str | None:
        return await database.fetchval("SELECT value FROM sync_kv WHERE key = $1", key)

    async def set(self, key: str, value: str) -> None:
        await database.execute(self._UPSERT, key, value)

    async def delete(self, key: str) -> None:
        await database.execute("DELETE FROM sync_kv WHERE key = $1", key)

    async def ping(self) -> bool:
        try:
            await database.fetchval("SELECT 1")
        except Exception as exc:
            logger.warning("Storage probe failed: %s", exc)
            return False
        return True
