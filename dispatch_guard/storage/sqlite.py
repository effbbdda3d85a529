"""Storage layer — Blob storage backed by SQLite.

Keeps the offline queue and cache mirror across process restarts.  Values
are stored as JSON text; writes are serialised through an ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any

import aiosqlite

from dispatch_guard.exceptions import StorageError
from dispatch_guard.logging import get_logger
from dispatch_guard.storage.interface import DurableStorage

log = get_logger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS blobs (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  REAL NOT NULL
);
"""


class SqliteStorage(DurableStorage):
    """Async durable storage backed by SQLite.

    Usage::

        storage = SqliteStorage(Path("~/.dispatch-guard/storage.db"))
        await storage.init()
        await storage.persist("dispatch_guard.offline_actions", [...])
        blob = await storage.read("dispatch_guard.offline_actions")
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path.expanduser()
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._db_path

    async def init(self) -> None:
        if self._conn is not None:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = await aiosqlite.connect(str(self._db_path))
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.executescript(_SCHEMA_SQL)
            await self._conn.commit()
        except Exception as exc:
            raise StorageError(
                f"SqliteStorage init failed: {exc}", context={"path": str(self._db_path)}
            ) from exc
        log.debug("sqlite_storage_opened", path=str(self._db_path))

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def persist(self, key: str, blob: Any) -> None:
        conn = self._require()
        serialised = json.dumps(blob, default=str)
        async with self._lock:
            try:
                await conn.execute(
                    """INSERT INTO blobs (key, value, updated_at) VALUES (?, ?, ?)
                       ON CONFLICT(key) DO UPDATE SET
                         value=excluded.value,
                         updated_at=excluded.updated_at""",
                    (key, serialised, time.time()),
                )
                await conn.commit()
            except Exception as exc:
                raise StorageError(f"persist '{key}' failed: {exc}", context={"key": key}) from exc

    async def read(self, key: str) -> Any | None:
        conn = self._require()
        try:
            async with conn.execute("SELECT value FROM blobs WHERE key=?", (key,)) as cursor:
                row = await cursor.fetchone()
        except Exception as exc:
            raise StorageError(f"read '{key}' failed: {exc}", context={"key": key}) from exc
        if row is None:
            return None
        return json.loads(row[0])

    async def remove(self, key: str) -> None:
        conn = self._require()
        async with self._lock:
            try:
                await conn.execute("DELETE FROM blobs WHERE key=?", (key,))
                await conn.commit()
            except Exception as exc:
                raise StorageError(f"remove '{key}' failed: {exc}", context={"key": key}) from exc

    async def keys(self, prefix: str = "") -> list[str]:
        conn = self._require()
        pattern = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        async with conn.execute(
            "SELECT key FROM blobs WHERE key LIKE ? ESCAPE '\\' ORDER BY key", (pattern,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    def _require(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError("SqliteStorage used before init()", context={"path": str(self._db_path)})
        return self._conn
