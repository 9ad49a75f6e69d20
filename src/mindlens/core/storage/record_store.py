"""Key/value record store for operational documents.

Values are JSON documents addressed by string keys. There are no
transactions across keys: callers order multi-key writes so that index
entries are written last.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from mindlens.core.errors import StoreUnavailable
from mindlens.core.storage.database import RecordDatabase

logger = logging.getLogger(__name__)


@runtime_checkable
class RecordStore(Protocol):
    """Abstract key/value persistence for operational records."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class SQLiteRecordStore:
    """RecordStore backed by the ``kv_records`` table.

    Usage::

        db = RecordDatabase(":memory:")
        db.initialize()
        store = SQLiteRecordStore(db)
        store.set("user:abc", {"displayName": "Sam"})
        store.get("user:abc")
    """

    def __init__(self, database: RecordDatabase) -> None:
        self._db = database

    def get(self, key: str) -> Any | None:
        try:
            row = self._db.connection.execute(
                "SELECT value_json FROM kv_records WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Record read failed: {exc}") from exc
        if row is None:
            return None
        return json.loads(row[0])

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, separators=(",", ":"))
        now = datetime.now(timezone.utc).isoformat()
        conn = self._db.connection
        try:
            conn.execute(
                """INSERT INTO kv_records (key, value_json, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       value_json = excluded.value_json,
                       updated_at = excluded.updated_at""",
                (key, payload, now),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Record write failed: {exc}") from exc

    def delete(self, key: str) -> bool:
        conn = self._db.connection
        try:
            cursor = conn.execute("DELETE FROM kv_records WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Record delete failed: {exc}") from exc
        return cursor.rowcount > 0

    def keys(self, prefix: str = "") -> list[str]:
        try:
            rows = self._db.connection.execute(
                "SELECT key FROM kv_records WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Record scan failed: {exc}") from exc
        return [row[0] for row in rows]


class KeyedLocks:
    """Per-key asyncio locks for serialized read-modify-write.

    A lock entry lives only while someone holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
