"""Key/value persistence substrates.

Both stores expose the same three coroutines (``get``, ``set``, ``remove``)
over string values. Anything that goes wrong underneath is reported as a
``PersistenceError`` so callers never have to know which backend they hold.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

import aiosqlite

from db import database
from table.errors import PersistenceError
from utils.logger import get_logger

_logger = get_logger(__name__)


class Storage(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Dict-backed storage, used for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)


class SqliteStorage:
    """Storage backed by the ``kv_store`` table of a SQLite file."""

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = db_path

    async def get(self, key: str) -> Optional[str]:
        try:
            async with database.connect(self.db_path) as conn:
                cur = await conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?;", (key,)
                )
                row = await cur.fetchone()
                await cur.close()
        except (aiosqlite.Error, sqlite3.Error, OSError) as exc:
            _logger.error(f"Reading '{key}' failed: {exc}")
            raise PersistenceError(f"Could not read '{key}': {exc}") from exc
        return None if row is None else row[0]

    async def set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        try:
            async with database.connect(self.db_path) as conn:
                await conn.execute(
                    """
                    INSERT INTO kv_store(key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at;
                    """,
                    (key, value, now),
                )
                await conn.commit()
        except (aiosqlite.Error, sqlite3.Error, OSError) as exc:
            _logger.error(f"Writing '{key}' failed: {exc}")
            raise PersistenceError(f"Could not write '{key}': {exc}") from exc

    async def remove(self, key: str) -> None:
        try:
            async with database.connect(self.db_path) as conn:
                await conn.execute("DELETE FROM kv_store WHERE key = ?;", (key,))
                await conn.commit()
        except (aiosqlite.Error, sqlite3.Error, OSError) as exc:
            _logger.error(f"Removing '{key}' failed: {exc}")
            raise PersistenceError(f"Could not remove '{key}': {exc}") from exc
