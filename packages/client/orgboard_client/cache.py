"""
SQLite persistence for mirror snapshots.

A snapshot is the JSON-serialisable part of a mirror's state stored under a
key (one per signed-in user). Snapshots are a convenience for fast start-up
and are never treated as authoritative.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Optional

import aiosqlite

from .config import CacheConfig

_SCHEMA = """
CREATE TABLE IF NOT EXISTS mirror_snapshots (
    key        TEXT PRIMARY KEY,
    payload    TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class MirrorCache:
    """Async SQLite store of mirror snapshots."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    @classmethod
    def from_config(cls, config: CacheConfig) -> Optional["MirrorCache"]:
        """A cache at the configured path, or None when caching is disabled."""
        if not config.enabled:
            return None
        return cls(config.db_path)

    async def open(self) -> None:
        os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def save(self, key: str, payload: dict[str, Any]) -> None:
        assert self._db
        now = datetime.now(timezone.utc).isoformat()
        body = json.dumps(payload)
        await self._db.execute(
            """INSERT INTO mirror_snapshots (key, payload, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET payload=?, updated_at=?""",
            (key, body, now, body, now),
        )
        await self._db.commit()

    async def load(self, key: str) -> dict[str, Any] | None:
        """The stored snapshot, or None if missing or unreadable."""
        assert self._db
        cursor = await self._db.execute(
            "SELECT payload FROM mirror_snapshots WHERE key = ?", (key,)
        )
        row = await cursor.fetchone()
        if not row:
            return None
        try:
            payload = json.loads(row["payload"])
        except ValueError:
            return None
        return payload if isinstance(payload, dict) else None

    async def delete(self, key: str) -> None:
        assert self._db
        await self._db.execute("DELETE FROM mirror_snapshots WHERE key = ?", (key,))
        await self._db.commit()
