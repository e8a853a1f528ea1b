"""SQLite key-value storage implementation."""

import asyncio
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..config import resolve_db_path


class IPersistentStore(Protocol):
    """Asynchronous, fallible key-value store for durable snapshots."""

    async def get_item(self, key: str) -> str | None:
        """Return the stored value for key, or None."""
        ...

    async def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        ...

    async def remove_item(self, key: str) -> None:
        """Delete key if present."""
        ...


class Storage:
    """SQLite key-value store backed by aiosqlite."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None
        # Snapshot writes are full read-modify-write; keep them in one line
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def get_item(self, key: str) -> str | None:
        """Return the stored value for key, or None."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        cursor = await self._conn.execute(
            "SELECT value FROM kv_store WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        async with self._write_lock:
            await self._conn.execute(
                """
                INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                """,
                (key, value),
            )
            await self._conn.commit()

    async def remove_item(self, key: str) -> None:
        """Delete key if present."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        async with self._write_lock:
            await self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            await self._conn.commit()
