"""SQLite-backed key-value store for the cache snapshot and the boot guard.

All operations catch ``aiosqlite.Error`` internally and degrade gracefully:
read failures return ``None`` (treated as "nothing persisted"), write failures
are logged and ignored. A broken disk must never stop the app from booting,
so infrastructure errors do not cross the KeyValueStore boundary. Errors are
still logged with ``exc_info=True``.
"""

from __future__ import annotations

from datetime import UTC, datetime

import aiosqlite
import structlog

log = structlog.get_logger()

_CREATE_KV_TABLE = """
CREATE TABLE IF NOT EXISTS kv_store (
    key         TEXT PRIMARY KEY,
    value       BLOB NOT NULL,
    updated_at  TEXT NOT NULL
)
"""


class KeyValueStore:
    """``load(key) -> bytes | None`` / ``save(key, bytes)`` over aiosqlite."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create the table and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_KV_TABLE)
        await self._db.commit()

    async def load(self, key: str) -> bytes | None:
        """Read a value. Returns ``None`` when absent or on read failure."""
        try:
            cursor = await self._db.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = await cursor.fetchone()
            if row is None:
                return None
            return bytes(row[0])
        except aiosqlite.Error:
            log.warning("kv_read_error", key=key, exc_info=True)
            return None

    async def save(self, key: str, value: bytes) -> None:
        """Write a value. Non-fatal on failure."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("kv_write_error", key=key, exc_info=True)

    async def remove(self, key: str) -> None:
        """Delete a value. Non-fatal on failure."""
        try:
            await self._db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("kv_remove_error", key=key, exc_info=True)

    # ------------------------------------------------------------------
    # Typed helpers used by the boot guard
    # ------------------------------------------------------------------

    async def load_number(self, key: str, default: float = 0) -> float:
        raw = await self.load(key)
        if raw is None:
            return default
        try:
            return float(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            log.warning("kv_number_corrupt", key=key)
            return default

    async def save_number(self, key: str, value: float) -> None:
        await self.save(key, repr(value).encode("utf-8"))
