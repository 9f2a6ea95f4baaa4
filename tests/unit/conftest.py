"""Unit-specific fixtures (no I/O beyond in-memory SQLite)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import aiosqlite
import pytest

from bootcache.cache import CacheStore
from bootcache.persistence import KeyValueStore


class FakeClock:
    """Settable clock returning aware datetimes."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock: FakeClock) -> CacheStore:
    return CacheStore(clock=clock)


@pytest.fixture()
async def kv():
    """In-memory SQLite key-value store for unit tests."""
    async with aiosqlite.connect(":memory:") as db:
        store = KeyValueStore(db)
        await store.init_db()
        yield store
