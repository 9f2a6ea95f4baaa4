from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AwareDatetime, BaseModel

# A query identity: area name first, then scoping parameters,
# e.g. ("profile", "42") or ("events", "liked", "42").
QueryKey = tuple[str, ...]


class CacheStatus(StrEnum):
    FULL = "full"
    PARTIAL = "partial"
    EMPTY = "empty"


class CacheEntry(BaseModel):
    """Last known result for one query key.

    A stale entry keeps its value; consumers render it while a refetch is pending.
    """

    key: QueryKey
    value: Any = None
    fetched_at: datetime | None = None
    stale_budget_seconds: float = 60.0
    is_invalidated: bool = False

    @property
    def has_value(self) -> bool:
        return self.fetched_at is not None

    def is_stale(self, now: datetime) -> bool:
        """Stale when explicitly invalidated or older than the staleness budget."""
        if self.is_invalidated or self.fetched_at is None:
            return True
        return (now - self.fetched_at).total_seconds() >= self.stale_budget_seconds


class PersistedEntry(BaseModel):
    key: list[str]
    value: Any = None
    fetched_at: AwareDatetime
    stale_budget_seconds: float
    is_invalidated: bool = False


class CacheSnapshot(BaseModel):
    """Serialized form of the cache written through the key-value store."""

    buster: str
    timestamp: AwareDatetime
    entries: list[PersistedEntry] = []
