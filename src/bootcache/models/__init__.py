from __future__ import annotations

from bootcache.models.cache import (
    CacheEntry,
    CacheSnapshot,
    CacheStatus,
    PersistedEntry,
    QueryKey,
)
from bootcache.models.registry import QueryDescriptor, RegistryIndexes
from bootcache.models.session import AppStateStatus, BootSession, LaneResult, ThrottleState

__all__ = [
    # cache
    "QueryKey",
    "CacheEntry",
    "CacheStatus",
    "PersistedEntry",
    "CacheSnapshot",
    # registry
    "QueryDescriptor",
    "RegistryIndexes",
    # session
    "AppStateStatus",
    "BootSession",
    "LaneResult",
    "ThrottleState",
]
