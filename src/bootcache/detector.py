"""Cache-status detection at boot.

Counts how many above-the-fold probe keys already hold a value (stale or
not). The result only annotates logs; the scheduler fires every lane
regardless, because a full cache is refreshed in place rather than skipped.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from bootcache.errors import BootCacheError, ErrorCode
from bootcache.models.cache import CacheStatus
from bootcache.registry import PROBE_QUERIES, require

if TYPE_CHECKING:
    from bootcache.cache import CacheStore
    from bootcache.models.registry import RegistryIndexes

DEFAULT_FULL_THRESHOLD = 7


def count_probe_hits(cache: CacheStore, indexes: RegistryIndexes, viewer_id: str) -> int:
    hits = 0
    for name in PROBE_QUERIES:
        key = require(indexes, name).key(viewer_id)
        entry = cache.get(key)
        if entry is not None and entry.has_value:
            hits += 1
    return hits


def detect_cache_status(
    cache: CacheStore,
    indexes: RegistryIndexes,
    viewer_id: str,
    full_threshold: int = DEFAULT_FULL_THRESHOLD,
) -> CacheStatus:
    if not viewer_id:
        raise BootCacheError(ErrorCode.INVALID_VIEWER, "viewer_id must not be empty")
    hits = count_probe_hits(cache, indexes, viewer_id)
    if hits >= full_threshold:
        return CacheStatus.FULL
    if hits > 0:
        return CacheStatus.PARTIAL
    return CacheStatus.EMPTY


def describe_status(status: CacheStatus) -> str:
    if status is CacheStatus.FULL:
        return "instant render from persisted cache, refreshing in background"
    if status is CacheStatus.PARTIAL:
        return "partial cache hit, filling gaps"
    return "first boot, fetching all critical data"
