"""In-process query cache shared by the prefetch lanes, the resume throttle and the UI.

The discipline is write-only-on-success, never delete, mark-stale instead of
evict. All access happens on one event loop, so the store needs no locking;
sibling writers within a lane simply follow last-write-wins.

Persistence is not handled here: ``serialize_to_bytes`` and
``restore_from_bytes`` produce and consume the snapshot that the key-value
store (``bootcache.persistence``) saves and loads.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from bootcache.errors import BootCacheError, ErrorCode
from bootcache.models.cache import CacheEntry, CacheSnapshot, PersistedEntry

if TYPE_CHECKING:
    from bootcache.models.cache import QueryKey

log = structlog.get_logger()

Observer = Callable[[CacheEntry], None]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class CacheStore:
    """Key → CacheEntry mapping with staleness tracking and observers."""

    def __init__(
        self,
        *,
        default_stale_seconds: float = 60.0,
        persisted_prefixes: Iterable[str] | None = None,
        buster: str = "v1",
        max_age_seconds: float = 30 * 60,
        clock: Clock = utc_now,
    ) -> None:
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._observers: dict[QueryKey, list[Observer]] = {}
        self._default_stale_seconds = default_stale_seconds
        self._persisted_prefixes = (
            frozenset(persisted_prefixes) if persisted_prefixes is not None else None
        )
        self._buster = buster
        self._max_age = timedelta(seconds=max_age_seconds)
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> list[QueryKey]:
        return list(self._entries)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: QueryKey) -> CacheEntry | None:
        """Return the entry if present, stale or not."""
        return self._entries.get(key)

    def get_value(self, key: QueryKey) -> Any | None:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def get_fresh(self, key: QueryKey) -> CacheEntry | None:
        """Return the entry only while it is within its staleness budget."""
        entry = self._entries.get(key)
        if entry is None or entry.is_stale(self._clock()):
            return None
        return entry

    def is_stale(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return entry is None or entry.is_stale(self._clock())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: QueryKey, value: Any, stale_budget_seconds: float | None = None) -> None:
        """Overwrite the entry wholesale, stamp fetched_at and clear staleness."""
        budget = stale_budget_seconds
        if budget is None:
            previous = self._entries.get(key)
            budget = (
                previous.stale_budget_seconds
                if previous is not None
                else self._default_stale_seconds
            )
        entry = CacheEntry(
            key=key,
            value=value,
            fetched_at=self._clock(),
            stale_budget_seconds=budget,
            is_invalidated=False,
        )
        self._entries[key] = entry
        self._notify(entry)

    def mark_stale(self, key: QueryKey) -> bool:
        """Flag one entry stale, keeping its value. Returns False when absent."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if not entry.is_invalidated:
            entry = entry.model_copy(update={"is_invalidated": True})
            self._entries[key] = entry
            self._notify(entry)
        return True

    def clear(self) -> None:
        """Whole-cache eviction. Only used on logout or reinstall."""
        self._entries.clear()

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, key: QueryKey, callback: Observer) -> Callable[[], None]:
        """Register a UI observer for ``key``. Returns the unsubscribe callable."""
        self._observers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._observers.get(key)
            if callbacks is None:
                return
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._observers.pop(key, None)

        return unsubscribe

    def is_observed(self, key: QueryKey) -> bool:
        return bool(self._observers.get(key))

    def _notify(self, entry: CacheEntry) -> None:
        for callback in list(self._observers.get(entry.key, ())):
            try:
                callback(entry)
            except Exception:
                log.warning("cache_observer_error", key=list(entry.key), exc_info=True)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def _should_persist(self, key: QueryKey) -> bool:
        if not key:
            return False
        if self._persisted_prefixes is None:
            return True
        return key[0] in self._persisted_prefixes

    def serialize_to_bytes(self) -> bytes:
        """Encode whitelisted entries that have a value."""
        entries = [
            PersistedEntry(
                key=list(entry.key),
                value=entry.value,
                fetched_at=entry.fetched_at,
                stale_budget_seconds=entry.stale_budget_seconds,
                is_invalidated=entry.is_invalidated,
            )
            for entry in self._entries.values()
            if entry.fetched_at is not None and self._should_persist(entry.key)
        ]
        snapshot = CacheSnapshot(buster=self._buster, timestamp=self._clock(), entries=entries)
        return snapshot.model_dump_json().encode("utf-8")

    def restore_from_bytes(self, data: bytes) -> int:
        """Bulk-load a snapshot. Returns the number of entries restored.

        Raises BootCacheError(SNAPSHOT_CORRUPT) when the bytes cannot be decoded.
        A snapshot with a different buster, or older than max_age, restores nothing.
        """
        try:
            snapshot = CacheSnapshot.model_validate_json(data)
        except ValidationError as exc:
            raise BootCacheError(
                ErrorCode.SNAPSHOT_CORRUPT,
                f"Cache snapshot could not be decoded: {exc.error_count()} error(s)",
            ) from exc

        if snapshot.buster != self._buster:
            log.info("cache_snapshot_busted", found=snapshot.buster, expected=self._buster)
            return 0

        now = self._clock()
        if now - snapshot.timestamp > self._max_age:
            log.info("cache_snapshot_expired", timestamp=snapshot.timestamp.isoformat())
            return 0

        restored = 0
        for persisted in snapshot.entries:
            if now - persisted.fetched_at > self._max_age:
                continue
            key = tuple(persisted.key)
            self._entries[key] = CacheEntry(
                key=key,
                value=persisted.value,
                fetched_at=persisted.fetched_at,
                stale_budget_seconds=persisted.stale_budget_seconds,
                is_invalidated=persisted.is_invalidated,
            )
            restored += 1
        log.info("cache_snapshot_restored", entries=restored)
        return restored
