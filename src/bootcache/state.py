"""AppState: every collaborator of the boot-time cache pipeline, wired once.

Startup order matters:
  1. key-value store opened
  2. boot guard decides on safe mode (may drop the persisted snapshot)
  3. cache restored from the persisted snapshot
  4. registry, lane scheduler, boot coordinator and resume refresher built

After that the host app calls ``coordinator.on_viewer(...)`` once the viewer
is known and forwards lifecycle events to ``resume``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from bootcache.cache import CacheStore
from bootcache.errors import BootCacheError
from bootcache.guard import BootGuard
from bootcache.logs import configure_logging
from bootcache.media import MediaWarmer, build_http_client
from bootcache.persistence import KeyValueStore
from bootcache.registry import build_registry
from bootcache.resume import ResumeRefresher
from bootcache.scheduler import BootCoordinator, LaneScheduler

if TYPE_CHECKING:
    import httpx

    from bootcache.config import Settings
    from bootcache.models.registry import RegistryIndexes
    from bootcache.registry import RemoteApi

log = structlog.get_logger()


@dataclass
class AppState:
    settings: Settings
    kv: KeyValueStore
    guard: BootGuard
    cache: CacheStore
    indexes: RegistryIndexes
    scheduler: LaneScheduler
    coordinator: BootCoordinator
    resume: ResumeRefresher
    media: MediaWarmer | None = None

    async def persist(self) -> None:
        """Save the whitelisted part of the cache through the key-value store."""
        await self.kv.save(self.settings.persistence.storage_key, self.cache.serialize_to_bytes())

    async def clear_on_logout(self) -> None:
        """Drop every cached entry and the persisted snapshot."""
        self.scheduler.cancel_pending()
        self.resume.cancel_pending()
        if self.media is not None:
            self.media.cancel_pending()
        self.cache.clear()
        self.coordinator.reset()
        await self.kv.remove(self.settings.persistence.storage_key)
        log.info("cache_cleared_on_logout")

    async def drain(self) -> None:
        await self.scheduler.drain()
        await self.resume.drain()
        if self.media is not None:
            await self.media.drain()


async def restore_cache(kv: KeyValueStore, cache: CacheStore, storage_key: str) -> int:
    """Load the persisted snapshot into ``cache``. A corrupt snapshot is discarded."""
    data = await kv.load(storage_key)
    if data is None:
        return 0
    try:
        return cache.restore_from_bytes(data)
    except BootCacheError as exc:
        log.warning("cache_restore_failed", code=str(exc.code), message=exc.message)
        await kv.remove(storage_key)
        return 0


async def create_app_state(
    settings: Settings,
    api: RemoteApi,
    db: aiosqlite.Connection,
    *,
    http_client: httpx.AsyncClient | None = None,
    viewer_source: Callable[[], str | None] = lambda: None,
) -> AppState:
    persistence = settings.persistence

    kv = KeyValueStore(db)
    await kv.init_db()

    guard = BootGuard(kv, settings.guard, risky_keys=(persistence.storage_key,))
    await guard.init()

    cache = CacheStore(
        default_stale_seconds=settings.staleness.default_seconds,
        persisted_prefixes=persistence.persisted_prefixes,
        buster=persistence.buster,
        max_age_seconds=persistence.max_age_seconds,
    )
    restored = await restore_cache(kv, cache, persistence.storage_key)
    log.info("cache_ready", restored=restored, safe_mode=guard.is_safe_mode())

    media = (
        MediaWarmer(http_client, settings.media)
        if http_client is not None and settings.media.enabled
        else None
    )
    indexes = build_registry(api, settings.staleness, media)
    scheduler = LaneScheduler(
        cache,
        indexes,
        settings.lanes,
        safe_mode=guard.is_safe_mode,
        full_threshold=settings.detector.full_threshold,
    )
    return AppState(
        settings=settings,
        kv=kv,
        guard=guard,
        cache=cache,
        indexes=indexes,
        scheduler=scheduler,
        coordinator=BootCoordinator(scheduler, viewer_source),
        resume=ResumeRefresher(cache, indexes, settings.resume),
        media=media,
    )


@asynccontextmanager
async def open_app_state(
    settings: Settings,
    api: RemoteApi,
    *,
    viewer_source: Callable[[], str | None] = lambda: None,
    configure_logs: bool = True,
) -> AsyncIterator[AppState]:
    """Open the on-disk store and HTTP client, yield a wired AppState.

    Logging is configured from ``settings.logging`` unless the host app
    already owns it (``configure_logs=False``). On exit, in-flight work
    settles and the cache snapshot is saved.
    """
    if configure_logs:
        configure_logging(settings.logging)

    db_path = Path(settings.persistence.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(db_path) as db, build_http_client(settings.media) as client:
        state = await create_app_state(
            settings, api, db, http_client=client, viewer_source=viewer_source
        )
        try:
            yield state
        finally:
            await state.drain()
            await state.persist()
