"""Resume refresh: keep data feeling live when the app returns to the foreground.

On a genuine background → active transition, at most once per throttle
window:

- badges (unread counts, notification badges) and the own profile are
  refetched right away, since they are always visible;
- feed, events, own posts and the notification list are only marked stale,
  so the next screen visit refetches them lazily;
- recent activity is refetched only while something observes it, otherwise
  it is marked stale like the large lists.

The lifecycle callback returns immediately; the batch settles in the
background and a failure in one refresh never affects the others.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from bootcache import registry
from bootcache.models.session import AppStateStatus, ThrottleState
from bootcache.scheduler import run_query

if TYPE_CHECKING:
    from bootcache.cache import CacheStore
    from bootcache.config import ResumeSettings
    from bootcache.models.registry import RegistryIndexes

log = structlog.get_logger()

StateListener = Callable[[AppStateStatus], None]
LifecycleSubscribe = Callable[[StateListener], Callable[[], None]]

# Refetched immediately on resume.
EAGER_QUERIES = (registry.UNREAD_MESSAGES, registry.NOTIFICATION_BADGES, registry.PROFILE)

# Marked stale only; refetched by the next read.
LAZY_QUERIES = (
    registry.FEED,
    registry.EVENTS,
    registry.MY_EVENTS,
    registry.LIKED_EVENTS,
    registry.PROFILE_POSTS,
    registry.NOTIFICATIONS,
)

_BACKGROUND_STATES = frozenset({AppStateStatus.BACKGROUND, AppStateStatus.INACTIVE})


class ResumeRefresher:
    def __init__(
        self,
        cache: CacheStore,
        indexes: RegistryIndexes,
        settings: ResumeSettings,
        *,
        initial_state: AppStateStatus = AppStateStatus.ACTIVE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache = cache
        self._indexes = indexes
        self._settings = settings
        self._clock = clock
        self._app_state = initial_state
        self.throttle = ThrottleState()
        self.refresh_count = 0
        self._tasks: set[asyncio.Task[Any]] = set()

    def attach(
        self, subscribe: LifecycleSubscribe, viewer_source: Callable[[], str | None]
    ) -> Callable[[], None]:
        """Listen to lifecycle events. Returns the unsubscribe callable."""

        def listener(next_state: AppStateStatus) -> None:
            self.on_app_state_change(next_state, viewer_source())

        return subscribe(listener)

    def on_app_state_change(self, next_state: AppStateStatus, viewer_id: str | None) -> bool:
        """Handle one transition. Returns True when a refresh batch was started."""
        was_background = self._app_state in _BACKGROUND_STATES
        self._app_state = AppStateStatus(next_state)
        if not was_background or self._app_state is not AppStateStatus.ACTIVE:
            return False
        if not viewer_id:
            return False

        now = self._clock()
        last = self.throttle.last_refresh_at
        if last is not None and now - last < self._settings.throttle_seconds:
            log.info("resume_throttled", seconds_since_refresh=round(now - last, 3))
            return False
        self.throttle.last_refresh_at = now
        self.refresh_count += 1

        log.info("resume_refresh_started", viewer_id=viewer_id)
        task = asyncio.get_running_loop().create_task(self._refresh(viewer_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _refresh(self, viewer_id: str) -> None:
        for name in LAZY_QUERIES:
            self._cache.mark_stale(registry.require(self._indexes, name).key(viewer_id))

        eager = [registry.require(self._indexes, name) for name in EAGER_QUERIES]
        activities = registry.require(self._indexes, registry.ACTIVITIES)
        if self._cache.is_observed(activities.key(viewer_id)):
            eager.append(activities)
        else:
            self._cache.mark_stale(activities.key(viewer_id))

        outcomes = await asyncio.gather(
            *(run_query(self._cache, d, viewer_id, force=True) for d in eager),
            return_exceptions=True,
        )
        failed = sum(1 for outcome in outcomes if outcome != "ok")
        if failed:
            log.warning("resume_refresh_partial", failed=failed, total=len(outcomes))
        else:
            log.info("resume_refresh_complete", total=len(outcomes))

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_pending(self) -> None:
        """Abandon in-flight refresh batches, e.g. before a logout clears the cache."""
        for task in list(self._tasks):
            task.cancel()
