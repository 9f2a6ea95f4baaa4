"""Priority-lane boot prefetch.

Fires the query registry in five delay-scheduled lanes right after the
viewer is known, so the first screen fills first and the connection pool is
not saturated on cold start:

  Lane 0 (immediate)  feed, own profile, stories      (above the fold)
  Lane 1 (+100ms)     unread counts, badges           (tab bar)
  Lane 2 (+400ms)     conversations, activities       (adjacent tabs)
  Lane 3 (+1000ms)    own posts, bookmarks, events    (secondary tabs)
  Lane 4 (+2000ms)    message history of the top conversations

Every lane runs on its own timer measured from t0; no lane waits for an
earlier lane to settle. ``dispatch`` only creates tasks and returns, so the
caller is never blocked on the network. A failed query leaves its entry
exactly as it was, is logged with lane and query name, and is not retried
in the same session.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any, Literal

import structlog

from bootcache.cache import utc_now
from bootcache.detector import DEFAULT_FULL_THRESHOLD, describe_status, detect_cache_status
from bootcache.models.cache import CacheStatus
from bootcache.models.session import BootSession, LaneResult
from bootcache.registry import CONVERSATIONS, MESSAGES, require

if TYPE_CHECKING:
    from bootcache.cache import CacheStore
    from bootcache.config import LaneSettings
    from bootcache.models.registry import QueryDescriptor, RegistryIndexes

log = structlog.get_logger()

DERIVED_LANE = 4

Outcome = Literal["ok", "skipped", "failed"]


async def run_query(
    cache: CacheStore,
    descriptor: QueryDescriptor,
    viewer_id: str,
    *params: str,
    lane: int | None = None,
    force: bool = False,
) -> Outcome:
    """Fetch one query and write it on success. Never raises.

    Without ``force`` a present, fresh entry is left alone and reported as skipped.
    """
    key = descriptor.key(viewer_id, *params)
    if not force and cache.get_fresh(key) is not None:
        return "skipped"
    try:
        value = await descriptor.fetch_for(viewer_id, *params)()
    except Exception:
        log.warning("prefetch_failed", lane=lane, query=descriptor.name, exc_info=True)
        return "failed"
    cache.set(key, value, descriptor.stale_budget_seconds)
    if descriptor.on_success is not None:
        try:
            descriptor.on_success(value)
        except Exception:
            log.warning("prefetch_followup_failed", lane=lane, query=descriptor.name, exc_info=True)
    return "ok"


class LaneScheduler:
    """Dispatches the lane sequence for one BootSession at a time."""

    def __init__(
        self,
        cache: CacheStore,
        indexes: RegistryIndexes,
        settings: LaneSettings,
        *,
        safe_mode: Callable[[], bool] = lambda: False,
        full_threshold: int = DEFAULT_FULL_THRESHOLD,
    ) -> None:
        self._cache = cache
        self._indexes = indexes
        self._settings = settings
        self._safe_mode = safe_mode
        self._full_threshold = full_threshold
        self._tasks: set[asyncio.Task[Any]] = set()
        self.results: list[LaneResult] = []

    def dispatch(self, session: BootSession) -> bool:
        """Start every lane for ``session`` and return immediately.

        Returns False when nothing was started: the session has no viewer,
        already ran, or safe mode is on.
        """
        if not session.viewer_id:
            log.warning("dispatch_without_viewer")
            return False
        if session.has_prefetched:
            return False
        session.has_prefetched = True

        if self._safe_mode():
            log.warning("safe_mode_skip", viewer_id=session.viewer_id)
            return False

        loop = asyncio.get_running_loop()
        t0 = loop.time()
        session.dispatched_at = utc_now()

        status = detect_cache_status(
            self._cache, self._indexes, session.viewer_id, self._full_threshold
        )
        log.info(
            "cache_status_detected",
            status=str(status),
            detail=describe_status(status),
            viewer_id=session.viewer_id,
        )

        delays = self._settings.lane_delays_ms
        for lane in range(DERIVED_LANE):
            self._spawn(self._run_lane(lane, session.viewer_id, t0, delays[lane] / 1000))
        self._spawn(
            self._run_derived_lane(session.viewer_id, t0, delays[DERIVED_LANE] / 1000, status)
        )
        return True

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    def _elapsed_ms(t0: float) -> int:
        return int((asyncio.get_running_loop().time() - t0) * 1000)

    async def _run_lane(self, lane: int, viewer_id: str, t0: float, delay: float) -> LaneResult:
        if delay > 0:
            await asyncio.sleep(delay)

        descriptors = [d for d in self._indexes.lane(lane) if d.enabled_for(viewer_id)]
        outcomes = await asyncio.gather(
            *(run_query(self._cache, d, viewer_id, lane=lane) for d in descriptors),
            return_exceptions=True,
        )

        result = LaneResult(lane=lane, elapsed_ms=self._elapsed_ms(t0))
        for descriptor, outcome in zip(descriptors, outcomes, strict=True):
            if outcome == "ok":
                result.succeeded.append(descriptor.name)
            elif outcome == "skipped":
                result.skipped.append(descriptor.name)
            else:
                result.failed.append(descriptor.name)
        self.results.append(result)
        log.info(
            "lane_settled",
            lane=lane,
            succeeded=len(result.succeeded),
            skipped=len(result.skipped),
            failed=result.failed_count,
            elapsed_ms=result.elapsed_ms,
        )
        return result

    async def _run_derived_lane(
        self, viewer_id: str, t0: float, delay: float, status: CacheStatus
    ) -> None:
        if delay > 0:
            await asyncio.sleep(delay)

        try:
            conversation_ids = self._top_conversation_ids(viewer_id)
            if conversation_ids:
                log.info("lane_messages_prefetch", lane=DERIVED_LANE, count=len(conversation_ids))
                messages = require(self._indexes, MESSAGES)
                for conversation_id in conversation_ids:
                    self._spawn(
                        run_query(
                            self._cache, messages, viewer_id, conversation_id, lane=DERIVED_LANE
                        )
                    )
            else:
                log.info("lane_messages_nothing_cached", lane=DERIVED_LANE)
        except Exception:
            log.warning("lane_failed", lane=DERIVED_LANE, exc_info=True)

        log.info(
            "lanes_dispatched",
            elapsed_ms=self._elapsed_ms(t0),
            mode="background refresh" if status is CacheStatus.FULL else "initial load",
        )

    def _top_conversation_ids(self, viewer_id: str) -> list[str]:
        """Ids of the first N conversations in the cached list, in existing order.

        The list comes from a separate cache read at fire time; when lane 2 has not
        written it (failed, or still in flight) this is simply empty.
        """
        key = require(self._indexes, CONVERSATIONS).key(viewer_id)
        conversations = self._cache.get_value(key)
        if not isinstance(conversations, list) or not conversations:
            return []
        ids: list[str] = []
        for conversation in conversations[: self._settings.top_conversations]:
            conversation_id = conversation.get("id") if isinstance(conversation, dict) else None
            if conversation_id:
                ids.append(str(conversation_id))
        return ids

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every lane task, including lane 4 follow-ups, has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_pending(self) -> None:
        """Abandon in-flight lanes, e.g. before a logout clears the cache."""
        for task in list(self._tasks):
            task.cancel()


class BootCoordinator:
    """Owns BootSessions: one per viewer per process, created on identity change."""

    def __init__(
        self,
        scheduler: LaneScheduler,
        viewer_source: Callable[[], str | None] = lambda: None,
    ) -> None:
        self._scheduler = scheduler
        self._viewer_source = viewer_source
        self._sessions: dict[str, BootSession] = {}
        self.current: BootSession | None = None

    def check(self) -> BootSession | None:
        """Read the viewer accessor and react to what it reports."""
        return self.on_viewer(self._viewer_source())

    def on_viewer(self, viewer_id: str | None) -> BootSession | None:
        if not viewer_id:
            self.current = None
            return None
        if self.current is not None and self.current.viewer_id == viewer_id:
            return self.current

        session = self._sessions.get(viewer_id)
        if session is None:
            session = BootSession(viewer_id=viewer_id)
            self._sessions[viewer_id] = session
            log.info("boot_session_created", viewer_id=viewer_id)
        self.current = session
        self._scheduler.dispatch(session)
        return session

    def reset(self) -> None:
        """Forget every session and lane result so the next login prefetches again."""
        self._sessions.clear()
        self._scheduler.results.clear()
        self.current = None
