"""Crash-loop boot guard (safe mode).

Tracks consecutive launches that started but never reached the first
rendered screen. Once the count reaches the threshold, the process runs in
safe mode: the persisted query snapshot is dropped and the prefetch lanes
are disabled for the whole run.

``init()`` runs once at startup before anything reads the cache; afterwards
``is_safe_mode()`` is a plain synchronous flag read.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from bootcache.config import GuardSettings
    from bootcache.persistence import KeyValueStore

log = structlog.get_logger()

K_CONSECUTIVE_FAILED = "boot_guard:consecutive_failed_boots"
K_LAUNCH_STARTED = "boot_guard:last_launch_started_at"
K_BOOT_COMPLETED = "boot_guard:last_boot_completed_at"
K_SAFE_MODE_COUNT = "boot_guard:safe_mode_entered_count"


@dataclass(frozen=True)
class BootDiagnostics:
    safe_mode: bool
    consecutive_failed_boots: int
    boot_completed: bool
    lifetime_safe_mode_count: int
    last_launch_started_at: float
    last_boot_completed_at: float

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


def _epoch_now() -> float:
    return datetime.now(UTC).timestamp()


class BootGuard:
    def __init__(
        self,
        store: KeyValueStore,
        settings: GuardSettings,
        *,
        risky_keys: tuple[str, ...] = (),
        clock: Callable[[], float] = _epoch_now,
    ) -> None:
        self._store = store
        self._settings = settings
        self._risky_keys = risky_keys
        self._clock = clock
        self._safe_mode = False
        self._boot_completed = False
        self._consecutive_failed_boots = 0

    async def init(self) -> None:
        """Record this launch and decide whether to enter safe mode."""
        prev_failed = int(await self._store.load_number(K_CONSECUTIVE_FAILED))
        last_launch = await self._store.load_number(K_LAUNCH_STARTED)
        last_completed = await self._store.load_number(K_BOOT_COMPLETED)
        now = self._clock()

        previous_timed_out = (
            last_launch > 0
            and last_completed < last_launch
            and now - last_launch > self._settings.boot_timeout_seconds
        )
        self._consecutive_failed_boots = prev_failed + 1 if previous_timed_out else prev_failed

        await self._store.save_number(K_LAUNCH_STARTED, now)
        await self._store.save_number(K_CONSECUTIVE_FAILED, self._consecutive_failed_boots)

        threshold = self._settings.safe_mode_threshold
        if self._consecutive_failed_boots >= threshold:
            self._safe_mode = True
            lifetime = int(await self._store.load_number(K_SAFE_MODE_COUNT)) + 1
            await self._store.save_number(K_SAFE_MODE_COUNT, lifetime)
            log.error(
                "safe_mode_activated",
                consecutive_failed_boots=self._consecutive_failed_boots,
                lifetime_activations=lifetime,
            )
            await self.clear_risky_caches()
        elif self._consecutive_failed_boots > 0:
            log.warning(
                "failed_boots_detected",
                consecutive_failed_boots=self._consecutive_failed_boots,
                threshold=threshold,
            )

    def is_safe_mode(self) -> bool:
        return self._safe_mode

    @property
    def consecutive_failed_boots(self) -> int:
        return self._consecutive_failed_boots

    async def mark_boot_completed(self) -> None:
        """Call once the first screen has rendered. Idempotent."""
        if self._boot_completed:
            return
        self._boot_completed = True
        await self._store.save_number(K_CONSECUTIVE_FAILED, 0)
        await self._store.save_number(K_BOOT_COMPLETED, self._clock())
        if self._consecutive_failed_boots > 0:
            log.info("boot_completed_counter_reset", previous=self._consecutive_failed_boots)
        self._consecutive_failed_boots = 0

    async def clear_risky_caches(self) -> None:
        for key in self._risky_keys:
            await self._store.remove(key)
        log.info("risky_caches_cleared", keys=list(self._risky_keys))

    async def diagnostics(self) -> BootDiagnostics:
        return BootDiagnostics(
            safe_mode=self._safe_mode,
            consecutive_failed_boots=self._consecutive_failed_boots,
            boot_completed=self._boot_completed,
            lifetime_safe_mode_count=int(await self._store.load_number(K_SAFE_MODE_COUNT)),
            last_launch_started_at=await self._store.load_number(K_LAUNCH_STARTED),
            last_boot_completed_at=await self._store.load_number(K_BOOT_COMPLETED),
        )
