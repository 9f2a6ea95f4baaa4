"""Story image warm-up.

After the stories query lands, the first frames of each story are requested
from the media CDN so the HTTP cache already holds them when the viewer
opens. Best effort: failures are logged at debug level and never raised.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx
import structlog

if TYPE_CHECKING:
    from bootcache.config import MediaSettings

log = structlog.get_logger()


def build_http_client(settings: MediaSettings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.timeout_seconds),
        follow_redirects=True,
        headers={"User-Agent": "bootcache/0.1"},
    )


class MediaWarmer:
    def __init__(self, client: httpx.AsyncClient, settings: MediaSettings) -> None:
        self._client = client
        self._settings = settings
        self._semaphore = asyncio.Semaphore(max(1, settings.max_concurrency))
        self._tasks: set[asyncio.Task[tuple[int, int]]] = set()
        self._seen: set[str] = set()

    def prefetch(self, urls: list[str]) -> None:
        """Start warming ``urls`` in the background and return immediately."""
        if not self._settings.enabled:
            return
        fresh = [u for u in dict.fromkeys(urls) if u not in self._seen]
        if not fresh:
            return
        self._seen.update(fresh)
        task = asyncio.get_running_loop().create_task(self.warm(fresh))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def warm(self, urls: list[str]) -> tuple[int, int]:
        """Fetch every url. Returns (ok, failed)."""
        results = await asyncio.gather(*(self._warm_one(u) for u in urls))
        ok = sum(1 for r in results if r)
        failed = len(results) - ok
        log.debug("media_warmed", ok=ok, failed=failed)
        return ok, failed

    async def _warm_one(self, url: str) -> bool:
        async with self._semaphore:
            try:
                response = await self._client.get(url)
                response.raise_for_status()
                return True
            except httpx.HTTPError as exc:
                log.debug("media_warm_failed", url=url, error=str(exc))
                return False

    async def drain(self) -> None:
        """Wait for in-flight warm-ups. Used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_pending(self) -> None:
        """Abandon in-flight warm-ups and forget which urls were already requested."""
        for task in list(self._tasks):
            task.cancel()
        self._seen.clear()
