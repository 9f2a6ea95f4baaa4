"""Startup paths: safe mode, on-disk store lifecycle and story warm-up."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import respx

from bootcache import registry
from bootcache.config import PersistenceSettings
from bootcache.guard import K_CONSECUTIVE_FAILED, K_SAFE_MODE_COUNT
from bootcache.persistence import KeyValueStore
from bootcache.state import create_app_state, open_app_state
from tests.conftest import VIEWER

if TYPE_CHECKING:
    from pathlib import Path

    import aiosqlite

    from bootcache.config import Settings
    from tests.conftest import FakeApi

CDN = "https://cdn.example.com"


def _on_disk(settings: Settings, tmp_path: Path) -> Settings:
    db_path = tmp_path / "nested" / "bootcache.db"
    return settings.model_copy(update={"persistence": PersistenceSettings(db_path=str(db_path))})


class TestSafeMode:
    async def test_crash_loop_disables_prefetch(
        self, settings: Settings, api: FakeApi, db: aiosqlite.Connection
    ) -> None:
        kv = KeyValueStore(db)
        await kv.init_db()
        await kv.save_number(K_CONSECUTIVE_FAILED, 3)
        await kv.save(settings.persistence.storage_key, b"possibly the culprit")

        state = await create_app_state(settings, api, db)
        assert state.guard.is_safe_mode() is True
        assert await kv.load(settings.persistence.storage_key) is None
        assert await kv.load_number(K_SAFE_MODE_COUNT) == 1

        session = state.coordinator.on_viewer(VIEWER)
        assert session is not None and session.has_prefetched
        await state.drain()
        assert api.total_calls() == 0
        assert len(state.cache) == 0

    async def test_completed_boot_leaves_safe_mode_next_launch(
        self, settings: Settings, api: FakeApi, db: aiosqlite.Connection
    ) -> None:
        kv = KeyValueStore(db)
        await kv.init_db()
        await kv.save_number(K_CONSECUTIVE_FAILED, 3)

        first = await create_app_state(settings, api, db)
        assert first.guard.is_safe_mode() is True
        await first.guard.mark_boot_completed()

        second = await create_app_state(settings, api, db)
        assert second.guard.is_safe_mode() is False
        second.coordinator.on_viewer(VIEWER)
        await second.drain()
        assert api.calls["get_profile"] == 1


class TestOpenAppState:
    async def test_creates_db_and_persists_on_exit(
        self, settings: Settings, api: FakeApi, tmp_path: Path
    ) -> None:
        settings = _on_disk(settings, tmp_path)
        async with open_app_state(
            settings, api, viewer_source=lambda: VIEWER, configure_logs=False
        ) as state:
            assert (tmp_path / "nested" / "bootcache.db").exists()
            session = state.coordinator.check()
            assert session is not None and session.viewer_id == VIEWER

        async with open_app_state(settings, api, configure_logs=False) as reopened:
            assert reopened.cache.get_value(registry.profile_key(VIEWER)) == {
                "id": VIEWER,
                "followers": 5,
            }

    async def test_story_images_are_warmed(
        self, settings: Settings, api: FakeApi, tmp_path: Path
    ) -> None:
        api.stories = [
            {
                "id": "s1",
                "items": [
                    {"url": f"{CDN}/s1-a.jpg"},
                    {"url": f"{CDN}/s1-b.jpg", "thumbnail": f"{CDN}/s1-b-thumb.jpg"},
                ],
            }
        ]
        settings = _on_disk(settings, tmp_path)
        with respx.mock:
            route = respx.get(url__startswith=CDN).mock(return_value=httpx.Response(200))
            async with open_app_state(settings, api, configure_logs=False) as state:
                state.coordinator.on_viewer(VIEWER)
                await state.drain()
                assert state.media is not None
        assert route.call_count == 3
