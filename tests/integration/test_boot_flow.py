"""End-to-end boot, persistence, resume and logout flows through AppState."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from bootcache import registry
from bootcache.detector import detect_cache_status
from bootcache.models.cache import CacheStatus
from bootcache.models.session import AppStateStatus
from bootcache.state import create_app_state
from tests.conftest import OTHER_VIEWER, VIEWER

if TYPE_CHECKING:
    import aiosqlite

    from bootcache.config import Settings
    from bootcache.state import AppState
    from tests.conftest import FakeApi


class TestColdStart:
    async def test_first_boot_populates_cache(self, app_state: AppState, api: FakeApi) -> None:
        assert len(app_state.cache) == 0
        assert app_state.guard.is_safe_mode() is False

        session = app_state.coordinator.on_viewer(VIEWER)
        await app_state.drain()

        assert session is not None and session.has_prefetched
        status = detect_cache_status(app_state.cache, app_state.indexes, VIEWER)
        assert status is CacheStatus.FULL
        assert api.calls["get_messages"] == 3

    async def test_second_boot_renders_from_snapshot(
        self, app_state: AppState, settings: Settings, api: FakeApi, db: aiosqlite.Connection
    ) -> None:
        app_state.coordinator.on_viewer(VIEWER)
        await app_state.drain()
        await app_state.persist()
        first_boot_calls = api.calls["get_profile"]

        restarted = await create_app_state(settings, api, db)
        profile_key = registry.profile_key(VIEWER)
        assert restarted.cache.get_value(profile_key) == {"id": VIEWER, "followers": 5}
        assert detect_cache_status(restarted.cache, restarted.indexes, VIEWER) is CacheStatus.FULL

        # Fresh entries are refreshed in place only once they go stale.
        restarted.coordinator.on_viewer(VIEWER)
        await restarted.drain()
        assert api.calls["get_profile"] == first_boot_calls

    async def test_restart_restores_message_history(
        self, app_state: AppState, settings: Settings, api: FakeApi, db: aiosqlite.Connection
    ) -> None:
        app_state.coordinator.on_viewer(VIEWER)
        await app_state.drain()
        await app_state.persist()

        restarted = await create_app_state(settings, api, db)
        assert restarted.cache.get(registry.conversations_key(VIEWER)) is not None
        assert restarted.cache.get(registry.messages_key(VIEWER, "1")) is not None

        restarted.coordinator.on_viewer(VIEWER)
        await restarted.drain()
        assert api.calls["get_messages"] == 3

    async def test_corrupt_snapshot_is_discarded(
        self, settings: Settings, api: FakeApi, db: aiosqlite.Connection
    ) -> None:
        first = await create_app_state(settings, api, db)
        await first.kv.save(settings.persistence.storage_key, b"{not a snapshot")

        state = await create_app_state(settings, api, db)
        assert len(state.cache) == 0
        assert await state.kv.load(settings.persistence.storage_key) is None


class TestViewerIsolation:
    async def test_two_viewers_keep_separate_entries(
        self, app_state: AppState, api: FakeApi
    ) -> None:
        app_state.coordinator.on_viewer(VIEWER)
        app_state.coordinator.on_viewer(OTHER_VIEWER)
        await app_state.drain()

        profile_a = app_state.cache.get(registry.profile_key(VIEWER))
        profile_b = app_state.cache.get(registry.profile_key(OTHER_VIEWER))
        assert profile_a is not None and profile_b is not None
        assert profile_a != profile_b


class TestResumeFlow:
    async def test_resume_after_boot(self, app_state: AppState, api: FakeApi) -> None:
        app_state.coordinator.on_viewer(VIEWER)
        await app_state.drain()

        app_state.resume.on_app_state_change(AppStateStatus.BACKGROUND, VIEWER)
        app_state.resume.on_app_state_change(AppStateStatus.ACTIVE, VIEWER)
        await app_state.drain()

        assert api.calls["get_unread_count"] == 2
        feed = app_state.cache.get(registry.feed_key(VIEWER))
        assert feed is not None and feed.is_invalidated
        assert api.calls["get_feed_page"] == 1


class TestLogout:
    async def test_logout_clears_cache_and_snapshot(
        self, app_state: AppState, settings: Settings, api: FakeApi
    ) -> None:
        app_state.coordinator.on_viewer(VIEWER)
        await app_state.drain()
        await app_state.persist()

        await app_state.clear_on_logout()
        assert len(app_state.cache) == 0
        assert await app_state.kv.load(settings.persistence.storage_key) is None
        assert app_state.coordinator.current is None

        app_state.coordinator.on_viewer(VIEWER)
        await app_state.drain()
        assert api.calls["get_profile"] == 2

    async def test_logout_abandons_in_flight_lanes(
        self, app_state: AppState, api: FakeApi
    ) -> None:
        app_state.coordinator.on_viewer(VIEWER)
        await app_state.clear_on_logout()
        await app_state.drain()
        assert len(app_state.cache) == 0

    async def test_logout_abandons_in_flight_resume_refresh(
        self, app_state: AppState, settings: Settings, api: FakeApi
    ) -> None:
        gate = asyncio.Event()
        api.gates["get_profile"] = gate
        app_state.resume.on_app_state_change(AppStateStatus.BACKGROUND, VIEWER)
        assert app_state.resume.on_app_state_change(AppStateStatus.ACTIVE, VIEWER) is True
        while api.calls["get_profile"] == 0:
            await asyncio.sleep(0)

        await app_state.clear_on_logout()
        gate.set()
        await app_state.drain()
        assert len(app_state.cache) == 0

        await app_state.persist()
        restored = await app_state.kv.load(settings.persistence.storage_key)
        assert restored is not None
        assert app_state.cache.restore_from_bytes(restored) == 0
