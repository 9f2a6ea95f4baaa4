"""Shared fixtures: a scriptable fake remote API and compressed-delay settings."""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any

import pytest

from bootcache.config import LaneSettings, Settings
from bootcache.registry import build_registry

VIEWER = "42"
OTHER_VIEWER = "77"

# Same ordering as production, compressed so tests settle in milliseconds.
# Lane 4 is well after lane 2 so the conversation list is normally present.
FAST_LANE_DELAYS = [0, 1, 2, 3, 40]


class FakeApi:
    """Implements RemoteApi. Records calls; methods listed in ``fail`` raise."""

    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()
        self.args: dict[str, list[tuple[Any, ...]]] = {}
        self.fail: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.conversations: list[dict[str, Any]] = [
            {"id": 1, "name": "a"},
            {"id": 2, "name": "b"},
            {"id": 3, "name": "c"},
            {"id": 4, "name": "d"},
        ]
        self.stories: list[dict[str, Any]] = []
        self.notifications: list[dict[str, Any]] = [
            {"id": 10, "type": "follow", "sender": {"id": "9", "username": "sam"}},
        ]

    async def _call(self, name: str, *args: Any, result: Any = None) -> Any:
        self.calls[name] += 1
        self.args.setdefault(name, []).append(args)
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.fail:
            raise ConnectionError(f"{name} unavailable")
        return result

    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def get_feed_page(self, page: int) -> Any:
        return await self._call("get_feed_page", page, result={"posts": [{"id": "p1"}]})

    async def get_profile(self, user_id: str) -> Any:
        return await self._call("get_profile", user_id, result={"id": user_id, "followers": 5})

    async def get_stories(self) -> list[dict[str, Any]]:
        return await self._call("get_stories", result=self.stories)

    async def get_unread_count(self) -> int:
        return await self._call("get_unread_count", result=3)

    async def get_spam_unread_count(self) -> int:
        return await self._call("get_spam_unread_count", result=1)

    async def get_notification_badges(self) -> Any:
        return await self._call("get_notification_badges", result={"activity": 2})

    async def get_conversations(self) -> list[dict[str, Any]]:
        return await self._call("get_conversations", result=self.conversations)

    async def get_filtered_conversations(self, folder: str) -> list[dict[str, Any]]:
        return await self._call("get_filtered_conversations", folder, result=[])

    async def get_notifications(self, limit: int) -> list[dict[str, Any]]:
        return await self._call("get_notifications", limit, result=self.notifications)

    async def get_profile_posts(self, user_id: str) -> Any:
        return await self._call("get_profile_posts", user_id, result=[{"id": "p9"}])

    async def get_bookmarks(self) -> Any:
        return await self._call("get_bookmarks", result=["p1"])

    async def get_events(self, limit: int) -> Any:
        return await self._call("get_events", limit, result=[{"id": "e1"}])

    async def get_my_events(self) -> Any:
        return await self._call("get_my_events", result=[])

    async def get_liked_events(self, user_id: int) -> Any:
        return await self._call("get_liked_events", user_id, result=[])

    async def get_messages(self, conversation_id: str) -> Any:
        return await self._call("get_messages", conversation_id, result=[{"text": "hi"}])


@pytest.fixture()
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture()
def settings() -> Settings:
    return Settings(lanes=LaneSettings(lane_delays_ms=FAST_LANE_DELAYS))


@pytest.fixture()
def indexes(api: FakeApi, settings: Settings):
    return build_registry(api, settings.staleness)
