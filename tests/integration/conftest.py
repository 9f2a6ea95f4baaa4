"""Integration test fixtures.

Provides a fully wired AppState over in-memory SQLite and the fake remote
API from tests/conftest.py. No HTTP client, so story warm-up is off.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest

from bootcache.state import create_app_state

if TYPE_CHECKING:
    from bootcache.config import Settings
    from bootcache.state import AppState
    from tests.conftest import FakeApi


@pytest.fixture()
async def db():
    async with aiosqlite.connect(":memory:") as connection:
        yield connection


@pytest.fixture()
async def app_state(settings: Settings, api: FakeApi, db: aiosqlite.Connection) -> AppState:
    state = await create_app_state(settings, api, db)
    yield state
    await state.drain()
