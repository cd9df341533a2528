"""
Pytest configuration and shared fixtures for group chat tests.

Fixtures provide:
- A fresh in-memory store and live feed per test
- Services wired to them
- An HTTP client against the app with the store and feed overridden
- A sample "Road Trip" group (creator u1, members u2 and u3)
"""

import os

# Must be set before groupchat.config is imported
os.environ["STORE_BACKEND"] = "memory"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""

import pytest
from typing import AsyncGenerator
from httpx import ASGITransport, AsyncClient

from groupchat.config import settings
from groupchat.db.memory_store import MemoryGroupStore
from groupchat.dependencies import get_feed, get_store
from groupchat.main import app
from groupchat.services.group_feed import GroupFeed
from groupchat.services.group_service import GroupService
from groupchat.services.messaging_service import MessagingService
from groupchat.services.profile_service import ProfileService


@pytest.fixture(autouse=True)
def fast_index_retries(monkeypatch):
    """No backoff sleeps between index write retries."""
    monkeypatch.setattr(settings, "INDEX_WRITE_BACKOFF_SECONDS", 0)


@pytest.fixture
def store() -> MemoryGroupStore:
    return MemoryGroupStore()


@pytest.fixture
def group_feed() -> GroupFeed:
    return GroupFeed()


@pytest.fixture
def group_service(store, group_feed) -> GroupService:
    return GroupService(store, group_feed)


@pytest.fixture
def profile_service(store) -> ProfileService:
    return ProfileService(store)


@pytest.fixture
def messaging_service(store, group_feed, profile_service) -> MessagingService:
    return MessagingService(store, group_feed, profile_service, hooks=())


@pytest.fixture
def override_dependencies(store, group_feed):
    """Route every request of the app to this test's store and feed."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_feed] = lambda: group_feed
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def test_client(override_dependencies) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
async def road_trip(group_service):
    """Group "Road Trip" created by u1 with members u2 and u3."""
    return await group_service.create_group("Road Trip", "u1", ["u2", "u3"])


@pytest.fixture
def index_of(store):
    """Group ids in a user's group index."""
    async def _index_of(user_id: str):
        profile = await store.get_user(user_id)
        return profile.group_ids() if profile else []
    return _index_of
