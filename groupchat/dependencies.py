"""
Dependency injection for FastAPI routes.

The store is created once in the application lifespan and handed out from
here, so tests can swap it out:

    app.dependency_overrides[get_store] = lambda: MemoryGroupStore()
"""

from typing import Optional

from fastapi import Depends
from starlette.requests import HTTPConnection

from groupchat.core.exceptions import AuthError
from groupchat.db.store import GroupStore
from groupchat.middleware.access_log import USER_ID_HEADER
from groupchat.services.group_feed import GroupFeed, feed
from groupchat.services.group_service import GroupService
from groupchat.services.messaging_service import MessagingService
from groupchat.services.profile_service import ProfileService

_store: Optional[GroupStore] = None


def set_store(store: Optional[GroupStore]) -> None:
    global _store
    _store = store


def get_store() -> GroupStore:
    if _store is None:
        raise RuntimeError("Store not initialized; application lifespan has not run")
    return _store


def get_feed() -> GroupFeed:
    return feed


def get_profile_service(store: GroupStore = Depends(get_store)) -> ProfileService:
    return ProfileService(store)


def get_group_service(
    store: GroupStore = Depends(get_store),
    group_feed: GroupFeed = Depends(get_feed),
) -> GroupService:
    return GroupService(store, group_feed)


def get_messaging_service(
    store: GroupStore = Depends(get_store),
    group_feed: GroupFeed = Depends(get_feed),
    profiles: ProfileService = Depends(get_profile_service),
) -> MessagingService:
    return MessagingService(store, group_feed, profiles)


def ensure_caller(connection: HTTPConnection, acting_user_id: str) -> None:
    """
    Reject a request or stream when the asserted caller differs from the acting user.

    Connections without ``X-User-ID`` are trusted as-is.
    """
    caller_id = connection.headers.get(USER_ID_HEADER)
    if caller_id and caller_id != acting_user_id:
        raise AuthError("Caller does not match the acting user")
