"""
ProfileService - per-user profile snapshot and hidden words.

Profiles (display name, profile image URL) are supplied by the identity and
media collaborators; this service only stores the latest values so group
creation and message sends can snapshot them.

Hidden word lists are read on every rendered snapshot, so reads go through the
Redis cache (if configured) and every change invalidates the cached copy.
"""

from typing import List, Optional

from groupchat.config import settings
from groupchat.core.cache import cache, hidden_words_key, serialize_for_cache, deserialize_from_cache
from groupchat.core.exceptions import NotFoundError, ValidationError
from groupchat.core.logging_config import get_logger
from groupchat.db.store import GroupStore
from groupchat.models.user import UserProfile
from groupchat.services.word_filter import sanitize_hidden_word, validate_hidden_word

logger = get_logger(__name__)


class ProfileService:

    def __init__(self, store: GroupStore):
        self.store = store

    async def get_profile(self, user_id: str) -> UserProfile:
        profile = await self.store.get_user(user_id)
        if profile is None:
            raise NotFoundError("User not found")
        return profile

    async def upsert_profile(
        self,
        user_id: str,
        display_name: Optional[str],
        profile_image_url: Optional[str],
    ) -> UserProfile:
        profile = await self.store.upsert_profile(user_id, display_name, profile_image_url)
        logger.info("profile_updated", user_id=user_id)
        return profile

    async def get_display_name(self, user_id: str) -> str:
        profile = await self.store.get_user(user_id)
        if profile and profile.display_name:
            return profile.display_name
        return settings.DEFAULT_SENDER_NAME

    async def get_hidden_words(self, user_id: str) -> List[str]:
        key = hidden_words_key(user_id)
        cached = await cache.get(key)
        if cached is not None:
            return deserialize_from_cache(cached)

        profile = await self.store.get_user(user_id)
        words = profile.hidden_words if profile else []
        await cache.set(key, serialize_for_cache(words), ttl=settings.HIDDEN_WORDS_CACHE_TTL)
        return words

    async def add_hidden_word(self, user_id: str, word: str) -> List[str]:
        if not validate_hidden_word(word):
            raise ValidationError(
                f"Hidden word must be 1-{settings.HIDDEN_WORD_MAX_LENGTH} characters"
            )

        words = await self.store.add_hidden_word(user_id, sanitize_hidden_word(word))
        await cache.delete(hidden_words_key(user_id))
        logger.info("hidden_word_added", user_id=user_id, hidden_word_count=len(words))
        return words

    async def remove_hidden_word(self, user_id: str, word: str) -> List[str]:
        words = await self.store.remove_hidden_word(user_id, sanitize_hidden_word(word))
        await cache.delete(hidden_words_key(user_id))
        logger.info("hidden_word_removed", user_id=user_id, hidden_word_count=len(words))
        return words
