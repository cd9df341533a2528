"""
Redis cache for read-mostly per-user data (hidden word lists).

Redis is optional. Without ``REDIS_URL``, or while Redis is unreachable, every
lookup is a miss and writes are dropped; requests never fail because of it.

    words = await cache.get(hidden_words_key(user_id))
    if words is None:
        ...read from the store, then cache.set(...)
"""

import json
from typing import Any, Awaitable, Callable, Optional
from redis import asyncio as aioredis
from redis.exceptions import RedisError
from groupchat.config import settings
from groupchat.core.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 300


class CacheBackend:
    """Redis-backed cache that degrades to a no-op."""

    def __init__(self):
        self.redis: Optional[aioredis.Redis] = None
        self.enabled = False

    @property
    def available(self) -> bool:
        return self.enabled and self.redis is not None

    async def initialize(self):
        if not settings.REDIS_URL:
            logger.info("cache_disabled", reason="no_redis_url_configured")
            return

        self.redis = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
        )
        try:
            await self.redis.ping()
        except (RedisError, OSError) as e:
            logger.warning("cache_initialization_failed", error=str(e))
            self.enabled = False
            return

        self.enabled = True
        logger.info("cache_enabled")

    async def close(self):
        if self.redis is not None:
            try:
                await self.redis.aclose()
            except (RedisError, OSError) as e:
                logger.error("cache_close_error", error=str(e))
        self.redis = None
        self.enabled = False

    async def ping(self) -> bool:
        if not self.available:
            return False
        try:
            return bool(await self.redis.ping())
        except (RedisError, OSError) as e:
            logger.warning("cache_ping_failed", error=str(e))
            return False

    async def _call(self, op: str, key: str, fn: Callable[[], Awaitable[Any]], fallback: Any) -> Any:
        if not self.available:
            return fallback
        try:
            return await fn()
        except (RedisError, OSError) as e:
            logger.error("cache_error", op=op, key=key, error=str(e))
            return fallback

    async def get(self, key: str) -> Optional[str]:
        value = await self._call("get", key, lambda: self.redis.get(key), None)
        logger.debug("cache_hit" if value is not None else "cache_miss", key=key)
        return value

    async def set(self, key: str, value: str, ttl: int = DEFAULT_TTL_SECONDS) -> bool:
        async def write():
            await self.redis.setex(key, ttl, value)
            return True

        return await self._call("set", key, write, False)

    async def delete(self, key: str) -> bool:
        async def drop():
            await self.redis.delete(key)
            return True

        return await self._call("delete", key, drop, False)


def serialize_for_cache(data: Any) -> str:
    return json.dumps(data, default=str)


def deserialize_from_cache(data: str) -> Any:
    return json.loads(data)


def hidden_words_key(user_id: str) -> str:
    return f"user:{user_id}:hidden_words"


cache = CacheBackend()
