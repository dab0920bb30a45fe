import json
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from community.config import settings

logger = logging.getLogger(__name__)


class CacheManager:
    """
    Cache-aside manager backed by Redis.

    Read operations return None and write operations are skipped when Redis
    is unavailable, so a cache outage slows requests down but never fails
    them.  Only derived, non-authoritative data is cached (feed pages and
    like counts); ownership and uniqueness decisions always read the
    database.
    """

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except RedisError as exc:
            logger.warning("Redis ping failed, cache disabled: %s", exc)
            await self._redis.aclose()
            self._redis = None

    async def disconnect(self) -> None:
        """Close the connection pool.  Called once at application shutdown."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> dict | list | int | None:
        """Return the cached value for *key*, or None on a miss or error."""
        if not self._redis:
            return None
        try:
            data = await self._redis.get(key)
        except RedisError as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            return None
        if data is None:
            return None
        return json.loads(data)

    async def set(self, key: str, value: dict | list | int, ttl: int | None = None) -> None:
        """Store *value* under *key* with an optional TTL (seconds)."""
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except RedisError as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def delete(self, *keys: str) -> None:
        if not self._redis or not keys:
            return
        try:
            await self._redis.delete(*keys)
        except RedisError as exc:
            logger.debug("Cache DELETE error for keys=%r: %s", keys, exc)

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching *pattern* using SCAN (avoids blocking KEYS)."""
        if not self._redis:
            return
        try:
            keys = [key async for key in self._redis.scan_iter(match=pattern)]
            if keys:
                await self._redis.delete(*keys)
                logger.debug("Cache invalidated %d key(s) matching %r", len(keys), pattern)
        except RedisError as exc:
            logger.debug("Cache DELETE_PATTERN error for pattern=%r: %s", pattern, exc)

    # ------------------------------------------------------------------
    # Domain keys and invalidation
    # ------------------------------------------------------------------

    @staticmethod
    def post_list_key(page: int, page_size: int) -> str:
        return f"posts:list:{page}:{page_size}"

    @staticmethod
    def like_count_key(post_id: int) -> str:
        return f"likes:count:{post_id}"

    async def invalidate_posts(self) -> None:
        """Feed pages embed comment and like counts, so any write clears them."""
        await self.delete_pattern("posts:list:*")

    async def invalidate_likes(self, *post_ids: int) -> None:
        await self.delete(*(self.like_count_key(post_id) for post_id in post_ids))
        await self.invalidate_posts()


# Module-level singleton shared across all request handlers.
cache = CacheManager()
