from datetime import datetime
from typing import Optional

import redis.asyncio as redis
import structlog

from app.core.config import settings

logger = structlog.get_logger(__name__)


class RedisClient:
    """Redis client used for short-lived booking locks."""

    def __init__(self, url: Optional[str] = None):
        self.url = url if url is not None else settings.REDIS_URL
        self.redis_pool = None

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def init_redis(self):
        """Initialize Redis connection pool."""
        try:
            self.redis_pool = redis.ConnectionPool.from_url(
                self.url,
                decode_responses=True,
                retry_on_timeout=True,
                socket_keepalive=True,
            )

            # Test connection
            async with redis.Redis(connection_pool=self.redis_pool) as r:
                await r.ping()
                logger.info("Redis connection established")

        except Exception as e:
            logger.error("Failed to connect to Redis", exc_info=e)
            self.redis_pool = None
            raise

    async def get_redis(self) -> redis.Redis:
        """Get Redis client instance."""
        if not self.redis_pool:
            await self.init_redis()
        return redis.Redis(connection_pool=self.redis_pool)

    async def close(self) -> None:
        if self.redis_pool is not None:
            await self.redis_pool.disconnect()
            self.redis_pool = None

    @staticmethod
    def slot_lock_key(provider_id: str, starts_at: datetime) -> str:
        return f"slot_lock:{provider_id}:{starts_at.isoformat()}"

    async def acquire_slot_lock(
        self, provider_id: str, starts_at: datetime, seconds: Optional[int] = None
    ) -> bool:
        """Take the lock for one provider instant.

        Returns True when the lock was taken or Redis is unavailable; the
        persistence layer re-checks overlap either way.
        """
        if not self.enabled:
            return True
        key = self.slot_lock_key(provider_id, starts_at)
        try:
            client = await self.get_redis()
            acquired = await client.set(
                key, "locked", nx=True, ex=seconds or settings.BOOKING_LOCK_SECONDS
            )
            return bool(acquired)
        except Exception as e:
            logger.warning("Redis slot lock unavailable", key=key, exc_info=e)
            return True

    async def release_slot_lock(self, provider_id: str, starts_at: datetime) -> None:
        if not self.enabled:
            return
        key = self.slot_lock_key(provider_id, starts_at)
        try:
            client = await self.get_redis()
            await client.delete(key)
        except Exception as e:
            logger.warning("Redis slot lock release failed", key=key, exc_info=e)


# Global Redis client instance
redis_client = RedisClient()
