import redis.asyncio as aioredis
from redis.asyncio import Redis
from typing import Any, Optional
import json

from portal.core.config import settings
from portal.core.logging_config import logger


class RedisClient:
    """Redis client for guard session state"""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.redis: Optional[Redis] = None

    @property
    def connected(self) -> bool:
        return self.redis is not None

    async def connect(self):
        """Connect to Redis"""
        try:
            self.redis = await aioredis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True
            )
            logger.info("Redis connected successfully")
        except Exception as e:
            logger.error(f"Redis connection error: {e}")
            raise

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
        logger.info("Redis disconnected")

    async def get(self, key: str) -> Optional[str]:
        """Get value from Redis"""
        try:
            return await self.redis.get(key)
        except Exception as e:
            logger.error(f"Redis GET error: {e}")
            return None

    async def set(
        self,
        key: str,
        value: str,
        expire: Optional[int] = None
    ) -> bool:
        """Set value in Redis"""
        try:
            if expire:
                return await self.redis.setex(key, expire, value)
            return await self.redis.set(key, value)
        except Exception as e:
            logger.error(f"Redis SET error: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete key from Redis"""
        try:
            return await self.redis.delete(key) > 0
        except Exception as e:
            logger.error(f"Redis DELETE error: {e}")
            return False

    async def get_json(self, key: str) -> Optional[Any]:
        """Get a JSON value; unreadable values count as missing"""
        value = await self.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"Redis value at {key} is not JSON, ignoring")
            return None

    async def set_json(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        """Set a JSON value"""
        return await self.set(key, json.dumps(value), expire=expire)


# Create Redis client instance
redis_client = RedisClient()