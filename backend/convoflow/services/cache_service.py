# /convoflow/services/cache_service.py

import logging
from typing import Optional
import redis.asyncio as redis

from convoflow.config.settings import settings

# This service owns the Redis connection. Redis is optional for the automation
# engine: when no URL is configured (or the pool cannot be built) `redis` stays
# None and callers fall back to in-process behaviour.

logger = logging.getLogger(__name__)

class CacheService:
    def __init__(self, redis_url: Optional[str]):
        self.redis = None
        if not redis_url:
            logger.info("No REDIS_URL configured; Redis-backed features are disabled.")
            return
        try:
            self.redis_pool = redis.ConnectionPool.from_url(redis_url, max_connections=20)
            self.redis = redis.Redis(connection_pool=self.redis_pool)
        except Exception as e:
            logger.critical(f"Failed to connect to Redis at {redis_url}: {e}")
            self.redis = None

    async def ping(self) -> bool:
        if not self.redis:
            return False
        try:
            return bool(await self.redis.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self):
        if self.redis:
            await self.redis.aclose()

# Globally accessible instance
cache_service = CacheService(settings.redis_url)
