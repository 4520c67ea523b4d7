"""
Redis infrastructure

Shared async connection pool used by the session store.
"""

from typing import Optional

from redis.asyncio import Redis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_redis: Optional[Redis] = None


async def init_redis_pool() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(settings.redis_url, decode_responses=True)
        logger.info("redis.pool.created", url=settings.redis_url)
    return _redis


async def get_redis() -> Redis:
    if _redis is None:
        return await init_redis_pool()
    return _redis


async def close_redis_pool() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
        logger.info("redis.pool.closed")
