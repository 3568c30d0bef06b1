import logging
from typing import Optional

from redis.asyncio import Redis

from vtc_booking.core.config import settings

logger = logging.getLogger(__name__)

redis: Optional[Redis] = None


async def init_redis() -> Optional[Redis]:
    """Connect when REDIS_URL is set; without it the in-memory backends are used."""
    global redis
    if not settings.REDIS_URL:
        logger.info("REDIS_URL not set, using in-memory rate limiter and tenant store")
        return None
    try:
        redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
        await redis.ping()
        logger.info("Connected to Redis")
        return redis
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        redis = None
        raise


async def close_redis():
    global redis
    if redis:
        await redis.aclose()
        redis = None


def get_redis() -> Optional[Redis]:
    return redis
