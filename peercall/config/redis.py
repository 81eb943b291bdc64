"""Shared redis.asyncio client for call-intent persistence."""
from typing import Optional
import redis.asyncio as redis
from peercall.config.settings import settings

_redis: Optional[redis.Redis] = None


def redis_url() -> str:
    auth = f":{settings.REDIS_PASSWORD}@" if settings.REDIS_PASSWORD else ""
    return f"redis://{auth}{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        # Raw bytes; CallIntentStore decodes what it reads
        _redis = redis.Redis.from_url(redis_url(), decode_responses=False)
    return _redis


async def close_redis():
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
