import redis
from redis import asyncio as redis_asyncio

from app.core.config import get_settings


def get_redis_client() -> redis_asyncio.Redis | None:
    settings = get_settings()
    try:
        return redis_asyncio.Redis.from_url(settings.redis_url, decode_responses=True)
    except (redis.RedisError, ValueError):
        return None
