"""Key-value storage for presence entries and short-lived codes.

Presence entries map an authenticated nickname to the id of its most recent
live connection. The same store keeps password-reset codes with a TTL.
Only single-key atomicity is provided.
"""

import logging
import threading
import time

import redis
from redis import asyncio as redis_asyncio

from app.core.config import get_settings
from app.services.redis_client import get_redis_client

logger = logging.getLogger(__name__)

_DELETE_IF_EQUALS_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


def presence_key(nickname: str) -> str:
    return f"chat:nickname:{nickname}:socketId"


def reset_code_key(email: str) -> str:
    return f"auth:password-reset:{email.strip().lower()}"


class MemoryKeyValueStore:
    def __init__(self) -> None:
        self._values: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    def _live_value(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            self._values.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        with self._lock:
            self._values[key] = (value, expires_at)

    async def get(self, key: str) -> str | None:
        with self._lock:
            return self._live_value(key)

    async def delete(self, key: str) -> bool:
        with self._lock:
            existed = self._live_value(key) is not None
            self._values.pop(key, None)
            return existed

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        with self._lock:
            if self._live_value(key) != expected:
                return False
            self._values.pop(key, None)
            return True

    def clear(self) -> None:
        with self._lock:
            self._values.clear()


class RedisKeyValueStore:
    """Redis-backed store that degrades to process memory when Redis is down.

    Entries written to memory during an outage stay readable after Redis
    recovers until they are overwritten, deleted or expire.
    """

    def __init__(self, client: redis_asyncio.Redis) -> None:
        self._redis = client
        self._fallback = MemoryKeyValueStore()
        self._delete_if_equals = client.register_script(_DELETE_IF_EQUALS_SCRIPT)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        try:
            await self._redis.set(key, value, ex=ttl if ttl else None)
        except redis.RedisError as exc:
            logger.warning("Redis set failed for %s, using memory store: %s", key, exc)
            await self._fallback.set(key, value, ttl)
            return
        await self._fallback.delete(key)

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(key)
        except redis.RedisError as exc:
            logger.warning("Redis get failed for %s, using memory store: %s", key, exc)
            return await self._fallback.get(key)
        if value is None:
            return await self._fallback.get(key)
        return value

    async def delete(self, key: str) -> bool:
        removed = False
        try:
            removed = bool(await self._redis.delete(key))
        except redis.RedisError as exc:
            logger.warning("Redis delete failed for %s, using memory store: %s", key, exc)
        return await self._fallback.delete(key) or removed

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        removed = False
        try:
            removed = bool(await self._delete_if_equals(keys=[key], args=[expected]))
        except redis.RedisError as exc:
            logger.warning("Redis guarded delete failed for %s, using memory store: %s", key, exc)
        return await self._fallback.delete_if_equals(key, expected) or removed


def build_key_value_store() -> MemoryKeyValueStore | RedisKeyValueStore:
    settings = get_settings()
    if settings.presence_backend.strip().lower() == "memory":
        return MemoryKeyValueStore()
    client = get_redis_client()
    if client is None:
        logger.warning("Redis unavailable at %s, presence kept in memory", settings.redis_url)
        return MemoryKeyValueStore()
    return RedisKeyValueStore(client)


key_value_store = build_key_value_store()
