import unittest
from unittest.mock import patch

import redis

from app.services import presence_service
from app.services.presence_service import (
    MemoryKeyValueStore,
    RedisKeyValueStore,
    presence_key,
    reset_code_key,
)


class _BrokenScript:
    async def __call__(self, keys=None, args=None):
        raise redis.ConnectionError("connection refused")


class _BrokenRedis:
    def register_script(self, script):
        return _BrokenScript()

    async def set(self, key, value, ex=None):
        raise redis.ConnectionError("connection refused")

    async def get(self, key):
        raise redis.ConnectionError("connection refused")

    async def delete(self, key):
        raise redis.ConnectionError("connection refused")


class _FlakyScript:
    def __init__(self, client: "_FlakyRedis") -> None:
        self._client = client

    async def __call__(self, keys=None, args=None):
        self._client.check()
        if self._client.values.get(keys[0]) == args[0]:
            del self._client.values[keys[0]]
            return 1
        return 0


class _FlakyRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.down = False

    def check(self) -> None:
        if self.down:
            raise redis.ConnectionError("connection refused")

    def register_script(self, script):
        return _FlakyScript(self)

    async def set(self, key, value, ex=None):
        self.check()
        self.values[key] = value

    async def get(self, key):
        self.check()
        return self.values.get(key)

    async def delete(self, key):
        self.check()
        return 1 if self.values.pop(key, None) is not None else 0


class KeyFormatTests(unittest.TestCase):
    def test_presence_key_embeds_nickname(self) -> None:
        self.assertEqual(presence_key("bob"), "chat:nickname:bob:socketId")

    def test_reset_code_key_normalizes_email(self) -> None:
        self.assertEqual(reset_code_key(" Bob@Example.com "), "auth:password-reset:bob@example.com")


class MemoryKeyValueStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_set_get_delete(self) -> None:
        store = MemoryKeyValueStore()
        await store.set("k", "v")
        self.assertEqual(await store.get("k"), "v")
        self.assertTrue(await store.delete("k"))
        self.assertFalse(await store.delete("k"))
        self.assertIsNone(await store.get("k"))

    async def test_entries_expire_after_ttl(self) -> None:
        store = MemoryKeyValueStore()
        with patch.object(presence_service.time, "monotonic", return_value=100.0):
            await store.set("code", "ABC123", ttl=60)
        with patch.object(presence_service.time, "monotonic", return_value=159.0):
            self.assertEqual(await store.get("code"), "ABC123")
        with patch.object(presence_service.time, "monotonic", return_value=160.0):
            self.assertIsNone(await store.get("code"))

    async def test_guarded_delete_only_removes_matching_value(self) -> None:
        store = MemoryKeyValueStore()
        await store.set("presence", "sid-new")

        self.assertFalse(await store.delete_if_equals("presence", "sid-old"))
        self.assertEqual(await store.get("presence"), "sid-new")

        self.assertTrue(await store.delete_if_equals("presence", "sid-new"))
        self.assertIsNone(await store.get("presence"))

    async def test_clear_drops_everything(self) -> None:
        store = MemoryKeyValueStore()
        await store.set("a", "1")
        await store.set("b", "2")
        store.clear()
        self.assertIsNone(await store.get("a"))
        self.assertIsNone(await store.get("b"))


class RedisKeyValueStoreFallbackTests(unittest.IsolatedAsyncioTestCase):
    async def test_operations_fall_back_to_memory_when_redis_fails(self) -> None:
        store = RedisKeyValueStore(_BrokenRedis())

        with self.assertLogs("app.services.presence_service", level="WARNING"):
            await store.set("presence", "sid-1")
            self.assertEqual(await store.get("presence"), "sid-1")
            self.assertFalse(await store.delete_if_equals("presence", "sid-0"))
            self.assertTrue(await store.delete_if_equals("presence", "sid-1"))
            self.assertFalse(await store.delete("presence"))

    async def test_entry_written_during_outage_is_visible_after_recovery(self) -> None:
        client = _FlakyRedis()
        store = RedisKeyValueStore(client)

        client.down = True
        with self.assertLogs("app.services.presence_service", level="WARNING"):
            await store.set("presence", "sid-1")
        client.down = False

        self.assertEqual(await store.get("presence"), "sid-1")
        self.assertTrue(await store.delete_if_equals("presence", "sid-1"))
        self.assertIsNone(await store.get("presence"))

    async def test_write_after_recovery_replaces_outage_entry(self) -> None:
        client = _FlakyRedis()
        store = RedisKeyValueStore(client)

        client.down = True
        with self.assertLogs("app.services.presence_service", level="WARNING"):
            await store.set("presence", "sid-old")
        client.down = False
        await store.set("presence", "sid-new")

        self.assertFalse(await store.delete_if_equals("presence", "sid-old"))
        self.assertEqual(await store.get("presence"), "sid-new")
        self.assertTrue(await store.delete("presence"))
        self.assertIsNone(await store.get("presence"))


class BuildKeyValueStoreTests(unittest.TestCase):
    def test_memory_backend_setting(self) -> None:
        settings = presence_service.get_settings().model_copy(update={"presence_backend": "memory"})
        with patch.object(presence_service, "get_settings", return_value=settings):
            self.assertIsInstance(presence_service.build_key_value_store(), MemoryKeyValueStore)

    def test_missing_redis_client_uses_memory(self) -> None:
        settings = presence_service.get_settings().model_copy(update={"presence_backend": "redis"})
        with patch.object(presence_service, "get_settings", return_value=settings), patch.object(
            presence_service, "get_redis_client", return_value=None
        ):
            with self.assertLogs("app.services.presence_service", level="WARNING"):
                store = presence_service.build_key_value_store()
        self.assertIsInstance(store, MemoryKeyValueStore)


if __name__ == "__main__":
    unittest.main()
