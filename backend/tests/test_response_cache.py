"""
Tests for the two-tier response cache.
"""

import asyncio

import pytest

from services.response_cache import (
    CacheBackend,
    ResponseCache,
    create_cache_key,
    hash_string,
    init_response_cache,
)

LONG_REPLY = "Here are three ambient tracks from Calm Reflections for your focus session."


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class RecordingBackend(CacheBackend):
    name = "recording"

    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ttl_seconds):
        self.store[key] = value
        self.ttls[key] = ttl_seconds

    async def delete_matching(self, substring):
        matching = [k for k in self.store if substring in k]
        for k in matching:
            del self.store[k]
        return len(matching)


def _messages(text):
    return [{"role": "assistant", "content": "hello"}, {"role": "user", "content": text}]


class TestCreateCacheKey:
    """Cache key construction."""

    def test_short_message_not_cached(self):
        assert create_cache_key(_messages("hi there"), "chat") == ""

    def test_normalizes_case_and_whitespace(self):
        a = create_cache_key(_messages("Recommend   some FOCUS music"), "chat")
        b = create_cache_key(_messages("recommend some focus music "), "chat")
        assert a == b
        assert a.startswith("ai:chat:")

    def test_mode_and_signature_change_key(self):
        base = create_cache_key(_messages("recommend some focus music"), "chat")
        assert create_cache_key(_messages("recommend some focus music"), "explore") != base
        assert create_cache_key(_messages("recommend some focus music"), "chat", "track:ma-001") != base

    def test_uses_last_user_message(self):
        messages = [
            {"role": "user", "content": "first question about collections"},
            {"role": "assistant", "content": "answer"},
            {"role": "user", "content": "second question about tracks"},
        ]
        assert create_cache_key(messages, "chat") == create_cache_key(_messages("second question about tracks"), "chat")

    def test_hash_is_base36(self):
        assert hash_string("") == "45h"
        assert set(hash_string("metadj")) <= set("0123456789abcdefghijklmnopqrstuvwxyz")


class TestResponseCache:
    """Memory tier behavior."""

    def test_set_then_get(self):
        cache = ResponseCache(clock=FakeClock())

        async def run():
            await cache.set("ai:chat:abc", LONG_REPLY, "gpt-test")
            return await cache.get("ai:chat:abc")

        assert asyncio.run(run()) == LONG_REPLY
        assert cache.metrics.hits == 1
        assert cache.metrics.writes == 1

    def test_miss_records_metric(self):
        cache = ResponseCache(clock=FakeClock())
        assert asyncio.run(cache.get("ai:chat:missing")) is None
        assert cache.metrics.misses == 1
        assert cache.get_hit_rate() == 0.0

    def test_empty_key_is_noop(self):
        cache = ResponseCache(clock=FakeClock())

        async def run():
            await cache.set("", LONG_REPLY, "gpt-test")
            return await cache.get("")

        assert asyncio.run(run()) is None
        assert cache.size == 0
        assert cache.metrics.misses == 0

    def test_short_reply_not_stored(self):
        cache = ResponseCache(clock=FakeClock())
        asyncio.run(cache.set("ai:chat:abc", "too short", "gpt-test"))
        assert cache.size == 0

    def test_disabled_cache(self):
        cache = ResponseCache(enabled=False, clock=FakeClock())

        async def run():
            await cache.set("ai:chat:abc", LONG_REPLY, "gpt-test")
            return await cache.get("ai:chat:abc")

        assert asyncio.run(run()) is None

    def test_expired_entry_is_removed(self):
        clock = FakeClock()
        cache = ResponseCache(ttl_ms=60_000, clock=clock)
        asyncio.run(cache.set("ai:chat:abc", LONG_REPLY, "gpt-test"))

        clock.now += 60_000
        assert asyncio.run(cache.get("ai:chat:abc")) is None
        assert cache.size == 0

    def test_per_entry_ttl(self):
        clock = FakeClock()
        cache = ResponseCache(ttl_ms=60_000, clock=clock)
        asyncio.run(cache.set("ai:chat:abc", LONG_REPLY, "gpt-test", ttl_ms=120_000))

        clock.now += 90_000
        assert asyncio.run(cache.get("ai:chat:abc")) == LONG_REPLY

    def test_eviction_removes_oldest_fifth(self):
        clock = FakeClock()
        cache = ResponseCache(max_size=10, clock=clock)

        async def fill():
            for i in range(10):
                clock.now += 1
                await cache.set(f"ai:chat:{i}", LONG_REPLY, "gpt-test")
            clock.now += 1
            await cache.set("ai:chat:new", LONG_REPLY, "gpt-test")

        asyncio.run(fill())
        assert cache.size == 9
        assert cache.metrics.evictions == 2
        keys = set(cache._entries)
        assert "ai:chat:0" not in keys
        assert "ai:chat:1" not in keys
        assert "ai:chat:new" in keys

    def test_eviction_removes_at_least_one(self):
        cache = ResponseCache(max_size=2, clock=FakeClock())

        async def fill():
            for i in range(3):
                cache._clock.now += 1
                await cache.set(f"ai:chat:{i}", LONG_REPLY, "gpt-test")

        asyncio.run(fill())
        assert cache.size == 2
        assert cache.metrics.evictions == 1

    def test_overwrite_when_full_keeps_entries(self):
        clock = FakeClock()
        cache = ResponseCache(max_size=5, clock=clock)

        async def fill():
            for i in range(5):
                clock.now += 1
                await cache.set(f"ai:chat:{i}", LONG_REPLY, "gpt-test")
            clock.now += 1
            await cache.set("ai:chat:2", LONG_REPLY + " Updated.", "gpt-test")

        asyncio.run(fill())
        assert cache.size == 5
        assert cache.metrics.evictions == 0
        assert asyncio.run(cache.get("ai:chat:2")) == LONG_REPLY + " Updated."

    def test_invalidate_pattern(self):
        backend = RecordingBackend()
        cache = ResponseCache(backend=backend, clock=FakeClock())

        async def run():
            await cache.set("ai:chat:one", LONG_REPLY, "gpt-test")
            await cache.set("ai:explore:two", LONG_REPLY, "gpt-test")
            return await cache.invalidate_pattern(":chat:")

        assert asyncio.run(run()) == 1
        assert list(cache._entries) == ["ai:explore:two"]
        assert list(backend.store) == ["ai:explore:two"]

    def test_stats_snapshot(self):
        cache = ResponseCache(max_size=50, ttl_ms=60_000, clock=FakeClock())
        asyncio.run(cache.set("ai:chat:abcdefghijklmnopqrstuvwxyz0123", LONG_REPLY, "gpt-test"))
        asyncio.run(cache.get("ai:chat:abcdefghijklmnopqrstuvwxyz0123"))

        stats = cache.get_stats()
        assert stats["size"] == 1
        assert stats["maxSize"] == 50
        assert stats["backend"] == "none"
        assert stats["entries"][0]["hits"] == 1
        assert stats["entries"][0]["key"].endswith("...")

    def test_reset_metrics(self):
        cache = ResponseCache(clock=FakeClock())
        asyncio.run(cache.get("ai:chat:missing"))
        cache.reset_metrics()
        assert cache.metrics.misses == 0


class TestDistributedTier:
    """Backend mirror behavior."""

    def test_write_mirrors_with_ttl_seconds(self):
        backend = RecordingBackend()
        cache = ResponseCache(ttl_ms=90_500, backend=backend, clock=FakeClock())
        asyncio.run(cache.set("ai:chat:abc", LONG_REPLY, "gpt-test"))
        assert backend.ttls["ai:chat:abc"] == 91

    def test_memory_miss_falls_back_to_backend(self):
        backend = RecordingBackend()
        backend.store["ai:chat:remote"] = LONG_REPLY
        cache = ResponseCache(backend=backend, clock=FakeClock())

        assert asyncio.run(cache.get("ai:chat:remote")) == LONG_REPLY
        assert cache.metrics.hits == 1


class TestInitResponseCache:
    """Singleton construction from configuration."""

    def test_uses_config_values(self, make_config):
        config = make_config(cache_enabled=True, cache_max_size=25, cache_ttl_ms=120_000, redis_url="")
        cache = init_response_cache(config)
        assert cache.max_size == 25
        assert cache.ttl_ms == 120_000
        assert cache.backend.name == "none"

    @pytest.mark.parametrize("enabled", [True, False])
    def test_enabled_flag(self, make_config, enabled):
        assert init_response_cache(make_config(cache_enabled=enabled)).enabled is enabled
