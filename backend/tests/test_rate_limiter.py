"""
Tests for sliding-window admission, client identity and limiter lifecycle.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from services.rate_limiter import (
    CHAT_WINDOW,
    FAIL_CLOSED_RETRY_MS,
    SESSION_COOKIE_NAME,
    TRANSCRIBE_WINDOW,
    BoundedMap,
    RateLimiter,
    RateLimitWindow,
    build_rate_limit_headers,
    build_rate_limit_response,
    fingerprint_request,
    get_rate_limiter,
    resolve_client_identity,
)
from services.redis_client import RedisManager

WINDOW = RateLimitWindow("test", 60_000, 3)


class FakeClock:
    def __init__(self):
        self.now = 1_000_000.0

    def __call__(self):
        return self.now


class FakeRedis:
    """Counter store with the RedisManager surface the limiter uses."""

    def __init__(self, connected=True, fail=False):
        self.connected = connected
        self.fail = fail
        self.counts = {}
        self.ttls = {}

    async def incr(self, key):
        if self.fail:
            raise ConnectionError("redis went away")
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key, ttl):
        self.ttls[key] = ttl
        return True

    async def get_ttl(self, key):
        return self.ttls.get(key, -1)


def _factory(redis):
    async def get():
        return redis

    return get


class TestMemoryWindow:
    """In-memory counting."""

    def test_allows_up_to_max_then_rejects(self):
        clock = FakeClock()
        limiter = RateLimiter(WINDOW, clock=clock)

        for expected_remaining in (2, 1, 0):
            decision = limiter.check_memory("session-a", is_fingerprint=False)
            assert decision.allowed is True
            assert decision.remaining == expected_remaining
            clock.now += 1000

        rejected = limiter.check_memory("session-a", is_fingerprint=False)
        assert rejected.allowed is False
        assert rejected.remaining_ms == 60_000 - 3000

    def test_rejection_does_not_consume(self):
        clock = FakeClock()
        limiter = RateLimiter(WINDOW, clock=clock)
        for _ in range(4):
            limiter.check_memory("session-a", is_fingerprint=True)
        assert limiter._records.get("session-a").count == 3

    def test_window_resets(self):
        clock = FakeClock()
        limiter = RateLimiter(WINDOW, clock=clock)
        for _ in range(3):
            limiter.check_memory("fp", is_fingerprint=True)
        assert limiter.check_memory("fp", is_fingerprint=True).allowed is False

        clock.now += 60_000
        assert limiter.check_memory("fp", is_fingerprint=True).allowed is True

    def test_clients_are_independent(self):
        limiter = RateLimiter(WINDOW, clock=FakeClock())
        for _ in range(3):
            limiter.check_memory("a", is_fingerprint=True)
        assert limiter.check_memory("b", is_fingerprint=True).allowed is True

    def test_burst_interval_for_sessions(self):
        clock = FakeClock()
        limiter = RateLimiter(WINDOW, clock=clock)
        limiter.check_memory("session-a", is_fingerprint=False)

        clock.now += 200
        decision = limiter.check_memory("session-a", is_fingerprint=False)
        assert decision.allowed is False
        assert decision.remaining_ms == 300

        clock.now += 300
        assert limiter.check_memory("session-a", is_fingerprint=False).allowed is True

    def test_no_burst_check_for_fingerprints(self):
        limiter = RateLimiter(WINDOW, clock=FakeClock())
        assert limiter.check_memory("fp", is_fingerprint=True).allowed is True
        assert limiter.check_memory("fp", is_fingerprint=True).allowed is True

    def test_decision_to_dict(self):
        limiter = RateLimiter(RateLimitWindow("one", 60_000, 1), clock=FakeClock())
        assert limiter.check_memory("fp", True).to_dict() == {"allowed": True}
        assert limiter.check_memory("fp", True).to_dict() == {"allowed": False, "remainingMs": 60_000}

    def test_clear(self):
        limiter = RateLimiter(WINDOW, clock=FakeClock())
        for _ in range(3):
            limiter.check_memory("fp", is_fingerprint=True)
        limiter.clear("fp")
        assert limiter.check_memory("fp", is_fingerprint=True).allowed is True


class TestDistributedWindow:
    """Redis-backed counting and failure modes."""

    def test_counts_in_redis(self):
        redis = FakeRedis()
        limiter = RateLimiter(WINDOW, redis_factory=_factory(redis), clock=FakeClock())

        async def run():
            return [await limiter.check("fp", is_fingerprint=True) for _ in range(4)]

        decisions = asyncio.run(run())
        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert redis.counts["metadjai:rl:test:fp"] == 4
        assert redis.ttls["metadjai:rl:test:fp"] == 60
        assert decisions[-1].remaining_ms == 60_000
        assert limiter.mode == "distributed"

    def test_fail_open_uses_memory(self):
        limiter = RateLimiter(WINDOW, redis_factory=_factory(FakeRedis(fail=True)), clock=FakeClock())
        decision = asyncio.run(limiter.check("fp", is_fingerprint=True))
        assert decision.allowed is True
        assert limiter._records.get("fp").count == 1

    def test_fail_closed_denies(self):
        limiter = RateLimiter(
            WINDOW, fail_closed=True, redis_factory=_factory(FakeRedis(fail=True)), clock=FakeClock()
        )
        decision = asyncio.run(limiter.check("fp", is_fingerprint=True))
        assert decision.allowed is False
        assert decision.remaining_ms == FAIL_CLOSED_RETRY_MS

    def test_unconnected_store_counts_as_failure(self):
        limiter = RateLimiter(
            WINDOW, fail_closed=True, redis_factory=_factory(FakeRedis(connected=False)), clock=FakeClock()
        )
        assert asyncio.run(limiter.check("fp", is_fingerprint=True)).allowed is False

    def test_admits_after_cache_tier_failure(self):
        client = MagicMock()
        client.get = AsyncMock(side_effect=TimeoutError("read timed out"))
        client.incr = AsyncMock(side_effect=[1, 1, 1])
        client.expire = AsyncMock()
        manager = RedisManager(url="redis://localhost:6379/0")
        manager._client = client
        manager._available = True
        manager._initialized = True
        limiter = RateLimiter(WINDOW, fail_closed=True, redis_factory=_factory(manager), clock=FakeClock())

        async def run():
            await manager.get("metadjai:cache:k")
            degraded = manager.degraded
            decisions = [await limiter.check(f"session-{i}") for i in range(3)]
            return degraded, decisions

        degraded, decisions = asyncio.run(run())
        assert degraded is True
        assert [d.allowed for d in decisions] == [True, True, True]
        assert manager.degraded is False


class TestBoundedMap:
    """LRU bound on tracked clients."""

    def test_evicts_least_recently_used(self):
        bounded = BoundedMap(max_entries=2)
        bounded.set("a", 1)
        bounded.set("b", 2)
        bounded.get("a")
        bounded.set("c", 3)
        assert "a" in bounded
        assert "b" not in bounded
        assert len(bounded) == 2


class TestClientIdentity:
    """Cookie-first identity resolution."""

    def test_cookie_wins(self):
        identity = resolve_client_identity({"user-agent": "x"}, {SESSION_COOKIE_NAME: "session-123"}, "1.2.3.4")
        assert identity.id == "session-123"
        assert identity.is_fingerprint is False

    def test_fingerprint_without_cookie(self):
        identity = resolve_client_identity({"user-agent": "x"}, {}, "1.2.3.4")
        assert identity.is_fingerprint is True
        assert identity.id.startswith("fp-")
        assert len(identity.id) == 35

    def test_fingerprint_prefers_forwarded_ip(self):
        headers = {"x-forwarded-for": "9.9.9.9, 10.0.0.1", "user-agent": "x"}
        assert fingerprint_request(headers, "1.2.3.4") == fingerprint_request(
            {"x-real-ip": "9.9.9.9", "user-agent": "x"}, "5.6.7.8"
        )

    def test_fingerprint_varies_with_headers(self):
        assert fingerprint_request({"user-agent": "a"}, "1.2.3.4") != fingerprint_request({"user-agent": "b"}, "1.2.3.4")


class TestResponses:
    """429 body and headers."""

    def test_response_body(self):
        body = build_rate_limit_response(1500)
        assert body["retryAfter"] == 2
        assert "Rate limit exceeded" in body["error"]

    def test_headers(self):
        limiter = RateLimiter(RateLimitWindow("one", 60_000, 1), clock=FakeClock())
        allowed = build_rate_limit_headers(limiter.check_memory("fp", True))
        assert allowed == {"X-RateLimit-Limit": "1", "X-RateLimit-Remaining": "0"}

        denied = build_rate_limit_headers(limiter.check_memory("fp", True))
        assert denied["Retry-After"] == "60"


class TestLimiterLifecycle:
    """Process singletons per window."""

    def test_one_limiter_per_window(self, make_config):
        config = make_config()
        chat = get_rate_limiter(CHAT_WINDOW, config)
        assert get_rate_limiter(CHAT_WINDOW, config) is chat
        assert get_rate_limiter(TRANSCRIBE_WINDOW, config) is not chat
        assert chat.mode == "in-memory"

    def test_transcribe_fail_closed_in_production(self, make_config):
        config = make_config(app_env="production")
        assert get_rate_limiter(TRANSCRIBE_WINDOW, config).fail_closed is True
        assert get_rate_limiter(CHAT_WINDOW, config).fail_closed is False

    def test_chat_fail_closed_flag(self, make_config):
        config = make_config(rate_limit_fail_closed=True)
        assert get_rate_limiter(CHAT_WINDOW, config).fail_closed is True

    def test_windows(self):
        assert CHAT_WINDOW.max_requests == 20
        assert TRANSCRIBE_WINDOW.max_requests == 5
        assert CHAT_WINDOW.window_seconds == 300
