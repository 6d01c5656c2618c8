"""
Redis connection manager for the optional distributed tier.

Two MetaDJai components mirror state here: the response cache (reply text
under metadjai:cache:*) and the distributed rate-limit counters
(metadjai:rl:*). Both keep working from process memory when the store is
absent, so this manager never raises on cache-style calls. A failed call
flips the manager into degraded mode: reads miss and writes are skipped,
and once RECONNECT_BACKOFF_SECONDS have passed the next call tries the
store again. Any successful call restores the distributed tier.

Counter increments are the exception: incr() propagates errors so the rate
limiter can apply its fail-open or fail-closed policy.

Usage:
    from services.redis_client import get_redis

    redis = await get_redis()
    await redis.set("metadjai:cache:abc", reply, ttl=3600)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import redis.asyncio as redis_async

logger = logging.getLogger(__name__)

SOCKET_TIMEOUT_SECONDS = 5.0
SCAN_BATCH = 100
RECONNECT_BACKOFF_SECONDS = 30.0

T = TypeVar("T")


@dataclass
class RedisManager:
    """Connection state plus guarded key-value and counter calls."""

    url: str = ""
    enabled: bool = True
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    _client: Any = field(default=None, repr=False)
    _available: bool = field(default=False, repr=False)
    _degraded: bool = field(default=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    _initialized: bool = field(default=False, repr=False)
    _degraded_at: float = field(default=0.0, repr=False)

    @property
    def available(self) -> bool:
        return self._available and not self._degraded

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def connected(self) -> bool:
        """A client exists, so counters can be tried even while the cache tier is degraded."""
        return self._client is not None

    # =========================================================================
    # CONNECTION
    # =========================================================================

    def _mark(self, available: bool) -> None:
        self._available = available
        self._degraded = not available
        self._initialized = True
        if not available:
            self._degraded_at = self.clock()

    async def connect(self) -> bool:
        """Open the connection. False means the manager is running degraded."""
        if not self.enabled or not self.url:
            logger.info("No Redis URL configured, cache and rate limits stay in process memory")
            self._mark(False)
            return False

        async with self._lock:
            if self._initialized and self._available:
                return True
            try:
                self._client = redis_async.from_url(
                    self.url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=SOCKET_TIMEOUT_SECONDS,
                    socket_timeout=SOCKET_TIMEOUT_SECONDS,
                )
                await self._client.ping()
            except Exception as e:
                logger.warning(f"Redis unreachable at startup ({e}), using in-memory tier only")
                self._mark(False)
                return False
            self._mark(True)
            logger.info("Redis connected, distributed tier active")
            return True

    async def disconnect(self) -> None:
        async with self._lock:
            client, self._client = self._client, None
            self._available = False
            if client is None:
                return
            try:
                await client.aclose()
            except Exception as e:
                logger.warning(f"Error closing Redis connection: {e}")

    async def try_reconnect(self) -> bool:
        """Leave degraded mode if the store is reachable again."""
        if not self._degraded:
            return True
        logger.info("Retrying Redis connection")
        self._degraded = False
        self._initialized = False
        return await self.connect()

    async def health_check(self) -> Dict[str, Any]:
        """Status block reported by the health endpoints."""
        if self._degraded:
            return {"status": "degraded", "mode": "memory-only"}
        if self._client is None:
            return {"status": "disconnected", "mode": "none"}

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            await self._client.ping()
        except Exception as e:
            self._degrade(e)
            return {"status": "error", "mode": "memory-only", "error": str(e)}
        return {"status": "connected", "mode": "redis", "latency_ms": round((loop.time() - started) * 1000, 2)}

    def _degrade(self, error: Optional[Exception] = None) -> None:
        self._degraded_at = self.clock()
        if self._degraded:
            return
        logger.warning(f"Redis call failed, switching to in-memory tier: {error}")
        self._degraded = True
        self._available = False

    def _recover(self) -> None:
        if not self._degraded:
            return
        logger.info("Redis reachable again, distributed tier restored")
        self._degraded = False
        self._available = True

    def _retry_due(self) -> bool:
        return self.clock() - self._degraded_at >= RECONNECT_BACKOFF_SECONDS

    async def _guarded(
        self,
        op: str,
        key: str,
        call: Callable[[], Awaitable[T]],
        default: T,
        degrade: bool = True,
    ) -> T:
        """Run one store call, answering ``default`` when unavailable or failing.

        While degraded, calls are skipped until the backoff has passed; the
        first call after that goes through as a retry.
        """
        if self._client is None or (self._degraded and not self._retry_due()):
            return default
        try:
            value = await call()
        except Exception as e:
            logger.warning(f"Redis {op} failed for {key}: {e}")
            if degrade or self._degraded:
                self._degrade(e)
            return default
        self._recover()
        return value

    # =========================================================================
    # CACHE MIRROR
    # =========================================================================

    async def get(self, key: str) -> Optional[str]:
        return await self._guarded("GET", key, lambda: self._client.get(key), None)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Store a value, with expiry in seconds when ttl is given."""

        async def write() -> bool:
            if ttl:
                await self._client.setex(key, ttl, value)
            else:
                await self._client.set(key, value)
            return True

        return await self._guarded("SET", key, write, False)

    async def delete(self, key: str) -> bool:
        async def remove() -> bool:
            await self._client.delete(key)
            return True

        return await self._guarded("DEL", key, remove, False)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob pattern and return how many went."""
        removed = 0

        async def sweep() -> int:
            nonlocal removed
            async for key in self._client.scan_iter(match=pattern, count=SCAN_BATCH):
                removed += await self._client.delete(key)
            return removed

        await self._guarded("SCAN/DEL", pattern, sweep, 0)
        return removed

    # =========================================================================
    # RATE-LIMIT COUNTERS
    # =========================================================================

    async def incr(self, key: str) -> int:
        """Increment a window counter. Errors propagate to the caller."""
        if self._client is None:
            raise ConnectionError("Redis is not connected")
        count = await self._client.incr(key)
        self._recover()
        return count

    async def expire(self, key: str, ttl: int) -> bool:
        async def apply() -> bool:
            await self._client.expire(key, ttl)
            return True

        return await self._guarded("EXPIRE", key, apply, False, degrade=False)

    async def get_ttl(self, key: str) -> int:
        """Remaining lifetime of a key in seconds, -1 when unknown."""
        return await self._guarded("TTL", key, lambda: self._client.ttl(key), -1, degrade=False)


_redis_manager: Optional[RedisManager] = None
_init_lock = asyncio.Lock()


async def get_redis() -> RedisManager:
    """Process-wide manager, connected on first use."""
    global _redis_manager

    if _redis_manager is None:
        async with _init_lock:
            if _redis_manager is None:
                from config import runtime_config

                manager = RedisManager(url=runtime_config.redis_url, enabled=runtime_config.redis_enabled)
                await manager.connect()
                _redis_manager = manager

    return _redis_manager


async def close_redis() -> None:
    """Shutdown hook."""
    global _redis_manager
    if _redis_manager is not None:
        await _redis_manager.disconnect()
        _redis_manager = None
