"""
Response Cache - content-addressed cache of model replies.

Keys are built from the normalized last user message plus an optional
context signature, hashed with djb2 and rendered in base36:

    ai:{mode}:{hash}

Two tiers:
- In-memory map, capped at max_size. At capacity the oldest 20% by
  insertion timestamp are evicted before inserting. Access order is not
  tracked, so this is not a true LRU.
- Optional distributed mirror (CacheBackend strategy). Writes mirror with a
  TTL in seconds; reads fall back to it on memory miss. Backend failures are
  logged and count as a miss.

Usage:
    from services.response_cache import get_response_cache, create_cache_key

    cache = get_response_cache()
    key = create_cache_key(messages, "adaptive")
    cached = await cache.get(key)
    if cached is None:
        ...
        await cache.set(key, reply, model_id)
"""

import logging
import math
import re
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from errors import CacheBackendError, log_error

logger = logging.getLogger(__name__)

# Messages shorter than this are greetings/noise and never cached
MIN_CACHE_MESSAGE_LENGTH = 10

# Replies shorter than this are treated as degenerate and never cached
MIN_CACHE_RESPONSE_LENGTH = 50

EVICTION_FRACTION = 0.2

_WHITESPACE = re.compile(r"\s+")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _now_ms() -> float:
    return time.time() * 1000


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def hash_string(value: str) -> str:
    """djb2-xor over UTF-16 code units, unsigned 32-bit, base36."""
    h = 5381
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        code = data[i] | (data[i + 1] << 8)
        h = (((h << 5) + h) & 0xFFFFFFFF) ^ code
    return _to_base36(h)


def _find_last_user_message(messages: List[Any]) -> str:
    for message in reversed(messages or []):
        if not isinstance(message, dict):
            continue
        if message.get("role") == "user" and isinstance(message.get("content"), str):
            return message["content"]
    return ""


def create_cache_key(messages: List[Any], mode: str, context_signature: str = "") -> str:
    """Build the cache key for a conversation.

    Returns an empty string (meaning "do not cache") when the last user
    message is shorter than MIN_CACHE_MESSAGE_LENGTH.
    """
    last_user = _find_last_user_message(messages)
    if len(last_user) < MIN_CACHE_MESSAGE_LENGTH:
        return ""

    normalized = _WHITESPACE.sub(" ", last_user.lower()).strip()
    signature = f"{normalized}|{context_signature}" if context_signature else normalized
    return f"ai:{mode}:{hash_string(signature)}"


@dataclass
class CacheEntry:
    response: str
    timestamp: float
    ttl_ms: int
    model: str
    hits: int = 0

    def is_expired(self, now_ms: float) -> bool:
        return now_ms >= self.timestamp + self.ttl_ms


@dataclass
class CacheMetrics:
    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0
    reset_at: float = 0.0


# =============================================================================
# DISTRIBUTED BACKENDS
# =============================================================================


class CacheBackend:
    """Distributed mirror strategy. Implementations must never raise."""

    name = "base"

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    async def delete_matching(self, substring: str) -> int:
        raise NotImplementedError


class NullCacheBackend(CacheBackend):
    """No distributed tier configured."""

    name = "none"

    async def get(self, key: str) -> Optional[str]:
        return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        return None

    async def delete_matching(self, substring: str) -> int:
        return 0


class RedisCacheBackend(CacheBackend):
    """Mirror over the shared RedisManager."""

    name = "redis"

    def __init__(self, redis_factory: Optional[Callable] = None):
        self._redis_factory = redis_factory
        self._redis = None

    def _degraded(self, action: str, error: Exception) -> None:
        failure = CacheBackendError(f"Cache backend {action} failed", details=str(error), backend=self.name)
        log_error(logger, failure, include_traceback=False, level=logging.WARNING)

    async def _get_redis(self):
        """Lazy load Redis manager."""
        if self._redis is None:
            if self._redis_factory is None:
                from .redis_client import get_redis

                self._redis_factory = get_redis
            self._redis = await self._redis_factory()
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        try:
            redis = await self._get_redis()
            return await redis.get(key)
        except Exception as e:
            self._degraded("read", e)
            return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            redis = await self._get_redis()
            await redis.set(key, value, ttl=ttl_seconds)
        except Exception as e:
            self._degraded("write", e)

    async def delete_matching(self, substring: str) -> int:
        try:
            redis = await self._get_redis()
            return await redis.delete_pattern(f"*{substring}*")
        except Exception as e:
            self._degraded("invalidation", e)
            return 0


# =============================================================================
# RESPONSE CACHE
# =============================================================================


class ResponseCache:
    """
    Two-tier response cache with cumulative metrics.

    Memory state is guarded by a threading lock; no await happens while it
    is held.
    """

    def __init__(
        self,
        enabled: bool = True,
        max_size: int = 100,
        ttl_ms: int = 30 * 60 * 1000,
        backend: Optional[CacheBackend] = None,
        clock: Callable[[], float] = _now_ms,
    ):
        self.enabled = enabled
        self.max_size = max_size
        self.ttl_ms = ttl_ms
        self.backend = backend or NullCacheBackend()
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = Lock()
        self.metrics = CacheMetrics(reset_at=clock())

    @property
    def size(self) -> int:
        return len(self._entries)

    def _memory_lookup(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            entry.hits += 1
            self.metrics.hits += 1
            return entry.response

    async def get(self, key: str) -> Optional[str]:
        """Return the cached reply or None. Records a hit or a miss."""
        if not key or not self.enabled:
            return None

        response = self._memory_lookup(key)
        if response is not None:
            logger.info(f"Cache hit: {key[:50]} (hit rate {self.get_hit_rate():.2f})")
            return response

        mirrored = await self.backend.get(key)
        if isinstance(mirrored, str) and mirrored:
            with self._lock:
                self.metrics.hits += 1
            logger.info(f"Cache hit ({self.backend.name}): {key[:50]}")
            return mirrored

        with self._lock:
            self.metrics.misses += 1
        return None

    def _evict_oldest(self) -> None:
        """Remove the oldest 20% by insertion timestamp (at least one)."""
        ordered = sorted(self._entries.items(), key=lambda item: item[1].timestamp)
        to_remove = max(1, math.floor(len(ordered) * EVICTION_FRACTION))
        for key, _ in ordered[:to_remove]:
            del self._entries[key]
        self.metrics.evictions += to_remove
        logger.debug(f"Cache evicted {to_remove} entries")

    async def set(self, key: str, response: str, model: str, ttl_ms: Optional[int] = None) -> None:
        """Store a reply. Short replies and empty keys are ignored."""
        effective_ttl = ttl_ms if ttl_ms is not None else self.ttl_ms
        if not key or not self.enabled:
            return
        if len(response) < MIN_CACHE_RESPONSE_LENGTH:
            return

        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_oldest()
            self._entries[key] = CacheEntry(
                response=response,
                timestamp=self._clock(),
                ttl_ms=effective_ttl,
                model=model,
            )
            self.metrics.writes += 1

        logger.info(f"Response cached: {key[:50]} ({len(response)} chars, model={model})")
        await self.backend.set(key, response, math.ceil(effective_ttl / 1000))

    def get_hit_rate(self) -> float:
        total = self.metrics.hits + self.metrics.misses
        if total == 0:
            return 0.0
        return self.metrics.hits / total

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "hits": self.metrics.hits,
            "misses": self.metrics.misses,
            "writes": self.metrics.writes,
            "evictions": self.metrics.evictions,
            "resetAt": self.metrics.reset_at,
            "hitRate": self.get_hit_rate(),
            "uptimeMs": self._clock() - self.metrics.reset_at,
        }

    def reset_metrics(self) -> None:
        with self._lock:
            self.metrics = CacheMetrics(reset_at=self._clock())

    def get_stats(self) -> Dict[str, Any]:
        """Observability snapshot including the ten most-hit entries."""
        now = self._clock()
        with self._lock:
            top = sorted(self._entries.items(), key=lambda item: item[1].hits, reverse=True)[:10]
            entries = [
                {
                    "key": key[:30] + "...",
                    "age": round((now - entry.timestamp) / 1000),
                    "hits": entry.hits,
                    "model": entry.model,
                }
                for key, entry in top
            ]
        return {
            "enabled": self.enabled,
            "backend": self.backend.name,
            "size": self.size,
            "maxSize": self.max_size,
            "ttlMs": self.ttl_ms,
            "hitRate": self.get_hit_rate(),
            "metrics": self.get_metrics(),
            "entries": entries,
        }

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cache cleared ({count} entries)")

    async def invalidate_pattern(self, pattern: str) -> int:
        """Remove every memory entry whose key contains pattern, and its mirror."""
        with self._lock:
            matching = [key for key in self._entries if pattern in key]
            for key in matching:
                del self._entries[key]
        await self.backend.delete_matching(pattern)
        if matching:
            logger.info(f"Cache invalidated {len(matching)} entries matching {pattern!r}")
        return len(matching)


# =============================================================================
# SINGLETON LIFECYCLE
# =============================================================================

_response_cache: Optional[ResponseCache] = None


def init_response_cache(config=None, backend: Optional[CacheBackend] = None) -> ResponseCache:
    """Construct the process-wide cache from configuration."""
    global _response_cache
    if config is None:
        from config import runtime_config as config

    if backend is None:
        backend = RedisCacheBackend() if config.redis_enabled else NullCacheBackend()

    _response_cache = ResponseCache(
        enabled=config.cache_enabled,
        max_size=config.cache_max_size,
        ttl_ms=config.cache_ttl_ms,
        backend=backend,
    )
    logger.info(
        f"Response cache initialized (enabled={config.cache_enabled}, "
        f"max={config.cache_max_size}, ttl={config.cache_ttl_ms}ms, backend={backend.name})"
    )
    return _response_cache


def get_response_cache() -> ResponseCache:
    if _response_cache is None:
        return init_response_cache()
    return _response_cache


def reset_response_cache() -> None:
    global _response_cache
    _response_cache = None
