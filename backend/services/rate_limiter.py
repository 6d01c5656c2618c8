"""
Rate Limiter - per-client admission windows for costly operations.

Each protected operation has its own window (chat is looser than
transcription). A check is consumed on success: call it exactly once per
logical request.

Counting modes:
- in-memory: bounded LRU map of {count, reset_at, last_sent_at} per client
- distributed: Redis INCR + EXPIRE per client and window, when Redis is configured

When a counter call errors or no store is connected, fail-open limiters
fall back to in-memory counting and fail-closed limiters deny for 30
seconds. A degraded cache tier does not count as a store failure: counters
are still tried against the connected client.

Client identity prefers the session cookie; without one, a fingerprint of
request headers is used and the middleware issues a cookie so later
requests stabilize.
"""

import hashlib
import logging
import math
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

MIN_MESSAGE_INTERVAL_MS = 500
DEFAULT_MAX_ENTRIES = 10_000
FAIL_CLOSED_RETRY_MS = 30_000

SESSION_COOKIE_NAME = "metadjai-session"
SESSION_COOKIE_PATH = "/api/metadjai"

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please wait before sending another message."


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class RateLimitWindow:
    name: str
    window_ms: int
    max_requests: int
    min_interval_ms: int = MIN_MESSAGE_INTERVAL_MS

    @property
    def window_seconds(self) -> int:
        return math.ceil(self.window_ms / 1000)


CHAT_WINDOW = RateLimitWindow("chat", 5 * 60 * 1000, 20)
TRANSCRIBE_WINDOW = RateLimitWindow("transcribe", 5 * 60 * 1000, 5)


@dataclass
class RateLimitRecord:
    count: int
    reset_at: float
    last_sent_at: float = 0.0


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining_ms: int = 0
    limit: int = 0
    remaining: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"allowed": self.allowed}
        if not self.allowed:
            result["remainingMs"] = self.remaining_ms
        return result


@dataclass(frozen=True)
class ClientIdentity:
    id: str
    is_fingerprint: bool


class BoundedMap:
    """LRU-bounded mapping. Oldest-accessed keys are dropped past max_entries."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self._data: "OrderedDict[str, Any]" = OrderedDict()

    def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        if value is not None:
            self._data.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        self._data[key] = value
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def items(self):
        return list(self._data.items())

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class RateLimiter:
    """Admission control for one protected operation."""

    def __init__(
        self,
        window: RateLimitWindow,
        fail_closed: bool = False,
        redis_factory: Optional[Callable] = None,
        clock: Callable[[], float] = _now_ms,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.window = window
        self.fail_closed = fail_closed
        self._redis_factory = redis_factory
        self._clock = clock
        self._records = BoundedMap(max_entries)
        self._lock = Lock()
        self._last_cleanup = 0.0

    @property
    def mode(self) -> str:
        return "distributed" if self._redis_factory else "in-memory"

    def _cleanup_expired(self, now: float) -> None:
        if now - self._last_cleanup < self.window.window_ms:
            return
        for key, record in self._records.items():
            if record.reset_at <= now:
                self._records.delete(key)
        self._last_cleanup = now

    def _burst_rejection(self, record: RateLimitRecord, now: float, is_fingerprint: bool) -> Optional[RateLimitDecision]:
        # Fingerprints can collide across clients, so no burst check for them
        if is_fingerprint or record.last_sent_at <= 0:
            return None
        elapsed = now - record.last_sent_at
        if elapsed < self.window.min_interval_ms:
            return RateLimitDecision(
                allowed=False,
                remaining_ms=int(self.window.min_interval_ms - elapsed),
                limit=self.window.max_requests,
            )
        return None

    def _get_record(self, client_id: str, now: float) -> RateLimitRecord:
        record = self._records.get(client_id)
        if record is None or now >= record.reset_at:
            record = RateLimitRecord(count=0, reset_at=now + self.window.window_ms)
            self._records.set(client_id, record)
        return record

    def check_memory(self, client_id: str, is_fingerprint: bool) -> RateLimitDecision:
        """In-memory check. Consumes one request on success."""
        with self._lock:
            now = self._clock()
            self._cleanup_expired(now)
            record = self._get_record(client_id, now)

            rejection = self._burst_rejection(record, now, is_fingerprint)
            if rejection:
                return rejection

            if record.count >= self.window.max_requests:
                return RateLimitDecision(
                    allowed=False,
                    remaining_ms=int(max(0, record.reset_at - now)),
                    limit=self.window.max_requests,
                    remaining=0,
                )

            record.count += 1
            record.last_sent_at = now
            return RateLimitDecision(
                allowed=True,
                limit=self.window.max_requests,
                remaining=self.window.max_requests - record.count,
            )

    async def _check_distributed(self, redis, client_id: str, is_fingerprint: bool) -> RateLimitDecision:
        # Burst interval is tracked per process; the window count is shared
        with self._lock:
            now = self._clock()
            record = self._get_record(f"burst:{client_id}", now)
            rejection = self._burst_rejection(record, now, is_fingerprint)
            if rejection:
                return rejection
            record.last_sent_at = now

        key = f"metadjai:rl:{self.window.name}:{client_id}"
        count = await redis.incr(key)
        if count == 1:
            await redis.expire(key, self.window.window_seconds)

        if count > self.window.max_requests:
            ttl = await redis.get_ttl(key)
            remaining_ms = ttl * 1000 if ttl > 0 else self.window.window_ms
            logger.warning(f"Rate limit exceeded: {self.window.name} for {client_id} ({count}/{self.window.max_requests})")
            return RateLimitDecision(
                allowed=False, remaining_ms=remaining_ms, limit=self.window.max_requests, remaining=0
            )
        return RateLimitDecision(
            allowed=True, limit=self.window.max_requests, remaining=self.window.max_requests - count
        )

    async def check(self, client_id: str, is_fingerprint: bool = False) -> RateLimitDecision:
        """Check and consume one request for client_id."""
        if self._redis_factory is None:
            return self.check_memory(client_id, is_fingerprint)

        try:
            redis = await self._redis_factory()
            if not redis.connected:
                raise ConnectionError("distributed store not connected")
            return await self._check_distributed(redis, client_id, is_fingerprint)
        except Exception as e:
            if self.fail_closed:
                logger.error(f"Rate limit check failed (fail-closed) for {self.window.name}: {e}")
                return RateLimitDecision(
                    allowed=False, remaining_ms=FAIL_CLOSED_RETRY_MS, limit=self.window.max_requests
                )
            logger.warning(f"Distributed rate limit failed for {self.window.name}: {e}, using in-memory")
            return self.check_memory(client_id, is_fingerprint)

    def clear(self, client_id: Optional[str] = None) -> None:
        with self._lock:
            if client_id is None:
                self._records.clear()
            else:
                self._records.delete(client_id)


# =============================================================================
# CLIENT IDENTITY & RESPONSES
# =============================================================================


def generate_session_id() -> str:
    return f"session-{uuid.uuid4().hex}"


def _first_forwarded_ip(headers: Mapping[str, str], client_host: Optional[str]) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return client_host or "unknown"


def fingerprint_request(headers: Mapping[str, str], client_host: Optional[str] = None) -> str:
    parts = [
        _first_forwarded_ip(headers, client_host),
        headers.get("user-agent", ""),
        headers.get("accept-language", ""),
        headers.get("accept-encoding", ""),
    ]
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return f"fp-{digest[:32]}"


def resolve_client_identity(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    client_host: Optional[str] = None,
) -> ClientIdentity:
    """Session cookie if present, otherwise a header fingerprint."""
    session_id = cookies.get(SESSION_COOKIE_NAME)
    if session_id:
        return ClientIdentity(id=session_id, is_fingerprint=False)
    return ClientIdentity(id=fingerprint_request(headers, client_host), is_fingerprint=True)


def build_rate_limit_response(remaining_ms: int) -> Dict[str, Any]:
    return {"error": RATE_LIMIT_MESSAGE, "retryAfter": math.ceil(remaining_ms / 1000)}


def build_rate_limit_headers(decision: RateLimitDecision) -> Dict[str, str]:
    headers = {"X-RateLimit-Limit": str(decision.limit)}
    if decision.remaining is not None:
        headers["X-RateLimit-Remaining"] = str(decision.remaining)
    if not decision.allowed:
        headers["Retry-After"] = str(math.ceil(decision.remaining_ms / 1000))
    return headers


# =============================================================================
# SINGLETON LIFECYCLE
# =============================================================================

_limiters: Dict[str, RateLimiter] = {}
_limiters_lock = Lock()


def _build_limiter(window: RateLimitWindow, config) -> RateLimiter:
    redis_factory = None
    if config.redis_enabled:
        from services.redis_client import get_redis

        redis_factory = get_redis

    fail_closed = config.rate_limit_fail_closed
    if window is TRANSCRIBE_WINDOW:
        fail_closed = fail_closed or config.is_production

    return RateLimiter(window, fail_closed=fail_closed, redis_factory=redis_factory)


def get_rate_limiter(window: RateLimitWindow = CHAT_WINDOW, config=None) -> RateLimiter:
    if config is None:
        from config import runtime_config as config

    with _limiters_lock:
        limiter = _limiters.get(window.name)
        if limiter is None:
            limiter = _build_limiter(window, config)
            _limiters[window.name] = limiter
            logger.info(
                f"Rate limiter '{window.name}' ready ({limiter.mode}, "
                f"{window.max_requests}/{window.window_ms // 1000}s, fail_closed={limiter.fail_closed})"
            )
        return limiter


def reset_rate_limiters() -> None:
    with _limiters_lock:
        _limiters.clear()
