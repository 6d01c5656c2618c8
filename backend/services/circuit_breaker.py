"""
Per-provider circuit breakers.

closed -> open after FAILURE_THRESHOLD consecutive provider errors.
open -> half_open once RECOVERY_TIMEOUT has passed (checked lazily).
half_open -> closed on success, back to open on failure.
"""

import logging
import re
import time
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

FAILURE_THRESHOLD = 3
RECOVERY_TIMEOUT = 60.0  # seconds

_PROVIDER_ERROR_PATTERNS = [
    re.compile(p)
    for p in (
        r"network",
        r"timeout",
        r"abort",
        r"503",
        r"502",
        r"404",
        r"429",
        r"rate.?limit",
        r"service.?unavailable",
        r"connection.?(refused|error|reset)",
        r"econnrefused",
        r"enotfound",
        r"etimedout",
        r"socket.?hang.?up",
        r"overloaded",
        r"capacity",
        r"model.+(not found|unknown|invalid|unsupported)",
        r"(not found|unknown|invalid) model",
    )
]


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def is_provider_error(error: Any) -> bool:
    """Whether an error is a provider-side failure worth failing over on."""
    if error is None:
        return False
    message = str(error).lower()
    name = type(error).__name__.lower() if isinstance(error, BaseException) else ""
    return any(p.search(message) or p.search(name) for p in _PROVIDER_ERROR_PATTERNS)


class CircuitBreaker:
    """Prevents hammering a provider that keeps failing."""

    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        recovery_timeout: float = RECOVERY_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failures = 0
        self.total_failures = 0
        self.threshold = failure_threshold
        self.timeout = recovery_timeout
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED
        self._clock = clock

    def is_open(self) -> bool:
        if self.state == CircuitState.OPEN:
            if self._clock() - (self.last_failure_time or 0.0) >= self.timeout:
                self.state = CircuitState.HALF_OPEN
                return False
            return True
        return False

    def record_success(self) -> None:
        self.failures = 0
        self.state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self.failures += 1
        self.total_failures += 1
        self.last_failure_time = self._clock()
        if self.state == CircuitState.HALF_OPEN or self.failures >= self.threshold:
            self.state = CircuitState.OPEN

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failures": self.failures,
            "totalFailures": self.total_failures,
            "lastFailure": self.last_failure_time,
        }


class CircuitBreakerRegistry:
    """One breaker per provider name."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    def _get(self, provider: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(provider)
            if breaker is None:
                breaker = CircuitBreaker(clock=self._clock)
                self._breakers[provider] = breaker
            return breaker

    def is_open(self, provider: str) -> bool:
        return self._get(provider).is_open()

    def record_success(self, provider: str) -> None:
        breaker = self._get(provider)
        if breaker.state != CircuitState.CLOSED:
            logger.info(f"Circuit breaker CLOSED for {provider}")
        breaker.record_success()

    def record_failure(self, provider: str) -> None:
        breaker = self._get(provider)
        was_open = breaker.state == CircuitState.OPEN
        breaker.record_failure()
        if breaker.state == CircuitState.OPEN and not was_open:
            logger.error(f"Circuit breaker OPEN for {provider} after {breaker.failures} failures")

    def get_provider_health(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: breaker.snapshot() for name, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        with self._lock:
            self._breakers.clear()


_circuit_breakers: Optional[CircuitBreakerRegistry] = None


def get_circuit_breakers() -> CircuitBreakerRegistry:
    global _circuit_breakers
    if _circuit_breakers is None:
        _circuit_breakers = CircuitBreakerRegistry()
    return _circuit_breakers


def reset_circuit_breakers() -> None:
    global _circuit_breakers
    _circuit_breakers = None
