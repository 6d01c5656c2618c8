"""
Tests for per-provider circuit breakers and provider error classification.
"""

import pytest

from services.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, is_provider_error


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestIsProviderError:
    """Provider error classification."""

    @pytest.mark.parametrize(
        "message",
        [
            "Error code: 503 - service unavailable",
            "Rate limit reached for requests",
            "Connection error.",
            "The model `gpt-9` does not exist or model not found",
            "upstream overloaded",
            "ECONNREFUSED 127.0.0.1:443",
        ],
    )
    def test_provider_errors(self, message):
        assert is_provider_error(RuntimeError(message)) is True

    def test_error_type_name_counts(self):
        class APITimeoutError(Exception):
            pass

        assert is_provider_error(APITimeoutError("request failed")) is True

    @pytest.mark.parametrize("message", ["Invalid JSON in tool arguments", "KeyError: 'choices'"])
    def test_non_provider_errors(self, message):
        assert is_provider_error(ValueError(message)) is False

    def test_none(self):
        assert is_provider_error(None) is False


class TestCircuitBreaker:
    """State transitions."""

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=3, clock=FakeClock())
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.is_open() is False
        breaker.record_failure()
        assert breaker.is_open() is True

    def test_half_open_after_recovery_timeout(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60, clock=clock)
        breaker.record_failure()
        assert breaker.is_open() is True

        clock.now += 60
        assert breaker.is_open() is False
        assert breaker.state == "half_open"

    def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=60, clock=clock)
        for _ in range(3):
            breaker.record_failure()
        clock.now += 61
        breaker.is_open()

        breaker.record_failure()
        assert breaker.state == "open"

    def test_success_closes(self):
        breaker = CircuitBreaker(failure_threshold=1, clock=FakeClock())
        breaker.record_failure()
        breaker.record_success()
        assert breaker.state == "closed"
        assert breaker.failures == 0
        assert breaker.total_failures == 1


class TestRegistry:
    """Per-provider isolation."""

    def test_providers_are_independent(self):
        registry = CircuitBreakerRegistry(clock=FakeClock())
        for _ in range(3):
            registry.record_failure("openai")
        assert registry.is_open("openai") is True
        assert registry.is_open("anthropic") is False

    def test_health_snapshot(self):
        registry = CircuitBreakerRegistry(clock=FakeClock())
        registry.record_failure("google")
        health = registry.get_provider_health()
        assert health["google"]["state"] == "closed"
        assert health["google"]["failures"] == 1

    def test_reset_all(self):
        registry = CircuitBreakerRegistry(clock=FakeClock())
        for _ in range(3):
            registry.record_failure("openai")
        registry.reset_all()
        assert registry.is_open("openai") is False
        assert registry.get_provider_health() == {"openai": {"state": "closed", "failures": 0, "totalFailures": 0, "lastFailure": None}}
