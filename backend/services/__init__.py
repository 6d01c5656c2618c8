"""
MetaDJai Services - Shared infrastructure services.

- redis_client: Redis connection manager with health checks and degraded mode
- response_cache: Reply cache (in-memory tier with optional Redis tier)
- rate_limiter: Sliding-window admission per client
- providers: Provider/model selection, failover and cost estimation
- circuit_breaker: Per-provider failure tracking
- llm_client: OpenAI-compatible chat client
- message_sanitizer: History window and prompt-injection cleanup
"""

from .redis_client import RedisManager, get_redis

__all__ = ["RedisManager", "get_redis"]
