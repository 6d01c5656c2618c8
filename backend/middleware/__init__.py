"""
MetaDJai Middleware - Request processing middleware.

- rate_limit: Per-client admission windows for chat and transcription
"""

from .rate_limit import RateLimitMiddleware, RateLimitType

__all__ = ["RateLimitMiddleware", "RateLimitType"]
