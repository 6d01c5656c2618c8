"""
Rate Limiting Middleware - per-client admission for MetaDJai endpoints.

Protected paths map to a RateLimitWindow:
- /api/metadjai/chat       -> chat window (20 per 5 min, 500ms min interval)
- /api/metadjai/transcribe -> transcribe window (5 per 5 min)

One check is consumed per request. Rejections return 429 with
Retry-After and X-RateLimit-* headers. Callers without a session cookie
are identified by fingerprint and issued a cookie on the response.

Usage:
    app.add_middleware(RateLimitMiddleware)
"""

import logging
from enum import Enum

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from errors import RateLimitExceededError, log_error
from services.rate_limiter import (
    CHAT_WINDOW,
    SESSION_COOKIE_NAME,
    SESSION_COOKIE_PATH,
    TRANSCRIBE_WINDOW,
    build_rate_limit_headers,
    build_rate_limit_response,
    generate_session_id,
    get_rate_limiter,
    resolve_client_identity,
)

logger = logging.getLogger(__name__)


class RateLimitType(Enum):
    """Protected operations and their windows."""
    CHAT = CHAT_WINDOW
    TRANSCRIBE = TRANSCRIBE_WINDOW


def _set_session_cookie(response: Response, window_seconds: int) -> None:
    from config import runtime_config

    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=generate_session_id(),
        max_age=window_seconds,
        path=SESSION_COOKIE_PATH,
        httponly=True,
        samesite="lax",
        secure=runtime_config.is_production,
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limiting middleware for MetaDJai REST endpoints."""

    RATE_LIMITED_PATHS = {
        "/api/metadjai/chat": RateLimitType.CHAT,
        "/api/metadjai/transcribe": RateLimitType.TRANSCRIBE,
    }

    async def dispatch(self, request: Request, call_next) -> Response:
        """Process request with rate limiting."""
        if request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        for limited_path, limit_type in self.RATE_LIMITED_PATHS.items():
            if not path.startswith(limited_path):
                continue

            window = limit_type.value
            identity = resolve_client_identity(
                request.headers,
                request.cookies,
                request.client.host if request.client else None,
            )
            limiter = get_rate_limiter(window)
            decision = await limiter.check(identity.id, identity.is_fingerprint)
            headers = build_rate_limit_headers(decision)

            if not decision.allowed:
                error = RateLimitExceededError(retry_after_ms=decision.remaining_ms, client=identity.id)
                log_error(logger, error, context=limit_type.name, include_traceback=False, level=logging.WARNING)
                response = JSONResponse(
                    status_code=429,
                    content=build_rate_limit_response(decision.remaining_ms),
                    headers=headers,
                )
            else:
                response = await call_next(request)
                for name, value in headers.items():
                    response.headers[name] = value

            if identity.is_fingerprint:
                _set_session_cookie(response, window.window_seconds)
            return response

        return await call_next(request)
