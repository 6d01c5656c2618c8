"""
MetaDJai - AI assistant orchestration layer for MetaDJ Nexus
FastAPI backend: provider selection, tools, proposals, cache and rate limiting
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
import os
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from errors import MetaDJaiError, error_response, log_error, map_error_to_user_message
from routers import metadjai
from middleware.rate_limit import RateLimitMiddleware
from logging_config import setup_logging
from config import runtime_config

setup_logging()
logger = logging.getLogger(__name__)


@dataclass
class StartupHealth:
    """Tracks component health through startup phases."""
    phase: str = "initializing"
    redis: str = "pending"
    cache: str = "pending"
    knowledge: str = "pending"
    tools: str = "pending"
    startup_complete: bool = False


_startup_health = StartupHealth()

# Instance ID - changes on every startup
INSTANCE_ID = str(uuid.uuid4())

CORS_ORIGIN_REGEX = os.environ.get("CORS_ORIGIN_REGEX", r"^https?://(localhost|127\.0\.0\.1):3000$")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown events"""
    # Redis (optional; degraded mode keeps everything in-process)
    _startup_health.phase = "redis"
    try:
        from services.redis_client import get_redis

        redis = await get_redis()
        redis_health = await redis.health_check()
        _startup_health.redis = redis_health.get("status", "unknown")
        logger.info(f"Redis: {_startup_health.redis} ({redis_health.get('mode', 'n/a')})")
    except Exception as e:
        _startup_health.redis = "error"
        logger.warning(f"Redis unavailable, continuing in-memory: {e}")

    _startup_health.phase = "cache"
    try:
        from services.response_cache import init_response_cache

        cache = init_response_cache()
        _startup_health.cache = "enabled" if cache.enabled else "disabled"
    except Exception as e:
        _startup_health.cache = "error"
        logger.warning(f"Response cache init failed: {e}")

    _startup_health.phase = "knowledge"
    try:
        from tools.knowledge import init_knowledge_engine, warmup_knowledge_embeddings

        init_knowledge_engine()
        await warmup_knowledge_embeddings()
        _startup_health.knowledge = "ready"
    except Exception as e:
        _startup_health.knowledge = "error"
        logger.warning(f"Knowledge engine init failed, keyword search only: {e}")

    _startup_health.phase = "tools"
    try:
        from tools.registry import ToolRegistry, register_all_tools

        register_all_tools()
        _startup_health.tools = f"{len(ToolRegistry.get_all_tools())} registered"
    except Exception as e:
        _startup_health.tools = "error"
        logger.error(f"Tool registration failed: {e}")

    _startup_health.phase = "ready"
    _startup_health.startup_complete = True
    logger.info(
        f"MetaDJai ready (provider={runtime_config.ai_provider}, "
        f"failover={runtime_config.failover_enabled}, mcp={runtime_config.mcp_active})"
    )
    yield

    # Shutdown
    try:
        from tools.mcp_loader import close_mcp_tools
        close_mcp_tools()
    except Exception as e:
        logger.debug(f"MCP close error: {e}")

    try:
        from services.redis_client import close_redis
        await close_redis()
        logger.info("Redis connection closed")
    except Exception as e:
        logger.debug(f"Redis close error: {e}")

    logger.info("MetaDJai signing off")


app = FastAPI(
    title="MetaDJai",
    description="AI assistant orchestration for MetaDJ Nexus",
    version="1.0.0",
    lifespan=lifespan,
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


MAX_BODY_SIZE_API = 1 * 1024 * 1024  # 1MB


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests with bodies exceeding the size limit."""

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit():
            size = int(content_length)
            if size > MAX_BODY_SIZE_API:
                return JSONResponse(
                    status_code=413,
                    content={"detail": f"Request body too large ({size} bytes, limit {MAX_BODY_SIZE_API} bytes)"},
                )
        return await call_next(request)


app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(RequestSizeLimitMiddleware)

# Rate limiting (Redis-backed when REDIS_URL is set)
app.add_middleware(RateLimitMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API Routers
app.include_router(metadjai.router, tags=["metadjai"])


@app.exception_handler(MetaDJaiError)
async def metadjai_error_handler(request: Request, exc: MetaDJaiError):
    """Uncaught domain errors become the standard error body without context."""
    log_error(logger, exc, context=request.url.path, include_traceback=False)
    body = error_response(exc, include_context=False)
    body["userMessage"] = map_error_to_user_message(exc)
    return JSONResponse(status_code=500, content=body)


@app.get("/health")
async def health():
    """Health check - pings Redis and reports startup phases."""
    checks = {}

    try:
        from services.redis_client import get_redis
        redis = await get_redis()
        redis_health = await redis.health_check()
        status = redis_health.get("status")
        if status == "connected":
            checks["redis"] = "ok"
        elif status in ("disconnected", "degraded") and not runtime_config.redis_enabled:
            checks["redis"] = "disabled"
        else:
            checks["redis"] = "down"
    except Exception:
        checks["redis"] = "down"

    all_ok = all(v in ("ok", "disabled") for v in checks.values())
    return {
        "status": "healthy" if all_ok else "degraded",
        "service": "metadjai",
        "instance": INSTANCE_ID,
        "checks": checks,
        "startup_phase": _startup_health.phase,
        "startup_complete": _startup_health.startup_complete,
        "components": {
            "redis": _startup_health.redis,
            "cache": _startup_health.cache,
            "knowledge": _startup_health.knowledge,
            "tools": _startup_health.tools,
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
