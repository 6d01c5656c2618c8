"""
MetaDJai Router - chat turn and health endpoints.

POST /api/metadjai/chat    one chat turn (rate limited by RateLimitMiddleware)
GET  /api/metadjai/health  provider health, cache stats and rate-limit mode
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config import MAX_MESSAGE_CONTENT_LENGTH, MAX_MESSAGES_PER_REQUEST, runtime_config
from errors import ProviderUnavailableError, ValidationError
from routers.chat_orchestration import ChatOrchestrator
from services.circuit_breaker import get_circuit_breakers
from services.providers import ProviderSelector
from services.rate_limiter import CHAT_WINDOW, TRANSCRIBE_WINDOW, get_rate_limiter
from services.response_cache import get_response_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/metadjai")

UNAVAILABLE_MESSAGE = "AI service temporarily unavailable. Please try again."
TIMEOUT_MESSAGE = "AI request timed out. Please try again."


class ChatMessageIn(BaseModel):
    role: str = Field(..., max_length=20)
    content: str = Field(..., max_length=MAX_MESSAGE_CONTENT_LENGTH * 2)


class ChatRequest(BaseModel):
    messages: List[ChatMessageIn] = Field(..., min_length=1, max_length=MAX_MESSAGES_PER_REQUEST)
    mode: str = Field("chat", max_length=32)
    contextSignature: str = Field("", max_length=500)
    provider: Optional[str] = None


def get_orchestrator() -> ChatOrchestrator:
    return ChatOrchestrator()


@router.post("/chat")
async def chat(request: ChatRequest, orchestrator: ChatOrchestrator = Depends(get_orchestrator)):
    """Run one chat turn."""
    try:
        return await orchestrator.handle_turn(
            messages=[m.model_dump() for m in request.messages],
            mode=request.mode,
            context_signature=request.contextSignature,
            provider=request.provider,
        )
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": e.message})
    except ProviderUnavailableError as e:
        if e.is_timeout:
            return JSONResponse(status_code=504, content={"error": TIMEOUT_MESSAGE})
        logger.error(f"Chat turn failed: {e}")
        return JSONResponse(status_code=502, content={"error": UNAVAILABLE_MESSAGE})


@router.get("/health")
async def health() -> Dict[str, Any]:
    """Provider health, cache statistics and rate limiter mode."""
    selector = ProviderSelector(runtime_config)
    return {
        "status": "ok",
        "model": selector.get_model_info(),
        "providers": selector.get_provider_availability(),
        "circuits": get_circuit_breakers().get_provider_health(),
        "cache": get_response_cache().get_stats(),
        "rateLimit": {
            "chat": get_rate_limiter(CHAT_WINDOW).mode,
            "transcribe": get_rate_limiter(TRANSCRIBE_WINDOW).mode,
        },
    }
