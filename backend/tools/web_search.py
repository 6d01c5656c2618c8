"""
Web search - OpenAI native search through the Responses API web_search tool.

Only exposed when the active provider is openai and AI_WEB_SEARCH_ENABLED
is on. Results are the model's answer text plus cited sources.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

MAX_WEB_SOURCES = 5


class WebSearchInput(BaseModel):
    query: str = Field(..., min_length=1, max_length=500, description="Search query for current information")


def _extract_sources(response: Any) -> List[Dict[str, str]]:
    sources: List[Dict[str, str]] = []
    seen = set()
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for part in getattr(item, "content", None) or []:
            for annotation in getattr(part, "annotations", None) or []:
                if getattr(annotation, "type", None) != "url_citation":
                    continue
                url = getattr(annotation, "url", "")
                if not url or url in seen:
                    continue
                seen.add(url)
                sources.append({"title": getattr(annotation, "title", "") or url, "url": url})
    return sources[:MAX_WEB_SOURCES]


def _search_sync(client: OpenAI, model: str, query: str) -> Dict[str, Any]:
    response = client.responses.create(
        model=model,
        tools=[{"type": "web_search"}],
        input=query,
    )
    return {"answer": getattr(response, "output_text", "") or "", "sources": _extract_sources(response)}


async def web_search(query: str, client: Optional[OpenAI] = None, model: Optional[str] = None) -> Dict[str, Any]:
    """Tool executor for web_search."""
    from config import get_ai_request_timeout, runtime_config

    if client is None:
        client = OpenAI(
            api_key=runtime_config.openai_api_key or "missing-credential",
            timeout=get_ai_request_timeout("tools"),
            max_retries=0,
        )
    model = model or runtime_config.model_openai
    logger.info(f"Web search: {query[:80]}")
    return await asyncio.to_thread(_search_sync, client, model, query)
