"""
Knowledge embeddings - OpenAI embedding client used by the knowledge engine.

The OpenAI SDK client is synchronous; calls run in a worker thread so the
event loop stays free while a batch is embedded.
"""

import asyncio
import logging
from typing import List, Optional

from openai import OpenAI

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_TIMEOUT = 30.0


class OpenAIEmbedder:
    """Batch and single-text embeddings over the OpenAI embeddings API."""

    def __init__(self, api_key: str, model: str = EMBEDDING_MODEL, timeout: float = EMBEDDING_TIMEOUT):
        self.model = model
        self._client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def _embed_sync(self, texts: List[str]) -> List[List[float]]:
        response = self._client.embeddings.create(model=self.model, input=texts)
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._embed_sync, texts)

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_many([text])
        return vectors[0]


def create_embedder(api_key: Optional[str] = None) -> Optional[OpenAIEmbedder]:
    """Embedder for the configured OpenAI key, or None when no key is set."""
    if api_key is None:
        from config import runtime_config

        api_key = runtime_config.openai_api_key
    if not api_key:
        logger.info("No OpenAI key configured, knowledge search is keyword-only")
        return None
    return OpenAIEmbedder(api_key)
