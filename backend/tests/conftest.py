"""
Shared pytest fixtures for the MetaDJai orchestration tests.

Every test starts from a clean environment (no provider keys, no Redis)
and fresh process singletons.
"""

import hashlib
import re
from pathlib import Path
from typing import List

import pytest

from config import RuntimeConfig

BACKEND_DIR = Path(__file__).parent.parent
CATALOG_PATH = BACKEND_DIR / "data" / "music" / "catalog.json"
KNOWLEDGE_DIR = BACKEND_DIR / "data" / "knowledge"

ENV_KEYS = [
    "APP_ENV",
    "NODE_ENV",
    "AI_PROVIDER",
    "AI_FAILOVER_ENABLED",
    "PRIMARY_AI_MODEL",
    "ANTHROPIC_AI_MODEL",
    "GOOGLE_AI_MODEL",
    "XAI_AI_MODEL",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GOOGLE_API_KEY",
    "XAI_API_KEY",
    "AI_TOKEN_COSTS",
    "AI_CACHE_ENABLED",
    "AI_CACHE_TTL_MS",
    "AI_CACHE_MAX_SIZE",
    "REDIS_URL",
    "RATE_LIMIT_FAIL_CLOSED",
    "AI_MCP_ENABLED",
    "AI_MCP_SERVER_COMMAND",
    "AI_MCP_SERVER_ARGS",
    "AI_MCP_SERVER_CWD",
    "AI_WEB_SEARCH_ENABLED",
    "AI_REQUEST_TIMEOUT_MS",
    "AI_TIMEOUT_CHAT",
    "AI_TIMEOUT_TOOLS",
    "KNOWLEDGE_DIR",
    "EMBEDDINGS_CACHE_PATH",
    "MUSIC_CATALOG_PATH",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove every MetaDJai environment variable for the test."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Fresh caches, breakers, limiters, tools and corpus per test."""
    from services.circuit_breaker import reset_circuit_breakers
    from services.rate_limiter import reset_rate_limiters
    from services.response_cache import reset_response_cache
    from tools.catalog import set_catalog
    from tools.knowledge import reset_knowledge_engine
    from tools.mcp_loader import close_mcp_tools
    from tools.registry import ToolRegistry

    def reset():
        reset_response_cache()
        reset_circuit_breakers()
        reset_rate_limiters()
        reset_knowledge_engine()
        set_catalog(None)
        close_mcp_tools()
        ToolRegistry.clear()

    reset()
    yield
    reset()


@pytest.fixture
def make_config(tmp_path):
    """Factory for a RuntimeConfig isolated from the process singleton."""

    def factory(**overrides) -> RuntimeConfig:
        values = {
            "knowledge_dir": str(KNOWLEDGE_DIR),
            "embeddings_cache_path": str(tmp_path / "knowledge-embeddings.json"),
            "music_catalog_path": str(CATALOG_PATH),
        }
        values.update(overrides)
        return RuntimeConfig(**values)

    return factory


@pytest.fixture
def catalog():
    """The bundled music catalog, installed as the process catalog."""
    from tools.catalog import MusicCatalog, set_catalog

    loaded = MusicCatalog.load(CATALOG_PATH)
    set_catalog(loaded)
    return loaded


class FakeEmbedder:
    """Deterministic bag-of-words embedder that counts batch calls."""

    model = "fake-embedding"
    dimensions = 64

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.batch_calls = 0
        self.query_calls = 0

    def _vector(self, text: str) -> List[float]:
        vector = [0.0] * self.dimensions
        for word in re.findall(r"[a-z]+", text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dimensions
            vector[bucket] += 1.0
        return vector

    async def embed_many(self, texts):
        self.batch_calls += 1
        if self.fail:
            raise RuntimeError("embedding provider returned 503")
        return [self._vector(text) for text in texts]

    async def embed(self, text):
        self.query_calls += 1
        if self.fail:
            raise RuntimeError("embedding provider returned 503")
        return self._vector(text)


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()
