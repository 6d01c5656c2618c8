"""
Runtime Configuration for the MetaDJai orchestration layer.

Provides a singleton RuntimeConfig class populated from environment variables,
with runtime adjustment via update() (used by tests and the health router).

Usage:
    from config import runtime_config
    timeout = runtime_config.get_ai_request_timeout("chat")
    runtime_config.update(cache_enabled=True, cache_max_size=50)
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).parent

# Generation settings shared by every provider
MAX_OUTPUT_TOKENS = 2048
TEMPERATURE = 0.7

# Multi-step tool loop ceiling per chat turn
MAX_TOOL_STEPS = 3

# Request shaping
MAX_MESSAGES_PER_REQUEST = 50
MAX_HISTORY_MESSAGES = 12
MAX_MESSAGE_CONTENT_LENGTH = 8000

# Response cache bounds
DEFAULT_CACHE_TTL_MS = 30 * 60 * 1000
MIN_CACHE_TTL_MS = 60 * 1000
MAX_CACHE_TTL_MS = 24 * 60 * 60 * 1000
DEFAULT_CACHE_MAX_SIZE = 100
MIN_CACHE_MAX_SIZE = 10
MAX_CACHE_MAX_SIZE = 1000

# Route-specific request timeouts (ms)
ROUTE_TIMEOUTS_MS = {
    "stream": 90_000,
    "chat": 30_000,
    "transcribe": 45_000,
    "tools": 90_000,
}
DEFAULT_TIMEOUT_MS = 30_000

SENSITIVE_FIELDS = {"openai_api_key", "anthropic_api_key", "google_api_key", "xai_api_key", "redis_url"}


def _first_env(*keys: str, default: str) -> str:
    """Return the first non-empty environment value from keys, else default."""
    for key in keys:
        value = os.environ.get(key, "").strip()
        if value:
            return value
    return default


def _env_flag(key: str, default: bool) -> bool:
    value = os.environ.get(key, "").strip().lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "on")


def _bounded_int_env(key: str, default: int, minimum: int, maximum: int) -> int:
    """Parse an integer env var, falling back to default when missing or out of bounds."""
    raw = os.environ.get(key, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {key}={raw!r}, using default {default}")
        return default
    if value < minimum or value > maximum:
        logger.warning(f"{key}={value} outside [{minimum}, {maximum}], using default {default}")
        return default
    return value


def _cache_enabled_default() -> bool:
    """Explicit AI_CACHE_ENABLED wins; otherwise the cache is on only in production."""
    raw = os.environ.get("AI_CACHE_ENABLED", "").strip().lower()
    if raw in ("false", "0"):
        return False
    if raw in ("true", "1"):
        return True
    return _first_env("APP_ENV", "NODE_ENV", default="development") == "production"


def _parse_token_costs() -> Dict[str, Dict[str, float]]:
    raw = os.environ.get("AI_TOKEN_COSTS", "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid AI_TOKEN_COSTS JSON, using defaults: {e}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning("AI_TOKEN_COSTS must be a JSON object, using defaults")
        return {}
    return parsed


@dataclass
class RuntimeConfig:
    """
    Singleton configuration for the orchestration layer.

    All values default from environment variables and can be changed at
    runtime via update().
    """

    # Environment
    app_env: str = field(default_factory=lambda: _first_env("APP_ENV", "NODE_ENV", default="development"))

    # Provider selection
    ai_provider: str = field(default_factory=lambda: os.environ.get("AI_PROVIDER", "openai").strip().lower())
    failover_enabled: bool = field(default_factory=lambda: _env_flag("AI_FAILOVER_ENABLED", True))

    # Model ids per provider
    model_openai: str = field(default_factory=lambda: _first_env("PRIMARY_AI_MODEL", default="gpt-5.2-chat-latest"))
    model_anthropic: str = field(default_factory=lambda: _first_env("ANTHROPIC_AI_MODEL", default="claude-haiku-4-5"))
    model_google: str = field(default_factory=lambda: _first_env("GOOGLE_AI_MODEL", default="gemini-3-flash-preview"))
    model_xai: str = field(
        default_factory=lambda: _first_env("XAI_AI_MODEL", default="grok-4-1-fast-non-reasoning")
    )

    # Provider credentials
    openai_api_key: str = field(default_factory=lambda: os.environ.get("OPENAI_API_KEY", "").strip())
    anthropic_api_key: str = field(default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", "").strip())
    google_api_key: str = field(default_factory=lambda: os.environ.get("GOOGLE_API_KEY", "").strip())
    xai_api_key: str = field(default_factory=lambda: os.environ.get("XAI_API_KEY", "").strip())

    # Per-model cost overrides, merged over built-in rates
    token_costs: Dict[str, Dict[str, float]] = field(default_factory=_parse_token_costs)

    # Response cache
    cache_enabled: bool = field(default_factory=_cache_enabled_default)
    cache_ttl_ms: int = field(
        default_factory=lambda: _bounded_int_env(
            "AI_CACHE_TTL_MS", DEFAULT_CACHE_TTL_MS, MIN_CACHE_TTL_MS, MAX_CACHE_TTL_MS
        )
    )
    cache_max_size: int = field(
        default_factory=lambda: _bounded_int_env(
            "AI_CACHE_MAX_SIZE", DEFAULT_CACHE_MAX_SIZE, MIN_CACHE_MAX_SIZE, MAX_CACHE_MAX_SIZE
        )
    )

    # Distributed store (optional; empty URL disables it)
    redis_url: str = field(default_factory=lambda: os.environ.get("REDIS_URL", "").strip())

    # Rate limiting
    rate_limit_fail_closed: bool = field(default_factory=lambda: _env_flag("RATE_LIMIT_FAIL_CLOSED", False))

    # Local tool process (development only)
    mcp_enabled: bool = field(default_factory=lambda: _env_flag("AI_MCP_ENABLED", False))
    mcp_server_command: str = field(default_factory=lambda: os.environ.get("AI_MCP_SERVER_COMMAND", "").strip())
    mcp_server_args: str = field(default_factory=lambda: os.environ.get("AI_MCP_SERVER_ARGS", "").strip())
    mcp_server_cwd: str = field(default_factory=lambda: os.environ.get("AI_MCP_SERVER_CWD", "").strip())

    # Provider-native web search
    web_search_enabled: bool = field(default_factory=lambda: _env_flag("AI_WEB_SEARCH_ENABLED", True))

    # Static content collaborators
    knowledge_dir: str = field(
        default_factory=lambda: os.environ.get("KNOWLEDGE_DIR", str(BASE_DIR / "data" / "knowledge"))
    )
    embeddings_cache_path: str = field(
        default_factory=lambda: os.environ.get(
            "EMBEDDINGS_CACHE_PATH",
            str(BASE_DIR / "data" / "cache" / "knowledge-embeddings.json"),
        )
    )
    music_catalog_path: str = field(
        default_factory=lambda: os.environ.get(
            "MUSIC_CATALOG_PATH", str(BASE_DIR / "data" / "music" / "catalog.json")
        )
    )

    # Internal state
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)
    _update_count: int = field(default=0, repr=False, compare=False)

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def redis_enabled(self) -> bool:
        return bool(self.redis_url)

    @property
    def mcp_active(self) -> bool:
        """Local tool discovery never runs in production."""
        return self.mcp_enabled and not self.is_production

    def get_ai_request_timeout(self, route: str) -> float:
        """Timeout in seconds for a route.

        Priority: AI_TIMEOUT_{ROUTE} > AI_REQUEST_TIMEOUT_MS > route default > 30s.
        """
        for key in (f"AI_TIMEOUT_{route.upper()}", "AI_REQUEST_TIMEOUT_MS"):
            raw = os.environ.get(key, "").strip()
            if raw:
                try:
                    value = int(raw)
                    if value > 0:
                        return value / 1000
                except ValueError:
                    logger.warning(f"Invalid {key}={raw!r}, ignoring")
        return ROUTE_TIMEOUTS_MS.get(route, DEFAULT_TIMEOUT_MS) / 1000

    def update(self, **kwargs) -> Dict[str, Any]:
        """
        Update configuration values at runtime.

        Returns:
            Dict of changed values {key: {"old": x, "new": y}}
        """
        changes = {}
        with self._lock:
            for key, value in kwargs.items():
                if key.startswith("_") or not hasattr(self, key):
                    logger.warning(f"Unknown config key: {key}")
                    continue
                old_value = getattr(self, key)
                if old_value != value:
                    setattr(self, key, value)
                    changes[key] = {"old": old_value, "new": value}
                    if key not in SENSITIVE_FIELDS:
                        logger.info(f"Config updated: {key} = {value}")
            self._update_count += 1
        return changes

    def to_dict(self) -> Dict[str, Any]:
        """Export config as dict, masking credentials."""
        result = {}
        for field_info in fields(self):
            if field_info.name.startswith("_"):
                continue
            value = getattr(self, field_info.name)
            if field_info.name in SENSITIVE_FIELDS:
                value = "***" if value else ""
            result[field_info.name] = value
        return result

    def reset_to_defaults(self) -> Dict[str, Any]:
        """Reload every value from the environment."""
        defaults = RuntimeConfig()
        values = {f.name: getattr(defaults, f.name) for f in fields(self) if not f.name.startswith("_")}
        return self.update(**values)


# Singleton instance
runtime_config = RuntimeConfig()


def get_config() -> RuntimeConfig:
    """Get the singleton config instance."""
    return runtime_config


def get_ai_request_timeout(route: str, config: Optional[RuntimeConfig] = None) -> float:
    return (config or runtime_config).get_ai_request_timeout(route)
