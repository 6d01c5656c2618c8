"""
Provider Selector - chooses a model provider and its failover counterpart.

Priority order: openai > google > anthropic > xai. "Available" means the
provider's credential is configured, not that it is healthy right now;
health is the circuit breaker's concern.

Selection never fails: with no credentials at all, select_model still
returns a handle for the nominal provider and the first call against it
fails instead.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from config import MAX_OUTPUT_TOKENS, TEMPERATURE, RuntimeConfig

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    OPENAI = "openai"
    GOOGLE = "google"
    ANTHROPIC = "anthropic"
    XAI = "xai"


PROVIDER_PRIORITY: List[Provider] = [Provider.OPENAI, Provider.GOOGLE, Provider.ANTHROPIC, Provider.XAI]

# OpenAI-compatible endpoints (None = SDK default)
PROVIDER_BASE_URLS: Dict[Provider, Optional[str]] = {
    Provider.OPENAI: None,
    Provider.GOOGLE: "https://generativelanguage.googleapis.com/v1beta/openai/",
    Provider.ANTHROPIC: "https://api.anthropic.com/v1/",
    Provider.XAI: "https://api.x.ai/v1",
}

# USD per 1M tokens
DEFAULT_COSTS: Dict[str, Dict[str, float]] = {
    "gpt-5.2-chat-latest": {"input": 1.75, "output": 14.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "claude-4-5-haiku-20251001": {"input": 0.80, "output": 4.00},
    "claude-haiku-4-5": {"input": 0.80, "output": 4.00},
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-opus-4-20250514": {"input": 15.00, "output": 75.00},
    "gemini-3-flash-preview": {"input": 0.10, "output": 0.40},
    "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
    "gemini-2.0-pro": {"input": 1.25, "output": 5.00},
    "grok-4-1-fast-non-reasoning": {"input": 2.00, "output": 10.00},
    "grok-3": {"input": 3.00, "output": 15.00},
    "default": {"input": 1.00, "output": 3.00},
}


@dataclass(frozen=True)
class ModelHandle:
    """A resolved provider/model pair ready for a client."""

    provider: Provider
    model_id: str
    api_key: str = ""
    max_output_tokens: int = MAX_OUTPUT_TOKENS
    temperature: float = TEMPERATURE

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    @property
    def base_url(self) -> Optional[str]:
        return PROVIDER_BASE_URLS[self.provider]


def parse_provider(value: Optional[str]) -> Optional[Provider]:
    if not value:
        return None
    try:
        return Provider(value.strip().lower())
    except ValueError:
        return None


def format_cost(usd: float) -> str:
    if usd < 0.0001:
        return "<$0.0001"
    if usd < 0.01:
        return f"${usd:.4f}"
    return f"${usd:.2f}"


class ProviderSelector:
    """Resolves model handles and costs from configuration."""

    def __init__(self, config: Optional[RuntimeConfig] = None):
        if config is None:
            from config import runtime_config

            config = runtime_config
        self.config = config
        self.costs = self._merge_costs(config.token_costs)

    @staticmethod
    def _merge_costs(overrides: Dict[str, Dict[str, float]]) -> Dict[str, Dict[str, float]]:
        merged = {model: dict(rate) for model, rate in DEFAULT_COSTS.items()}
        for model, rate in (overrides or {}).items():
            if not isinstance(rate, dict):
                logger.warning(f"Ignoring malformed cost override for {model}")
                continue
            merged[model] = {**merged.get(model, DEFAULT_COSTS["default"]), **rate}
        return merged

    def _api_key(self, provider: Provider) -> str:
        return getattr(self.config, f"{provider.value}_api_key", "") or ""

    def _model_id(self, provider: Provider) -> str:
        return getattr(self.config, f"model_{provider.value}")

    def is_available(self, provider: Provider) -> bool:
        return bool(self._api_key(provider))

    def get_provider_availability(self) -> Dict[str, bool]:
        return {p.value: self.is_available(p) for p in PROVIDER_PRIORITY}

    def handle_for(self, provider: Provider) -> ModelHandle:
        return ModelHandle(provider=provider, model_id=self._model_id(provider), api_key=self._api_key(provider))

    def primary_provider(self, override: Optional[str] = None) -> Provider:
        """Override > configured AI_PROVIDER > openai. Unknown names fall back to openai."""
        return parse_provider(override) or parse_provider(self.config.ai_provider) or Provider.OPENAI

    def select_model(self, override: Optional[str] = None) -> ModelHandle:
        handle = self.handle_for(self.primary_provider(override))
        if not handle.available:
            logger.warning(f"No credential configured for {handle.provider.value}; first call will fail")
        return handle

    def select_fallback(self, override: Optional[str] = None) -> Optional[ModelHandle]:
        """Highest-priority available provider other than the primary, or None."""
        primary = self.primary_provider(override)
        for provider in PROVIDER_PRIORITY:
            if provider != primary and self.is_available(provider):
                return self.handle_for(provider)
        return None

    def is_failover_available(self, override: Optional[str] = None) -> bool:
        return self.config.failover_enabled and self.select_fallback(override) is not None

    def estimate_cost(self, model_id: str, input_tokens: int, output_tokens: int) -> float:
        rate = self.costs.get(model_id, self.costs["default"])
        return (input_tokens * rate["input"] + output_tokens * rate["output"]) / 1_000_000

    def get_model_info(self, override: Optional[str] = None) -> Dict[str, object]:
        primary = self.select_model(override)
        fallback = self.select_fallback(override)
        return {
            "provider": primary.provider.value,
            "model": primary.model_id,
            "available": primary.available,
            "fallbackProvider": fallback.provider.value if fallback else None,
            "fallbackModel": fallback.model_id if fallback else None,
            "failoverEnabled": self.config.failover_enabled,
        }
