"""
MetaDJai Chat Orchestrator - one chat turn from sanitized messages to reply.

Flow per turn:
1. Sanitize messages (history window, role normalization, injection cleanup)
2. Response cache lookup (short messages are never cached)
3. Provider selection; an open primary circuit goes straight to the fallback
4. Tool loop: at most MAX_TOOL_STEPS model calls that request tools, then a
   final call without tools. Model calls share the chat route deadline; each
   tool gets the tools timeout capped at half of what remains, so a slow tool
   ends as a tool error instead of ending the turn
5. Circuit breaker bookkeeping and a single failover on provider errors
   (timeouts never fail over)
6. Cost estimate, and cache write-back for replies without proposals
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from openai import APITimeoutError

from config import MAX_MESSAGES_PER_REQUEST, MAX_TOOL_STEPS, get_ai_request_timeout
from errors import ProviderUnavailableError, ValidationError
from logging_config import log_proposal, log_provider, log_turn_in, log_turn_out
from services.circuit_breaker import CircuitBreakerRegistry, get_circuit_breakers, is_provider_error
from services.llm_client import LLMClient
from services.message_sanitizer import sanitize_messages
from services.providers import ModelHandle, ProviderSelector
from services.response_cache import ResponseCache, create_cache_key, get_response_cache
from tools.proposals import is_proposal
from tools.registry import ToolRegistry, ToolSet

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are MetaDJai, the creative companion inside MetaDJ Nexus.

Use the catalog tools to answer questions about music and the knowledge tool for questions
about MetaDJ, Zuberant and the ecosystem. You cannot change playback, the queue, playlists or
the interface directly: use the propose* tools, and the user confirms before anything happens.
Keep replies warm, concise and grounded in tool results."""

WEB_SEARCH_CITATION_NOTE = (
    "\n\n---\n*Note: Web search was used. Please cite sources with markdown links "
    "such as [Source](https://example.com).*"
)
_MARKDOWN_LINK = re.compile(r"\[.+?\]\(https?://.+?\)")

TOOL_BUDGET_SHARE = 0.5


def is_timeout_error(error: BaseException) -> bool:
    if isinstance(error, (asyncio.TimeoutError, APITimeoutError)):
        return True
    return isinstance(error, ProviderUnavailableError) and error.is_timeout


def validate_web_search_citations(text: str, tool_names: List[str]) -> str:
    """Append a citation reminder when web search ran but the reply has no links."""
    if "web_search" not in tool_names or _MARKDOWN_LINK.search(text):
        return text
    return text + WEB_SEARCH_CITATION_NOTE


@dataclass
class TurnResult:
    """Accumulated output of one provider attempt."""

    reply: str = ""
    model: str = ""
    provider: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    tool_usage: List[Dict[str, str]] = field(default_factory=list)
    tool_results: List[Dict[str, Any]] = field(default_factory=list)
    proposals: List[Dict[str, Any]] = field(default_factory=list)

    def add_usage(self, usage: Optional[Dict[str, int]]) -> None:
        usage = usage or {}
        self.prompt_tokens += usage.get("promptTokens", 0) or 0
        self.completion_tokens += usage.get("completionTokens", 0) or 0


class ChatOrchestrator:
    """Runs chat turns against the selected provider with tools, cache and failover.

    Collaborators are injected so tests can swap them; each defaults to the
    process singleton.
    """

    def __init__(
        self,
        selector: Optional[ProviderSelector] = None,
        cache: Optional[ResponseCache] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        client_factory: Callable[..., Any] = LLMClient,
        config=None,
    ):
        if config is None:
            from config import runtime_config as config
        self.config = config
        self.selector = selector or ProviderSelector(config)
        self.cache = cache or get_response_cache()
        self.breakers = breakers or get_circuit_breakers()
        self.client_factory = client_factory

    # =========================================================================
    # PROVIDER ATTEMPT
    # =========================================================================

    async def _get_toolset(self, handle: ModelHandle) -> ToolSet:
        web_search_available = handle.provider.value == "openai" and handle.available
        return await ToolRegistry.get_tools(
            handle.provider.value, web_search_available=web_search_available, config=self.config
        )

    def _tool_timeout(self, deadline: float) -> float:
        remaining = deadline - asyncio.get_running_loop().time()
        return max(0.0, min(get_ai_request_timeout("tools", self.config), remaining * TOOL_BUDGET_SHARE))

    async def _call_model(
        self, client: Any, messages: List[Dict], tools: Optional[List[Dict]], deadline: float
    ) -> Dict[str, Any]:
        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        start = time.time()
        log_provider(logger, "start", model=client.model)
        response = await asyncio.wait_for(
            asyncio.to_thread(client.chat, messages, tools, SYSTEM_PROMPT), timeout=remaining
        )
        log_provider(logger, "end", model=client.model, duration=time.time() - start)
        return response

    async def _run_tool_loop(self, handle: ModelHandle, messages: List[Dict[str, str]], deadline: float) -> TurnResult:
        client = self.client_factory(handle, timeout=get_ai_request_timeout("chat", self.config))
        toolset = await self._get_toolset(handle)
        tools_schema = ToolRegistry.get_tools_schema(toolset) or None

        result = TurnResult(model=handle.model_id, provider=handle.provider.value)
        conversation: List[Dict[str, Any]] = list(messages)

        for step in range(MAX_TOOL_STEPS + 1):
            # The call after the last tool step gets no tools so the model must answer
            offer_tools = tools_schema if step < MAX_TOOL_STEPS else None
            response = await self._call_model(client, conversation, offer_tools, deadline)
            result.add_usage(response.get("usage"))
            message = response.get("message", {})
            tool_calls = message.get("tool_calls") if offer_tools else None

            if not tool_calls:
                result.reply = message.get("content", "") or ""
                break

            conversation.append({"role": "assistant", "content": message.get("content", ""), "tool_calls": tool_calls})
            for i, call in enumerate(tool_calls):
                function = call.get("function", {})
                name = function.get("name", "")
                call_id = call.get("id") or f"call_{step}_{i}"
                tool_result = await ToolRegistry.execute(
                    name, function.get("arguments") or {}, toolset, timeout=self._tool_timeout(deadline)
                )

                result.tool_usage.append({"id": call_id, "name": name})
                result.tool_results.append({"name": name, "result": tool_result.output})
                if tool_result.success and is_proposal(tool_result.output):
                    result.proposals.append(tool_result.output)
                    log_proposal(logger, tool_result.output)
                conversation.append({"role": "tool", "tool_call_id": call_id, "content": tool_result.to_dict()})

        result.reply = validate_web_search_citations(result.reply, [t["name"] for t in result.tool_usage])
        return result

    async def _attempt(self, handle: ModelHandle, messages: List[Dict[str, str]]) -> TurnResult:
        """One provider attempt under the chat deadline, with breaker bookkeeping.

        Only model calls can exhaust the deadline, so a timeout here is charged
        to the provider.
        """
        timeout = get_ai_request_timeout("chat", self.config)
        deadline = asyncio.get_running_loop().time() + timeout
        provider = handle.provider.value
        try:
            result = await self._run_tool_loop(handle, messages, deadline)
        except asyncio.TimeoutError:
            self.breakers.record_failure(provider)
            raise ProviderUnavailableError(
                f"AI request timed out after {timeout}s",
                provider=provider,
                model=handle.model_id,
                error_type="timeout",
            ) from None
        except Exception as e:
            if is_provider_error(e):
                self.breakers.record_failure(provider)
            raise
        self.breakers.record_success(provider)
        return result

    async def _run_with_failover(self, messages: List[Dict[str, str]], override: Optional[str]) -> TurnResult:
        primary = self.selector.select_model(override)
        fallback = self.selector.select_fallback(override)
        failover_enabled = self.selector.is_failover_available(override)

        if failover_enabled and fallback and self.breakers.is_open(primary.provider.value):
            log_provider(
                logger, "failover", model=fallback.model_id, reason="circuit_open", primary=primary.provider.value
            )
            return await self._attempt_fallback(fallback, messages, primary_error=None)

        try:
            return await self._attempt(primary, messages)
        except Exception as primary_error:
            if is_timeout_error(primary_error):
                logger.error(f"MetaDJai request timed out: {primary_error}")
                if isinstance(primary_error, ProviderUnavailableError):
                    raise
                raise ProviderUnavailableError(
                    "AI request timed out", provider=primary.provider.value, error_type="timeout"
                ) from primary_error

            if failover_enabled and fallback and is_provider_error(primary_error):
                log_provider(
                    logger,
                    "failover",
                    model=fallback.model_id,
                    reason=type(primary_error).__name__,
                    primary=primary.provider.value,
                )
                return await self._attempt_fallback(fallback, messages, primary_error=primary_error)

            logger.error(f"MetaDJai request failed: {primary_error}", exc_info=True)
            raise ProviderUnavailableError(
                "AI service temporarily unavailable",
                details=str(primary_error),
                provider=primary.provider.value,
                model=primary.model_id,
            ) from primary_error

    async def _attempt_fallback(
        self, fallback: ModelHandle, messages: List[Dict[str, str]], primary_error: Optional[BaseException]
    ) -> TurnResult:
        try:
            return await self._attempt(fallback, messages)
        except Exception as fallback_error:
            logger.error(f"Fallback provider also failed: primary={primary_error} fallback={fallback_error}")
            raise ProviderUnavailableError(
                "AI service temporarily unavailable",
                details=str(fallback_error),
                provider=fallback.provider.value,
                model=fallback.model_id,
                error_type="timeout" if is_timeout_error(fallback_error) else None,
            ) from fallback_error

    # =========================================================================
    # TURN
    # =========================================================================

    async def handle_turn(
        self,
        messages: List[Dict[str, Any]],
        mode: str = "chat",
        context_signature: str = "",
        provider: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run one chat turn and return the response body."""
        if not messages:
            raise ValidationError("At least one message is required", parameter="messages")
        if len(messages) > MAX_MESSAGES_PER_REQUEST:
            raise ValidationError(
                f"Too many messages (max {MAX_MESSAGES_PER_REQUEST})",
                parameter="messages",
                expected=f"<= {MAX_MESSAGES_PER_REQUEST}",
                received=str(len(messages)),
            )

        sanitized = sanitize_messages(messages)
        last_user = next((m["content"] for m in reversed(sanitized) if m["role"] == "user"), "")
        log_turn_in(logger, last_user, mode=mode, provider=provider or self.config.ai_provider)

        cache_key = create_cache_key(sanitized, mode, context_signature)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            handle = self.selector.select_model(provider)
            log_turn_out(logger, handle.provider.value, handle.model_id, cached=True)
            return {
                "reply": cached,
                "model": handle.model_id,
                "provider": handle.provider.value,
                "usage": {"promptTokens": 0, "completionTokens": 0},
                "toolUsage": [],
                "toolResults": [],
                "proposals": [],
                "cached": True,
                "costUsd": 0.0,
            }

        result = await self._run_with_failover(sanitized, provider)
        cost = self.selector.estimate_cost(result.model, result.prompt_tokens, result.completion_tokens)

        if not result.proposals:
            await self.cache.set(cache_key, result.reply, result.model)

        log_turn_out(
            logger,
            result.provider,
            result.model,
            tools_used=[t["name"] for t in result.tool_usage],
            proposals=len(result.proposals),
            cost_usd=cost,
        )
        return {
            "reply": result.reply,
            "model": result.model,
            "provider": result.provider,
            "usage": {"promptTokens": result.prompt_tokens, "completionTokens": result.completion_tokens},
            "toolUsage": result.tool_usage,
            "toolResults": result.tool_results,
            "proposals": result.proposals,
            "cached": False,
            "costUsd": cost,
        }
