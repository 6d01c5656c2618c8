"""
Tool Registry - declared tool set and the execution wrapper around every tool.

Each tool is a ToolDefinition tagged with a ToolKind:
- QUERY: read-only catalog and knowledge lookups
- PROPOSAL: approval-required action descriptions, never side effects
- PROVIDER_NATIVE: capabilities only one provider offers (web search)
- EXTERNAL: tools discovered from the local MCP process, prefixed mcp_

get_tools() assembles the per-request tool set for a provider. execute()
applies the same wrapping to every call:
1. Input validation against the tool's pydantic model
2. Timeout (route "tools")
3. Error isolation via handle_async_tool_errors
4. Output sanitization and size check

A tool failure yields a structured error payload; it never aborts the turn.
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from errors import ToolExecutionError, handle_async_tool_errors
from logging_config import log_tool
from tools.utils import sanitize_tool_output, validate_tool_result_size

logger = logging.getLogger(__name__)

ToolSet = Dict[str, "ToolDefinition"]


class ToolKind(Enum):
    QUERY = "query"
    PROPOSAL = "proposal"
    PROVIDER_NATIVE = "provider_native"
    EXTERNAL = "external"


@dataclass(frozen=True)
class ToolDefinition:
    """Immutable definition of a callable tool."""

    name: str
    description: str
    executor: Callable[..., Any]
    kind: ToolKind
    input_model: Optional[Type[BaseModel]] = None
    parameters: Optional[Dict[str, Any]] = None  # raw JSON schema when there is no input_model
    provider: Optional[str] = None  # only exposed for this provider
    requires_config: Optional[str] = None  # only exposed if this runtime_config flag is truthy

    @property
    def requires_approval(self) -> bool:
        return self.kind == ToolKind.PROPOSAL

    def parameters_schema(self) -> Dict[str, Any]:
        if self.input_model is not None:
            return self.input_model.model_json_schema()
        return self.parameters or {"type": "object", "properties": {}}

    def to_schema(self) -> Dict[str, Any]:
        """OpenAI-compatible function tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema(),
            },
        }


@dataclass
class ToolResult:
    """Result of one wrapped tool call."""

    name: str
    success: bool
    output: Any
    size_bytes: int
    truncated: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"output": self.output, "sizeBytes": self.size_bytes, "truncated": self.truncated}


def _byte_size(value: Any) -> int:
    return len(json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8"))


def _is_error_payload(output: Any) -> bool:
    return isinstance(output, dict) and "error" in output and "toolName" in output


class ToolRegistry:
    """
    Central registry of MetaDJai tools.

    Usage:
        register_all_tools()
        toolset = await ToolRegistry.get_tools("openai")
        schema = ToolRegistry.get_tools_schema(toolset)
        result = await ToolRegistry.execute("searchCatalog", {"query": "ambient"}, toolset)
    """

    _tools: Dict[str, ToolDefinition] = {}
    _initialized: bool = False

    @classmethod
    def register(cls, tool: ToolDefinition) -> None:
        cls._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name} ({tool.kind.value})")

    @classmethod
    def get_tool(cls, name: str) -> Optional[ToolDefinition]:
        return cls._tools.get(name)

    @classmethod
    def get_all_tools(cls) -> Dict[str, ToolDefinition]:
        return cls._tools.copy()

    @classmethod
    def get_tools_by_kind(cls, kind: ToolKind) -> List[ToolDefinition]:
        return [t for t in cls._tools.values() if t.kind == kind]

    @classmethod
    async def get_tools(cls, provider: str, web_search_available: Optional[bool] = None, config=None) -> ToolSet:
        """Tool set for one request.

        Provider-native tools need a matching provider, their config flag and
        web_search_available not False. External MCP tools are appended when
        the local tool process is enabled.
        """
        if config is None:
            from config import runtime_config as config

        register_all_tools()

        toolset: ToolSet = {}
        for tool in cls._tools.values():
            if tool.provider and tool.provider != provider:
                continue
            if tool.requires_config and not getattr(config, tool.requires_config, False):
                continue
            if tool.kind == ToolKind.PROVIDER_NATIVE and web_search_available is False:
                continue
            toolset[tool.name] = tool

        for external in await _external_tools(config):
            toolset[external.name] = external

        return toolset

    @classmethod
    def get_tools_schema(cls, toolset: Optional[ToolSet] = None) -> List[Dict[str, Any]]:
        tools = toolset if toolset is not None else cls._tools
        return [tool.to_schema() for tool in tools.values()]

    @classmethod
    async def execute(
        cls,
        name: str,
        args: Optional[Dict[str, Any]] = None,
        toolset: Optional[ToolSet] = None,
        timeout: Optional[float] = None,
    ) -> ToolResult:
        """Execute a tool by name inside the error-isolation and sanitization wrappers."""
        tool = (toolset if toolset is not None else cls._tools).get(name)
        if tool is None:
            error = ToolExecutionError(f"Unknown tool: {name}", tool_name=name, error_type="unknown")
            logger.warning(str(error))
            payload = {"error": error.message, "toolName": name}
            return ToolResult(name=name, success=False, output=payload, size_bytes=_byte_size(payload), error=error.message)

        if timeout is None:
            from config import get_ai_request_timeout

            timeout = get_ai_request_timeout("tools")

        log_tool(logger, name, "start", kind=tool.kind.value)

        @handle_async_tool_errors(name, logger)
        async def run() -> Any:
            kwargs = _validate_args(tool, args or {})
            try:
                return await asyncio.wait_for(_call(tool.executor, kwargs), timeout=timeout)
            except asyncio.TimeoutError:
                raise ToolExecutionError(
                    f"Tool timed out after {timeout}s", tool_name=name, error_type="timeout"
                ) from None

        output = await run()
        if _is_error_payload(output):
            log_tool(logger, name, "error")
            return ToolResult(name=name, success=False, output=output, size_bytes=_byte_size(output), error=output["error"])

        sanitized, truncated = validate_tool_result_size(sanitize_tool_output(output), name)
        log_tool(logger, name, "end", truncated=truncated)
        return ToolResult(name=name, success=True, output=sanitized, size_bytes=_byte_size(sanitized), truncated=truncated)

    @classmethod
    def clear(cls) -> None:
        """Clear all registered tools (for testing)."""
        cls._tools.clear()
        cls._initialized = False

    @classmethod
    def reinitialize(cls) -> int:
        """Clear and re-register all tools. Returns tool count."""
        cls.clear()
        register_all_tools()
        return len(cls._tools)


def _validate_args(tool: ToolDefinition, args: Dict[str, Any]) -> Dict[str, Any]:
    if tool.input_model is None:
        return dict(args)
    try:
        return tool.input_model.model_validate(args).model_dump()
    except PydanticValidationError as e:
        raise ToolExecutionError(
            f"Invalid input for {tool.name}",
            details=str(e)[:500],
            tool_name=tool.name,
            error_type="invalid_input",
        ) from e


async def _call(executor: Callable[..., Any], kwargs: Dict[str, Any]) -> Any:
    result = executor(**kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _external_tools(config) -> List[ToolDefinition]:
    from tools.mcp_loader import get_mcp_loader

    loader = get_mcp_loader(config)
    if loader is None:
        return []

    definitions = []
    for external in await loader.discover():
        def make_executor(ext=external):
            return lambda **arguments: loader.call_tool(ext, arguments)

        definitions.append(
            ToolDefinition(
                name=external.name,
                description=external.description,
                executor=make_executor(),
                kind=ToolKind.EXTERNAL,
                parameters=external.input_schema,
            )
        )
    return definitions


# =============================================================================
# REGISTRATION
# =============================================================================


def _register_query_tools() -> None:
    from tools.discovery import (
        CatalogSummaryInput,
        RecommendationsInput,
        SearchCatalogInput,
        get_catalog_summary,
        get_recommendations,
        search_catalog,
    )
    from tools.knowledge import ZuberantContextInput, get_zuberant_context

    ToolRegistry.register(
        ToolDefinition(
            name="searchCatalog",
            description=(
                "Search the MetaDJ music catalog for tracks and collections by title, description or genre. "
                "Tolerates typos. Use for any question about what music exists."
            ),
            executor=search_catalog,
            kind=ToolKind.QUERY,
            input_model=SearchCatalogInput,
        )
    )

    ToolRegistry.register(
        ToolDefinition(
            name="getCatalogSummary",
            description=(
                "Overview of every collection: track counts, sample tracks and primary genres. "
                "Use when the user asks what music is available in general."
            ),
            executor=get_catalog_summary,
            kind=ToolKind.QUERY,
            input_model=CatalogSummaryInput,
        )
    )

    ToolRegistry.register(
        ToolDefinition(
            name="getRecommendations",
            description=(
                "Recommend tracks by mood, energy level, similarity to a track, or within a collection."
            ),
            executor=get_recommendations,
            kind=ToolKind.QUERY,
            input_model=RecommendationsInput,
        )
    )

    ToolRegistry.register(
        ToolDefinition(
            name="getZuberantContext",
            description=(
                "Search the Zuberant knowledge base for information about MetaDJ (artist/DJ), Zuberant (studio), "
                "the broader ecosystem vision, philosophy, identity, and creative workflows. Use this to answer "
                "\"who is...\", \"what is...\", \"how do I...\", or to find creative protocols."
            ),
            executor=get_zuberant_context,
            kind=ToolKind.QUERY,
            input_model=ZuberantContextInput,
        )
    )


def _register_proposal_tools() -> None:
    from tools.proposals import (
        PlaybackInput,
        PlaylistInput,
        QueueSetInput,
        SurfaceInput,
        propose_playback,
        propose_playlist,
        propose_queue_set,
        propose_surface,
    )

    ToolRegistry.register(
        ToolDefinition(
            name="proposePlayback",
            description=(
                "Propose a media playback action. Use this to PLAY music, PAUSE, SKIP, or ADD TO QUEUE. "
                "If the user asks to \"play [song]\", use action=\"play\" and searchQuery=\"[song]\". "
                "The user will see a confirmation card before it happens."
            ),
            executor=propose_playback,
            kind=ToolKind.PROPOSAL,
            input_model=PlaybackInput,
        )
    )

    ToolRegistry.register(
        ToolDefinition(
            name="proposeQueueSet",
            description=(
                "Propose setting multiple tracks in the queue. Use when the user asks to queue a set or line up "
                "several tracks. The user will confirm before anything changes."
            ),
            executor=propose_queue_set,
            kind=ToolKind.PROPOSAL,
            input_model=QueueSetInput,
        )
    )

    ToolRegistry.register(
        ToolDefinition(
            name="proposePlaylist",
            description=(
                "Propose creating a named playlist, optionally queueing it. "
                "The user will confirm before it is created."
            ),
            executor=propose_playlist,
            kind=ToolKind.PROPOSAL,
            input_model=PlaylistInput,
        )
    )

    ToolRegistry.register(
        ToolDefinition(
            name="proposeSurface",
            description=(
                "Propose a UI navigation action like opening Wisdom, opening Queue, focusing Search, "
                "or opening the Music panel. The user will see a confirmation card before it happens."
            ),
            executor=propose_surface,
            kind=ToolKind.PROPOSAL,
            input_model=SurfaceInput,
        )
    )


def _register_provider_tools() -> None:
    from tools.web_search import WebSearchInput, web_search

    ToolRegistry.register(
        ToolDefinition(
            name="web_search",
            description=(
                "Search the web for current events, recent news, or anything not in the catalog "
                "or knowledge base."
            ),
            executor=web_search,
            kind=ToolKind.PROVIDER_NATIVE,
            input_model=WebSearchInput,
            provider="openai",
            requires_config="web_search_enabled",
        )
    )


def register_all_tools() -> None:
    """Register the static tool set once per process."""
    if ToolRegistry._initialized:
        return

    _register_query_tools()
    _register_proposal_tools()
    _register_provider_tools()

    ToolRegistry._initialized = True
    logger.info(f"Registered {len(ToolRegistry._tools)} tools")
