"""
MCP Tool Loader (local development only).

Connects to a local MCP server over stdio and exposes its tools to the
model with an mcp_ prefix. Disabled in production and unless
AI_MCP_ENABLED=true, so no external process is spawned by default.

Discovery runs once and is cached. Each tool call opens a short-lived
session against the same server command.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from errors import ToolExecutionError

logger = logging.getLogger(__name__)

MCP_TOOL_PREFIX = "mcp_"
MCP_TIMEOUT = 20.0


def parse_args(raw: Optional[str]) -> List[str]:
    """JSON array, or whitespace-separated words."""
    if not raw or not raw.strip():
        return []
    trimmed = raw.strip()
    if trimmed.startswith("["):
        try:
            parsed = json.loads(trimmed)
            if isinstance(parsed, list):
                return [str(value) for value in parsed]
        except ValueError as e:
            logger.warning(f"Failed to parse AI_MCP_SERVER_ARGS as JSON, splitting on whitespace: {e}")
    return trimmed.split()


@dataclass
class ExternalTool:
    name: str
    remote_name: str
    description: str
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


class MCPToolLoader:
    """Discovers and calls tools on a local stdio MCP server."""

    def __init__(self, command: str, args: Optional[List[str]] = None, cwd: Optional[str] = None,
                 timeout: float = MCP_TIMEOUT):
        self.command = command
        self.args = args or []
        self.cwd = cwd or None
        self.timeout = timeout
        self._discovery: Optional[asyncio.Task] = None
        self._tools: Optional[List[ExternalTool]] = None

    @asynccontextmanager
    async def _session(self):
        params = StdioServerParameters(command=self.command, args=self.args, cwd=self.cwd)
        async with stdio_client(params) as (read, write):
            async with ClientSession(read, write) as session:
                await session.initialize()
                yield session

    async def _list_tools(self) -> List[ExternalTool]:
        async with self._session() as session:
            listed = await session.list_tools()
        tools = [
            ExternalTool(
                name=f"{MCP_TOOL_PREFIX}{tool.name}",
                remote_name=tool.name,
                description=tool.description or tool.name,
                input_schema=tool.inputSchema or {"type": "object", "properties": {}},
            )
            for tool in listed.tools
        ]
        logger.info(f"MCP tools discovered: {len(tools)} from '{self.command}'")
        return tools

    async def _discover(self) -> List[ExternalTool]:
        try:
            return await asyncio.wait_for(self._list_tools(), timeout=self.timeout)
        except Exception as e:
            logger.warning(f"Failed to initialize MCP tools: {e}")
            return []

    async def discover(self) -> List[ExternalTool]:
        """Tools exposed by the server. Discovery runs once per loader."""
        if self._tools is not None:
            return self._tools
        if self._discovery is None:
            self._discovery = asyncio.ensure_future(self._discover())
        self._tools = await asyncio.shield(self._discovery)
        return self._tools

    async def call_tool(self, tool: ExternalTool, arguments: Dict[str, Any]) -> Dict[str, Any]:
        async def run():
            async with self._session() as session:
                return await session.call_tool(tool.remote_name, arguments)

        result = await asyncio.wait_for(run(), timeout=self.timeout)
        texts = [getattr(part, "text", "") for part in result.content if getattr(part, "type", None) == "text"]
        if result.isError:
            raise ToolExecutionError(
                f"MCP tool {tool.remote_name} returned an error",
                details="\n".join(texts)[:500],
                tool_name=tool.name,
            )
        return {"content": texts}

    def close(self) -> None:
        if self._discovery is not None and not self._discovery.done():
            self._discovery.cancel()
        self._discovery = None
        self._tools = None


_loader: Optional[MCPToolLoader] = None


def get_mcp_loader(config=None) -> Optional[MCPToolLoader]:
    """Process loader, or None when local tools are disabled or unconfigured."""
    global _loader
    if config is None:
        from config import runtime_config as config

    if not config.mcp_active:
        return None
    if not config.mcp_server_command:
        logger.warning("AI_MCP_ENABLED is true but no AI_MCP_SERVER_COMMAND is set")
        return None
    if _loader is None:
        _loader = MCPToolLoader(
            command=config.mcp_server_command,
            args=parse_args(config.mcp_server_args),
            cwd=config.mcp_server_cwd,
        )
    return _loader


def close_mcp_tools() -> None:
    global _loader
    if _loader is not None:
        _loader.close()
    _loader = None
