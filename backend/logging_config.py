"""
MetaDJai Logging - colored event lines for chat turns, tools and providers.

Every module logs through the standard library:

    logger = logging.getLogger(__name__)

setup_logging() installs one stdout handler on the root logger. Colors are
dropped when NO_COLOR is set or stdout is not a terminal; LOG_LEVEL
overrides the level passed in.

Turn events share a fixed prefix so a single turn can be followed in the log:

    >>> TURN      incoming user message (preview only)
    ~~> PROVIDER  model call start/end, failover
    >>> TOOL      tool start/end/error
    ??? PROPOSAL  approval-required action emitted
    <<< TURN      reply summary (provider, tools, proposals, cache, cost)
"""

import logging
import os
import sys
from typing import Any, Dict, List, Optional

PREVIEW_LENGTH = 80

ANSI = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "turn_in": "\033[96m",
    "turn_out": "\033[92m",
    "tool": "\033[93m",
    "provider": "\033[94m",
    "proposal": "\033[95m",
    "error": "\033[91m",
    "warn": "\033[33m",
    "debug": "\033[90m",
}

_use_color = True


def _paint(key: str, text: str) -> str:
    if not _use_color:
        return text
    return f"{ANSI[key]}{text}{ANSI['reset']}"


class ColorFormatter(logging.Formatter):
    """timestamp [LEVL] message, with the level colored and warnings tagged by module."""

    LEVEL_KEYS = {
        logging.DEBUG: "debug",
        logging.WARNING: "warn",
        logging.ERROR: "error",
        logging.CRITICAL: "error",
    }

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, "%H:%M:%S")
        level = record.levelname[:4]
        key = self.LEVEL_KEYS.get(record.levelno)
        if key:
            level = _paint(key, level)

        line = f"{_paint('dim', timestamp)} [{level}] {record.getMessage()}"
        if record.levelno >= logging.WARNING:
            line += f" {_paint('dim', '(' + record.name + ')')}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_level(level: int) -> int:
    name = os.environ.get("LOG_LEVEL", "").strip().upper()
    if not name:
        return level
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else level


def setup_logging(level: int = logging.INFO) -> None:
    """Install the MetaDJai handler on the root logger."""
    global _use_color
    _use_color = not os.environ.get("NO_COLOR") and sys.stdout.isatty()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColorFormatter())

    root = logging.getLogger()
    root.setLevel(_resolve_level(level))
    root.handlers = [handler]

    for noisy in ("httpx", "httpcore", "openai", "uvicorn.access", "mcp"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _preview(text: str) -> str:
    text = " ".join(text.split())
    if len(text) > PREVIEW_LENGTH:
        return text[:PREVIEW_LENGTH] + "..."
    return text


def _fields(context: Dict[str, Any]) -> str:
    return " ".join(f"{k}={v}" for k, v in context.items() if v is not None)


# =============================================================================
# TURN EVENTS
# =============================================================================


def log_turn_in(logger: logging.Logger, message: str, **context) -> None:
    """Incoming user message. Only a whitespace-collapsed preview is logged."""
    logger.info(f"{_paint('turn_in', '>>> TURN')} {_preview(message)} [{_fields(context)}]")


def log_turn_out(
    logger: logging.Logger,
    provider: str,
    model: str,
    tools_used: Optional[List[str]] = None,
    proposals: int = 0,
    cached: bool = False,
    cost_usd: float = 0.0,
) -> None:
    tools = ",".join(tools_used) if tools_used else "none"
    logger.info(
        f"{_paint('turn_out', '<<< TURN')} {provider}/{model} tools=[{tools}] "
        f"proposals={proposals} cached={cached} cost=${cost_usd:.6f}"
    )


def log_tool(logger: logging.Logger, tool_name: str, state: str, **context) -> None:
    """Tool lifecycle: state is 'start', 'end' or 'error'."""
    ctx = _fields(context)
    if state == "error":
        logger.error(f"{_paint('error', '!!! TOOL')} {tool_name} {ctx}".rstrip())
    elif state == "start":
        logger.info(f"{_paint('tool', '>>> TOOL')} {tool_name} {ctx}".rstrip())
    else:
        logger.info(f"{_paint('tool', '<<< TOOL')} {tool_name} {ctx}".rstrip())


def log_proposal(logger: logging.Logger, proposal: Dict[str, Any]) -> None:
    target = proposal.get("trackTitle") or proposal.get("name") or proposal.get("tab") or ""
    logger.info(
        f"{_paint('proposal', '??? PROPOSAL')} {proposal.get('type')}:{proposal.get('action')} {target}".rstrip()
    )


def log_provider(logger: logging.Logger, state: str, model: str = "", duration: float = 0, **context) -> None:
    """Provider call: state is 'start', 'end' or 'failover'."""
    label = _paint("provider", "~~> PROVIDER")
    if state == "start":
        logger.info(f"{label} calling {model}")
    elif state == "failover":
        logger.warning(f"{label} failover to {model} [{_fields(context)}]")
    else:
        logger.info(f"{label} {model} completed in {duration:.1f}s")
