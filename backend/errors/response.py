"""
Standard error response builders.

Provides consistent response formats for tool results, HTTP bodies and
user-facing messages.
"""

import re
from typing import Any, Optional
from .codes import ErrorCode
from .exceptions import MetaDJaiError


def error_response(error: MetaDJaiError | Exception, tool: Optional[str] = None, include_context: bool = True) -> dict:
    """Build a standard error response dictionary.

    Args:
        error: The exception to convert to a response
        tool: Optional tool name for context
        include_context: Whether to include the context dict (disable for privacy)

    Returns:
        Standard error response dict with success=False

    Example:
        >>> from errors import ValidationError, error_response
        >>> err = ValidationError("Missing parameter", parameter="query")
        >>> error_response(err, tool="searchCatalog")
        {
            "success": False,
            "error": {
                "code": "VALIDATION_MISSING_PARAM",
                "message": "Missing parameter",
                "details": None,
                "tool": "searchCatalog",
                "recoverable": True,
                "context": {"parameter": "query"}
            }
        }
    """
    if isinstance(error, MetaDJaiError):
        return {
            "success": False,
            "error": {
                "code": error.code.value,
                "message": error.message,
                "details": error.details,
                "tool": tool,
                "recoverable": error.recoverable,
                "context": error.context if include_context else None,
            },
        }

    return {
        "success": False,
        "error": {
            "code": ErrorCode.INTERNAL_UNEXPECTED.value,
            "message": str(error),
            "details": None,
            "tool": tool,
            "recoverable": False,
            "context": None,
        },
    }


def tool_error_payload(tool_name: str) -> dict:
    """Structured result the model sees when a tool fails.

    Internal details stay in the logs.
    """
    return {
        "error": (
            f"The {tool_name} tool encountered an issue and couldn't complete. "
            "Please try again or rephrase your request."
        ),
        "toolName": tool_name,
    }


# Ordered: first matching pattern wins
_USER_MESSAGE_PATTERNS = [
    (re.compile(r"failed to fetch|network error|fetch failed"),
     "Can't reach MetaDJai right now. Check your connection and try again."),
    (re.compile(r"timeout|timed out"), "Request took too long. Let's try that again."),
    (re.compile(r"rate limit|too many requests|\b429\b"), "Taking a quick break. Try again in a moment."),
    (re.compile(r"openai|gpt|api error"), "MetaDJai hit a provider issue. Try again in a moment."),
    (re.compile(r"anthropic|claude"), "MetaDJai hit a provider issue. Try again in a moment."),
    (re.compile(r"google|gemini"), "MetaDJai hit a provider issue. Try again in a moment."),
    (re.compile(r"grok|\bxai\b"), "MetaDJai hit a provider issue. Try again in a moment."),
    (re.compile(r"\bstream|interrupted|\bconnection\b"),
     "Connection interrupted. Your message wasn't lost, just hit send again."),
    (re.compile(r"unauthorized|forbidden|\b40[13]\b"), "Session expired. Refresh the page to continue."),
    (re.compile(r"\b50[0234]\b|server error|internal error"), "Server issue. Give it another try in a moment."),
    (re.compile(r"invalid|validation|bad request|\b400\b"), "That didn't quite work. Mind trying again?"),
]

DEFAULT_USER_MESSAGE = "Something unexpected happened. Mind trying that again?"


def map_error_to_user_message(error: Any) -> str:
    """Translate a raw error into a short user-facing sentence."""
    if isinstance(error, BaseException):
        raw = str(error)
    elif isinstance(error, str):
        raw = error
    else:
        return DEFAULT_USER_MESSAGE

    lowered = raw.lower()
    for pattern, message in _USER_MESSAGE_PATTERNS:
        if pattern.search(lowered):
            return message
    return DEFAULT_USER_MESSAGE
