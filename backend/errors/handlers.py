"""
Error handling decorators and utilities.

handle_async_tool_errors is the error-isolation layer every tool executor
is wrapped with: nothing raised inside a tool escapes into the model turn.
"""

import logging
import time
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from .exceptions import MetaDJaiError
from .response import tool_error_payload

F = TypeVar("F", bound=Callable[..., Any])


def handle_async_tool_errors(tool_name: str, logger: Optional[logging.Logger] = None):
    """Async tool error-isolation decorator.

    Logs invoke/complete/fail with duration and converts any exception into
    the structured tool error payload the model sees.

    Args:
        tool_name: Name of the tool for log and payload context
        logger: Optional logger instance (defaults to tool-specific logger)
    """

    def decorator(func: F) -> F:
        log = logger or logging.getLogger(f"metadjai.{tool_name}")

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            log.debug(f"[{tool_name}] invoked")
            try:
                result = await func(*args, **kwargs)
            except MetaDJaiError as e:
                duration_ms = int((time.monotonic() - start) * 1000)
                log.error(f"[{tool_name}] {e.code.value}: {e.message} ({duration_ms}ms)", exc_info=True)
                return tool_error_payload(tool_name)
            except Exception as e:
                duration_ms = int((time.monotonic() - start) * 1000)
                log.error(f"[{tool_name}] Unexpected error: {e} ({duration_ms}ms)", exc_info=True)
                return tool_error_payload(tool_name)
            duration_ms = int((time.monotonic() - start) * 1000)
            log.debug(f"[{tool_name}] completed in {duration_ms}ms")
            return result

        return wrapper  # type: ignore

    return decorator


def log_error(
    logger: logging.Logger,
    error: Exception,
    context: Optional[str] = None,
    include_traceback: bool = True,
    level: int = logging.ERROR,
) -> None:
    """Log an error with consistent formatting.

    Example:
        >>> log_error(logger, err, context="Chat")
        # Logs: "[Chat] PROVIDER_TIMEOUT: Model response timed out"
    """
    if isinstance(error, MetaDJaiError):
        message = f"{error.code.value}: {error}"
    else:
        message = str(error)

    if context:
        message = f"[{context}] {message}"

    logger.log(level, message, exc_info=include_traceback)
