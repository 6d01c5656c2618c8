"""
MetaDJai Error Handling Module

Provides standardized error codes, exceptions, and response builders
for consistent error handling across the orchestration layer.

Usage:
    from errors import (
        ErrorCode,
        MetaDJaiError,
        ToolExecutionError,
        ProviderUnavailableError,
        error_response,
        tool_error_payload,
        handle_async_tool_errors,
    )

Example:
    from errors import handle_async_tool_errors, ToolExecutionError

    @handle_async_tool_errors("searchCatalog")
    async def search_catalog(query):
        if not query:
            raise ToolExecutionError("Empty query", tool_name="searchCatalog", error_type="invalid_input")
        ...
"""

from .codes import ErrorCode
from .exceptions import (
    MetaDJaiError,
    ToolExecutionError,
    ProviderUnavailableError,
    CacheBackendError,
    RateLimitExceededError,
    KnowledgeEmbeddingError,
    ValidationError,
)
from .response import (
    error_response,
    tool_error_payload,
    map_error_to_user_message,
)
from .handlers import (
    handle_async_tool_errors,
    log_error,
)

__all__ = [
    # Error codes
    "ErrorCode",
    # Exceptions
    "MetaDJaiError",
    "ToolExecutionError",
    "ProviderUnavailableError",
    "CacheBackendError",
    "RateLimitExceededError",
    "KnowledgeEmbeddingError",
    "ValidationError",
    # Response builders
    "error_response",
    "tool_error_payload",
    "map_error_to_user_message",
    # Decorators
    "handle_async_tool_errors",
    "log_error",
]
