"""
MetaDJai error codes.

The prefix names the failing component, so a code alone tells the health
and error payloads which layer gave way.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Codes carried by MetaDJaiError subclasses and error responses."""

    # Tool wrapper (never escapes as an HTTP error)
    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
    TOOL_TIMEOUT = "TOOL_TIMEOUT"
    TOOL_INVALID_INPUT = "TOOL_INVALID_INPUT"
    TOOL_UNKNOWN = "TOOL_UNKNOWN"

    # Model providers
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    PROVIDER_MISSING_CREDENTIAL = "PROVIDER_MISSING_CREDENTIAL"
    PROVIDER_CIRCUIT_OPEN = "PROVIDER_CIRCUIT_OPEN"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"

    # Distributed tier
    CACHE_BACKEND_UNAVAILABLE = "CACHE_BACKEND_UNAVAILABLE"

    # Admission control
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Knowledge retrieval
    KNOWLEDGE_EMBEDDING_FAILED = "KNOWLEDGE_EMBEDDING_FAILED"

    # Request validation
    VALIDATION_MISSING_PARAM = "VALIDATION_MISSING_PARAM"
    VALIDATION_OUT_OF_RANGE = "VALIDATION_OUT_OF_RANGE"

    INTERNAL_UNEXPECTED = "INTERNAL_UNEXPECTED"
