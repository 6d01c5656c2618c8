"""
MetaDJai exception hierarchy.

Each subclass fixes a default ErrorCode and whether the user can simply
retry. Keyword arguments that are not part of the signature land in
``context`` and travel with the error into logs and error payloads. The
subclasses that take an ``error_type`` pick a narrower code from it.
"""

import math
from typing import Any, Dict, Optional

from .codes import ErrorCode


def _present(**values: Any) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v}


class MetaDJaiError(Exception):
    """Root of every orchestration error."""

    code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        recoverable: Optional[bool] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.context = context or None
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable

    def __str__(self) -> str:
        return f"{self.message} - {self.details}" if self.details else self.message

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
        }


class ToolExecutionError(MetaDJaiError):
    """A tool failed. The registry turns this into a result payload, never an HTTP error."""

    code = ErrorCode.TOOL_EXECUTION_FAILED
    recoverable = True

    TYPE_CODES = {
        "timeout": ErrorCode.TOOL_TIMEOUT,
        "invalid_input": ErrorCode.TOOL_INVALID_INPUT,
        "unknown": ErrorCode.TOOL_UNKNOWN,
    }

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        tool_name: Optional[str] = None,
        error_type: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(
            message,
            details,
            code=self.TYPE_CODES.get(error_type, ErrorCode.TOOL_EXECUTION_FAILED),
            **context,
            **_present(tool_name=tool_name),
        )


class ProviderUnavailableError(MetaDJaiError):
    """No model provider could answer the turn."""

    code = ErrorCode.PROVIDER_UNAVAILABLE
    recoverable = True

    TYPE_CODES = {
        "missing_credential": ErrorCode.PROVIDER_MISSING_CREDENTIAL,
        "circuit_open": ErrorCode.PROVIDER_CIRCUIT_OPEN,
        "timeout": ErrorCode.PROVIDER_TIMEOUT,
    }

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        error_type: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(
            message,
            details,
            code=self.TYPE_CODES.get(error_type, ErrorCode.PROVIDER_UNAVAILABLE),
            **context,
            **_present(provider=provider, model=model),
        )

    @property
    def is_timeout(self) -> bool:
        return self.code == ErrorCode.PROVIDER_TIMEOUT


class CacheBackendError(MetaDJaiError):
    """Distributed cache unreachable; callers treat it as a miss."""

    code = ErrorCode.CACHE_BACKEND_UNAVAILABLE
    recoverable = True

    def __init__(self, message: str, details: Optional[str] = None, backend: Optional[str] = None, **context: Any):
        super().__init__(message, details, **context, **_present(backend=backend))


class RateLimitExceededError(MetaDJaiError):
    """A client used up its admission window."""

    code = ErrorCode.RATE_LIMIT_EXCEEDED
    recoverable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please wait before sending another message.",
        details: Optional[str] = None,
        retry_after_ms: int = 0,
        **context: Any,
    ):
        self.retry_after_ms = retry_after_ms
        super().__init__(message, details, retry_after_ms=retry_after_ms, **context)

    @property
    def retry_after(self) -> int:
        """Whole seconds for the Retry-After header."""
        return math.ceil(self.retry_after_ms / 1000)


class KnowledgeEmbeddingError(MetaDJaiError):
    """Embedding call failed; knowledge search falls back to keywords."""

    code = ErrorCode.KNOWLEDGE_EMBEDDING_FAILED
    recoverable = True

    def __init__(self, message: str, details: Optional[str] = None, model: Optional[str] = None, **context: Any):
        super().__init__(message, details, **context, **_present(model=model))


class ValidationError(MetaDJaiError):
    """Request rejected before any provider call.

    A missing parameter keeps the default code; a value that was received
    but falls outside ``expected`` is reported as out of range.
    """

    code = ErrorCode.VALIDATION_MISSING_PARAM
    recoverable = True

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        parameter: Optional[str] = None,
        expected: Optional[str] = None,
        received: Optional[str] = None,
        **context: Any,
    ):
        code = ErrorCode.VALIDATION_OUT_OF_RANGE if received else None
        super().__init__(
            message,
            details,
            code=code,
            **context,
            **_present(parameter=parameter, expected=expected, received=received),
        )
