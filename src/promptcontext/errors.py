from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_INPUT = "INVALID_INPUT"


class PromptContextError(Exception):
    """Raised by tool handlers and the assembler for caller-facing failures.

    Caught by server.py and serialised into the MCP error response. The
    assembler raises this only for requests that cannot be keyed; every
    enrichment failure degrades instead.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


class UpstreamError(Exception):
    """Base class for failures of an external enrichment source."""


class TransientUpstreamError(UpstreamError):
    """Timeouts, network errors, 5xx and 429 responses. Retryable."""


class PermanentUpstreamError(UpstreamError):
    """Bad request shape, auth failure, malformed payload. Never retried."""


class CircuitOpenError(UpstreamError):
    """Raised by CircuitBreaker when a call is short-circuited."""

    def __init__(self, endpoint: str) -> None:
        super().__init__(f"Circuit open for endpoint: {endpoint}")
        self.endpoint = endpoint


class StoreUnavailable(Exception):
    """The persistent cache tier failed. Callers treat this as a cache miss."""
