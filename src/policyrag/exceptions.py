"""Custom exception hierarchy for policyrag."""

from __future__ import annotations

__all__ = [
    "ChunkError",
    "ConfigError",
    "DimensionMismatchError",
    "EmbeddingError",
    "GenerationError",
    "InvalidRequestError",
    "LLMTimeoutError",
    "PipelineError",
    "PluginError",
    "PolicyRagError",
    "RateLimitError",
    "RetrievalExhaustedError",
    "ServiceUnavailableError",
    "StoreError",
    "TransientError",
    "ValidationError",
    "is_retryable",
]

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})


class PolicyRagError(Exception):
    """Base exception for all policyrag errors."""


class ConfigError(PolicyRagError):
    """Raised when configuration loading or validation fails."""


class ValidationError(PolicyRagError):
    """Raised on malformed input. Never retried."""


class DimensionMismatchError(ValidationError):
    """Raised when two vectors of different length are compared."""

    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"Vector dimensions differ: {left} != {right}")
        self.left = left
        self.right = right


class ChunkError(PolicyRagError):
    """Raised when chunking operations fail."""


class EmbeddingError(PolicyRagError):
    """Raised when embedding generation fails."""


class StoreError(PolicyRagError):
    """Raised on vector store transport or RPC failures (not on zero matches).

    ``status_code`` is the HTTP status for remote stores; ``transient``
    marks timeouts and dropped connections.
    """

    def __init__(
        self, message: str, status_code: int | None = None, *, transient: bool = False
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class GenerationError(PolicyRagError):
    """Raised when the language model fails in a way not otherwise classified."""


class TransientError(GenerationError):
    """A failure worth retrying: timeouts, rate limits, 5xx, dropped connections."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMTimeoutError(TransientError, TimeoutError):
    """Raised when the wait for an external call is abandoned."""

    def __init__(
        self, message: str = "Operation timed out", timeout_s: float | None = None
    ) -> None:
        super().__init__(message)
        self.timeout_s = timeout_s


class RateLimitError(TransientError):
    """Raised on HTTP 429 from an external API."""


class ServiceUnavailableError(TransientError):
    """Raised on 5xx responses or connection failures."""


class InvalidRequestError(GenerationError):
    """Raised on non-retryable client errors (4xx other than 408/429)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetrievalExhaustedError(PolicyRagError):
    """Raised when every retrieval strategy errored (not merely returned nothing)."""

    def __init__(self, errors: dict[str, str]) -> None:
        detail = "; ".join(f"{name}: {msg}" for name, msg in errors.items())
        super().__init__(f"All retrieval strategies failed ({detail})")
        self.errors = dict(errors)


class PipelineError(PolicyRagError):
    """Raised when ingestion pipeline orchestration fails."""


class PluginError(PolicyRagError):
    """Raised when provider registration or lookup fails."""


def is_retryable(exc: BaseException) -> bool:
    """Return True if *exc* is a transient failure worth another attempt."""
    if isinstance(exc, TransientError):
        return True
    if isinstance(exc, ValidationError | InvalidRequestError):
        return False
    if isinstance(exc, TimeoutError | ConnectionError) or getattr(exc, "transient", False):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and status in RETRYABLE_STATUS_CODES
