"""Error taxonomy for tool invocations.

Every error a caller can trigger derives from :class:`QdrantMCPError`. The
class attributes drive how the failure is reported: ``error_type`` is the
stable machine-readable code, ``http_status`` is used by the REST surface,
and ``retryable`` tells callers whether repeating the same call later can
succeed. None of these are retried by the server itself.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from .utils.redact import redact_url


class QdrantMCPError(Exception):
    """Base class for failures reported back to the tool caller."""

    error_type = "internal_error"
    http_status = 500
    retryable = False

    def __init__(
        self, message: str, *, available_options: Optional[Sequence[str]] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.available_options: Optional[List[str]] = (
            list(available_options) if available_options is not None else None
        )

    def to_dict(self) -> Dict[str, Any]:
        """Structured failure payload, same shape as the HTTP ErrorResponse."""
        return {
            "error_type": self.error_type,
            "detail": self.message,
            "available_options": self.available_options,
            "retryable": self.retryable,
        }


class UnknownClusterError(QdrantMCPError):
    """A cluster name that is not registered was referenced."""

    error_type = "unknown_cluster"
    http_status = 404

    def __init__(self, name: str, available: Sequence[str]) -> None:
        names = sorted(available)
        super().__init__(
            f"Unknown cluster '{name}'. Available clusters: {', '.join(names)}",
            available_options=names,
        )
        self.name = name


class InvalidUrlError(QdrantMCPError):
    error_type = "invalid_url"
    http_status = 400


class ConflictingClusterSelectorsError(QdrantMCPError):
    error_type = "conflicting_cluster_selectors"
    http_status = 400

    def __init__(self, cluster: str, cluster_url: str) -> None:
        super().__init__(
            f"Both cluster '{cluster}' and cluster_url "
            f"'{redact_url(cluster_url)}' were given; pass only one of them"
        )


class InvalidArgumentsError(QdrantMCPError):
    error_type = "invalid_arguments"
    http_status = 400


class UnknownToolError(QdrantMCPError):
    error_type = "unknown_tool"
    http_status = 404

    def __init__(self, name: str, available: Sequence[str]) -> None:
        super().__init__(f"Unknown tool '{name}'", available_options=available)


class RateLimitExceededError(QdrantMCPError):
    """Sliding window for a tool/cluster key is exhausted."""

    error_type = "rate_limited"
    http_status = 429
    retryable = True

    def __init__(self, key: str, max_requests: int, window_ms: int) -> None:
        super().__init__(
            f"Rate limit exceeded for '{key}'. "
            f"Max {max_requests} calls every {window_ms}ms."
        )
        self.key = key
        self.max_requests = max_requests
        self.window_ms = window_ms


class InvalidCursorError(QdrantMCPError):
    """Cursor could not be decoded; the scan must be restarted."""

    error_type = "invalid_cursor"
    http_status = 400


class UnsupportedCursorBackendError(InvalidCursorError):
    """Cursor points at a dynamic cluster and no cluster_url was supplied."""

    error_type = "unsupported_cursor_backend"


class BackendError(QdrantMCPError):
    """Qdrant answered with an error status; message is passed through."""

    error_type = "backend_error"
    http_status = 502

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class BackendUnavailableError(QdrantMCPError):
    """Qdrant could not be reached (connect failure or timeout)."""

    error_type = "backend_unavailable"
    http_status = 503
    retryable = True
