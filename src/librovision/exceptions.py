"""Exception hierarchy shared by the cache, query and service layers."""

from typing import Any


class LibroVisionError(Exception):
    """Base class for all LibroVision errors."""


class RequestError(LibroVisionError):
    """A remote read or write failed.

    Attributes:
        status: HTTP status reported by the remote store, or None for
            transport failures (connection refused, timeouts)
        code: Store-specific error code (e.g. PostgREST ``PGRST116``)
    """

    def __init__(self, message: str, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    @property
    def is_client_error(self) -> bool:
        """True for 4xx-equivalent failures, which retrying cannot fix."""
        return self.status is not None and 400 <= self.status < 500

    @property
    def is_retryable(self) -> bool:
        return not self.is_client_error


class NotFoundError(RequestError):
    """The requested row does not exist."""

    def __init__(self, message: str = "Resource not found", code: str | None = None) -> None:
        super().__init__(message, status=404, code=code)


class NotAuthenticatedError(RequestError):
    """The operation needs a signed-in user."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message, status=401)


class QueryCancelledError(LibroVisionError):
    """The in-flight fetch this caller was waiting on was cancelled."""

    def __init__(self, key: Any) -> None:
        super().__init__(f"Query {key} was cancelled")
        self.key = key


class CacheStorageError(LibroVisionError):
    """A cache tier could not store or decode a value (quota, serialization)."""


class MutationError(LibroVisionError):
    """An optimistic mutation failed and its optimistic state was rolled back."""

    def __init__(self, mutation: str, cause: BaseException) -> None:
        super().__init__(f"{mutation} failed: {cause}")
        self.mutation = mutation
        self.cause = cause


class UpstreamSearchError(LibroVisionError):
    """The third-party book catalog returned an error."""

    def __init__(
        self,
        message: str,
        status: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details or {}

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500


class UpstreamAuthError(UpstreamSearchError):
    """The catalog rejected our credentials (missing, invalid or restricted key)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, status=401, details=details)


def is_retryable(error: BaseException) -> bool:
    """Classify an arbitrary exception for the retry policies.

    Client errors are the only non-retryable class; anything else (transport
    failures, 5xx, unexpected exceptions) may succeed on a later attempt.
    """
    if isinstance(error, RequestError):
        return error.is_retryable
    if isinstance(error, UpstreamSearchError):
        return not error.is_client_error
    return not isinstance(error, (QueryCancelledError, ValueError, TypeError))
