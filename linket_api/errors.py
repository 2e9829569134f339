"""Domain error taxonomy.

Every failure a caller can act on is one of these classes. Route handlers let
them propagate; the exception handler in ``linket_api.main`` renders them as
RFC 9457 problem details with a short ``error`` message.
"""

from typing import Optional


class LinketError(Exception):
    """Base class for domain errors."""

    status_code: int = 500
    title: str = "Internal Server Error"
    slug: str = "internal-error"
    default_message: str = "Something went wrong."

    def __init__(self, message: Optional[str] = None, *, headers: Optional[dict[str, str]] = None):
        self.message = message or self.default_message
        self.headers = headers or {}
        super().__init__(self.message)


class InvalidInputError(LinketError):
    """Malformed URL target, out-of-range quantity, blank claim code."""

    status_code = 400
    title = "Bad Request"
    slug = "invalid-input"
    default_message = "Invalid input."


class UnauthorizedError(LinketError):
    """No authenticated session where one is required."""

    status_code = 401
    title = "Unauthorized"
    slug = "unauthorized"
    default_message = "Unauthorized"


class ForbiddenError(LinketError):
    """Caller does not own the resource or lacks admin membership."""

    status_code = 403
    title = "Forbidden"
    slug = "forbidden"
    default_message = "Forbidden"


class NotFoundError(LinketError):
    """Unknown token, claim code, batch or assignment."""

    status_code = 404
    title = "Not Found"
    slug = "not-found"
    default_message = "Not found."


class ConflictError(LinketError):
    """Tag already claimed or retired."""

    status_code = 409
    title = "Conflict"
    slug = "conflict"
    default_message = "This Linket has already been claimed."


class TooManyRequestsError(LinketError):
    """Sliding-window rate limit exceeded."""

    status_code = 429
    title = "Too Many Requests"
    slug = "too-many-requests"
    default_message = "Too many attempts. Please wait a minute and try again."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        retry_after: int = 60,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(message, headers={**(headers or {}), "Retry-After": str(retry_after)})
        self.retry_after = retry_after


class UnconfiguredError(LinketError):
    """Privileged backend credential missing."""

    status_code = 500
    title = "Service Not Configured"
    slug = "unconfigured"
    default_message = "This service is not configured."


class UpstreamError(LinketError):
    """The external data store or auth provider failed."""

    status_code = 500
    title = "Upstream Failure"
    slug = "upstream"
    default_message = "The data store is unavailable. Please try again."
