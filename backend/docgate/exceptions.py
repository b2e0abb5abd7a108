"""
DocGate Backend - Exception Hierarchy
=====================================

What:  Typed failures raised by the admission stages, the router and the
       collaborators.
How:   Each class carries the HTTP status and the client-facing message it
       translates to. The error translator (middleware/error_handler.py)
       matches on the class, never on message text.

Exception Hierarchy:
    DocGateError (base)
    ├── OriginRejectedError     → 403 Forbidden
    ├── RateLimitedError        → 429 Too Many Requests
    ├── BodyTooLargeError       → 413 Payload Too Large
    ├── UploadRejectedError
    │   ├── InvalidFileTypeError → 400 Bad Request
    │   ├── FileTooLargeError    → 400 Bad Request
    │   └── InvalidUploadError   → 400 Bad Request
    ├── RouteNotFoundError      → 404 Not Found
    └── CollaboratorError       → 500 Internal Server Error
        └── CircuitBreakerOpenError
"""

from typing import Any, Dict, Optional

MIB = 1024 * 1024


def format_megabytes(size: int) -> str:
    """10485760 -> '10MB'; non-integral sizes keep their fraction."""
    return f"{size / MIB:g}MB"


class DocGateError(Exception):
    """
    Base exception for all gateway errors.

    Attributes:
        message:  Client-safe description (what ends up in the envelope)
        context:  Extra debug info, logged server-side only
    """

    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        return self.message


class OriginRejectedError(DocGateError):
    """A browser origin outside the Allowed-Origin Set."""

    status_code = 403

    def __init__(self, origin: str):
        super().__init__(message="Not allowed by CORS", context={"origin": origin})
        self.origin = origin


class RateLimitedError(DocGateError):
    """
    Client exhausted the budget of a route class for the current window.

    `retry_after` is whole seconds until the window rolls over and is sent
    back in the Retry-After header.
    """

    status_code = 429

    def __init__(self, route_class: str, retry_after: int, limit: int):
        super().__init__(
            message="Too many requests, please try again later.",
            context={"route_class": route_class, "retry_after": retry_after, "limit": limit},
        )
        self.route_class = route_class
        self.retry_after = retry_after
        self.limit = limit


class BodyTooLargeError(DocGateError):
    """JSON or form body above the configured ceiling."""

    status_code = 413

    def __init__(self, max_size: int, received: Optional[int] = None):
        super().__init__(
            message=f"Request body too large. Maximum size is {format_megabytes(max_size)}.",
            context={"max_size": max_size, "received": received},
        )
        self.max_size = max_size


class UploadRejectedError(DocGateError):
    """Base for multipart file-part rejections."""

    status_code = 400


class InvalidFileTypeError(UploadRejectedError):
    def __init__(self, media_type: str, filename: Optional[str] = None):
        super().__init__(
            message="Invalid file type. Only .txt, .md, .json, and .csv files are allowed.",
            context={"media_type": media_type, "filename": filename},
        )
        self.media_type = media_type


class FileTooLargeError(UploadRejectedError):
    def __init__(self, max_size: int, size: Optional[int] = None, filename: Optional[str] = None):
        super().__init__(
            message=f"File too large. Maximum size is {format_megabytes(max_size)}.",
            context={"max_size": max_size, "size": size, "filename": filename},
        )
        self.max_size = max_size
        self.size = size


class InvalidUploadError(UploadRejectedError):
    """Malformed multipart request: too many parts, unreadable form."""


class RouteNotFoundError(DocGateError):
    status_code = 404

    def __init__(self, method: str = "", path: str = ""):
        super().__init__(
            message="Endpoint not found",
            context={"method": method, "path": path},
        )


class CollaboratorError(DocGateError):
    """
    A collaborator failed (transport error, upstream 5xx, not configured).

    Always translated to the generic 500 envelope; `message` only surfaces
    as `details` in development.
    """

    status_code = 500

    def __init__(
        self,
        collaborator: str,
        message: str = "Collaborator request failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["collaborator"] = collaborator
        super().__init__(message=message, context=ctx)
        self.collaborator = collaborator


class CircuitBreakerOpenError(CollaboratorError):
    def __init__(self, collaborator: str, recovery_time: int):
        super().__init__(
            collaborator,
            message=(
                f"{collaborator} service is temporarily unavailable after repeated failures; "
                f"retrying in about {recovery_time} seconds"
            ),
            context={"recovery_time": recovery_time},
        )
        self.recovery_time = recovery_time
