# core/errors.py
"""
Error taxonomy shared by every route.

Route handlers raise these; ``main.py`` renders them as ``{"error": message}``
with the matching status code. Nothing below the route layer should leak a
store-specific status or body to the HTTP caller.
"""
from fastapi import status


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(AppError):
    """No bearer token (or not a ``Bearer`` header)."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class InvalidToken(AppError):
    """Token present but failed verification."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid token"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class UpstreamError(AppError):
    """
    Document store or billing processor misbehaved.

    ``detail`` is for the server log only; the client sees ``message``.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Upstream service error"

    def __init__(self, message: str | None = None, detail: str | None = None):
        super().__init__(message)
        self.detail = detail


class SideEffectFailure(AppError):
    """A best-effort secondary write failed. Logged, never returned."""

    def __init__(self, message: str | None = None, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause
