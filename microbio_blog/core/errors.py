"""Domain error taxonomy.

Services raise these; the HTTP layer turns them into the
``{success, message, error}`` envelope with the matching status code.
"""
from typing import Any, Optional

from fastapi import status


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, error: Optional[Any] = None):
        self.message = message or self.default_message
        # Safe, caller-facing detail only. Never put raw exception text here.
        self.error = error
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access forbidden"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class ServerError(AppError):
    pass


class MediaStorageError(AppError):
    """Raised by media storage backends when an upload or delete fails."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Media storage request failed"
