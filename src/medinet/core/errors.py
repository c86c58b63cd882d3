"""Domain exceptions raised by services and mapped to HTTP responses."""

from __future__ import annotations

from typing import Any

from fastapi import status


class ServiceError(Exception):
    """Base class for errors that carry a client-facing message."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors


class ValidationFailed(ServiceError):
    """Malformed input or an operation that is not allowed in the current state."""

    status_code = status.HTTP_400_BAD_REQUEST


class ForbiddenError(ServiceError):
    """Caller is not allowed to act on the target."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ServiceError):
    """Target does not exist or is hidden from the caller."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ServiceError):
    """Duplicate or conflicting state."""

    status_code = status.HTTP_409_CONFLICT
