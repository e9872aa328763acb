"""Error codes and exceptions raised by the admin routes."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    SYNC_ALREADY_RUNNING = "SYNC_ALREADY_RUNNING"
    QUEUE_UNAVAILABLE = "QUEUE_UNAVAILABLE"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def retryable(self) -> bool:
        """Whether repeating the same request later can succeed."""
        return self in {
            ErrorCode.SYNC_ALREADY_RUNNING,
            ErrorCode.QUEUE_UNAVAILABLE,
            ErrorCode.DATABASE_ERROR,
        }


class APIException(Exception):
    """An error the handlers render as ``{"error": {...}}`` with ``status_code``."""

    status_code = 500

    def __init__(self, code: ErrorCode, message: str, **details: Any) -> None:
        super().__init__(message)
        self.error_code = code
        self.message = message
        self.details = details

    @property
    def retryable(self) -> bool:
        return self.error_code.retryable


class ResourceNotFoundError(APIException):
    """No sync state or job under the requested id."""

    status_code = 404

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            ErrorCode.NOT_FOUND,
            f"{resource_type} {resource_id} not found",
            resource_type=resource_type,
            resource_id=resource_id,
        )
