"""Typed failures raised by the region access grant services."""

from __future__ import annotations

from uuid import UUID

from .status import GrantStatus


class GrantError(RuntimeError):
    """Base exception for region access grant failures."""

    code: str = "grant_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class GrantValidationError(GrantError):
    """Raised for bad input such as an empty reason or a past expiry."""

    code = "invalid_request"


class GrantConflictError(GrantError):
    """Raised when a grant or assignment would collide with existing access."""

    code = "conflict"


class GrantNotFoundError(GrantError):
    """Raised when a grant or assignment id is unknown."""

    code = "not_found"


class GrantAlreadyTerminalError(GrantError):
    """Raised when extending or revoking a grant that is already expired or revoked."""

    code = "already_terminal"

    def __init__(self, grant_id: UUID, status: GrantStatus) -> None:
        super().__init__(f"Grant {grant_id} is already {status.value}")
        self.grant_id = grant_id
        self.status = status


class GrantAuthorizationError(GrantError):
    """Raised when the acting user lacks the grantor privilege."""

    code = "forbidden"


class GrantStorageError(GrantError):
    """Raised when the backing store fails. Never retried internally."""

    code = "storage_unavailable"


__all__ = [
    "GrantAlreadyTerminalError",
    "GrantAuthorizationError",
    "GrantConflictError",
    "GrantError",
    "GrantNotFoundError",
    "GrantStorageError",
    "GrantValidationError",
]
