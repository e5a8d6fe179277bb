"""Exception hierarchy for the yoga admin backend.

Every error carries a human-readable message plus an optional ``details``
dict that the HTTP layer copies into the response body.
"""
from typing import Any


class YogaAdminError(Exception):
    """Base class for all domain errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(YogaAdminError):
    """Malformed or out-of-range input, raised before any store call."""

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        if field:
            details["field"] = field
        self.field = field
        super().__init__(message, details)


class NotFoundError(YogaAdminError):
    """The referenced record does not exist."""

    def __init__(self, entity: str, entity_id: int) -> None:
        super().__init__(f"{entity} not found: {entity_id}", {"entity": entity, "id": entity_id})


class ReferentialIntegrityError(YogaAdminError):
    """A write would break the course <-> schedule relationship."""


class DuplicateConflictError(YogaAdminError):
    """A new record collides with an existing one on its soft-unique key."""


class StorageError(YogaAdminError):
    """Local storage failure; fatal to the current operation."""


class RemoteUnavailableError(YogaAdminError):
    """The remote mirror could not be reached. Nothing was applied."""


class RemoteSyncError(YogaAdminError):
    """A remote batch failed to commit.

    ``step`` names the part of a multi-step flow that failed
    (e.g. ``"courses"`` or ``"schedules"``).
    """

    def __init__(self, message: str, step: str | None = None, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        if step:
            details["step"] = step
        self.step = step
        super().__init__(message, details)


def friendly_remote_message(error: Exception, status: int | None = None) -> str:
    """Translate a transport failure into something an admin can act on.

    ``status`` is the HTTP status when there is one; otherwise only the
    status names in the error text are recognised.
    """
    message = str(error) if error else ""
    if status == 403 or "PERMISSION_DENIED" in message:
        return "Permission denied. Check the remote store's access rules."
    if status == 401 or "UNAUTHENTICATED" in message:
        return "Authentication required. Set MIRROR_TOKEN."
    if status == 503 or "UNAVAILABLE" in message:
        return "Remote store unavailable. Please try again later."
    return message or "Unknown error occurred"
