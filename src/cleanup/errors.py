"""Error taxonomy shared by the collaborator clients, the service and the API.

The HTTP layer maps these to status codes:
- NotFoundError -> 404
- ConflictError -> 409
- everything else -> 500 with a generic message
"""

from __future__ import annotations


class CleanupError(Exception):
    """Base class for all cleanup errors."""

    pass


class NotFoundError(CleanupError):
    """Target resource is already absent at the collaborator."""

    pass


class ConflictError(CleanupError):
    """Operation conflicts with the current state (e.g. bulk delete already running)."""

    pass


class UpstreamError(CleanupError):
    """A collaborator call failed (network, auth or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResponseValidationError(CleanupError):
    """A collaborator returned a body that does not match the expected shape."""

    pass
