"""
Error taxonomy shared by the lifecycle engine, the drivers and the API.

Each error carries the HTTP status and machine-readable code the API layer
reports for it (see the exception handler in main.py).
"""

from __future__ import annotations

from fastapi import status


class ContentForgeError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ContentForgeError):
    """No record exists for the request id."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class GoneError(ContentForgeError):
    """The request (or the link pointing at it) has expired."""

    status_code = status.HTTP_410_GONE
    code = "gone"


class InvalidTransitionError(ContentForgeError):
    """The action is not legal in the request's current state."""

    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"

    def __init__(self, message: str, *, current: str | None = None, target: str | None = None) -> None:
        super().__init__(message)
        self.current = current
        self.target = target


class InputValidationError(ContentForgeError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class UpstreamError(ContentForgeError):
    """A collaborator (LLM, transcript source, ...) failed or replied with garbage."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "upstream_failure"


class FatalError(ContentForgeError):
    """An internal invariant was violated. Never recovered silently."""

    code = "fatal"
