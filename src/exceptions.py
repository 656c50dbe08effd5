"""
Custom exceptions for the Route Packer application.

This module defines application-specific exceptions so the packing session
player can tell a fatal load failure apart from a transient sync failure,
and so the UI layer can show pickers a message they can act on.

Exception hierarchy:
    RoutePackerError (base)
    ├── NetworkError (backend unreachable, transport failure)
    ├── InvalidResponseError (malformed or non-JSON payload)
    ├── UnauthorizedError (HTTP 401, credentials expired)
    ├── ServiceError (any other non-2xx status)
    │   ├── InsufficientPermissionsError (403)
    │   ├── RunNotFoundError (404 on run-scoped calls)
    │   ├── PickEntryNotFoundError (404 on pick status calls)
    │   ├── PackingSessionNotFoundError (404 on packing session calls)
    │   └── ChocolateBoxNumberExistsError (409 on chocolate box create)
    ├── SessionLoadError (session cannot present a command sequence)
    └── ValidationError (malformed audio commands or payloads)
"""

from typing import Optional


class RoutePackerError(Exception):
    """
    Base exception for all Route Packer errors.

    All application-specific exceptions inherit from this class so callers
    can catch every application error with a single except clause:
        try:
            player.load()
        except RoutePackerError as e:
            logger.error(f"Application error: {e}")

    Note: This does NOT inherit from built-in errors like ValueError, IOError
    to keep application errors separate from programming errors.
    """

    def get_display_message(self) -> str:
        """Message suitable for showing to a picker."""
        return str(self)


class NetworkError(RoutePackerError):
    """
    Raised when the backend cannot be reached.

    Common scenarios on a route:
    - Warehouse Wi-Fi drops while walking between aisles
    - Backend is offline or restarting
    - Request timed out
    """

    def get_display_message(self) -> str:
        return "We couldn't connect to the server right now. Please try again."


class InvalidResponseError(RoutePackerError):
    """Raised when the backend answers with a payload the client cannot decode."""

    def get_display_message(self) -> str:
        return "We couldn't connect to the server right now. Please try again."


class UnauthorizedError(RoutePackerError):
    """Raised on HTTP 401; the access token is missing or expired."""

    def get_display_message(self) -> str:
        return "Your session has expired. Please sign in again."


class ServiceError(RoutePackerError):
    """
    Raised when the backend returns an unexpected non-2xx status.

    Attributes:
        status_code (int | None): HTTP status returned by the backend
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def get_display_message(self) -> str:
        if self.status_code is None:
            return str(self)
        return f"The request failed with an unexpected error (code {self.status_code})."


class InsufficientPermissionsError(ServiceError):
    """Raised on HTTP 403."""

    def __init__(self, message: str = "Insufficient permissions", status_code: Optional[int] = 403):
        super().__init__(message, status_code)

    def get_display_message(self) -> str:
        return "You don't have permission to perform this action."


class RunNotFoundError(ServiceError):
    """Raised when a run-scoped call answers 404."""

    def __init__(self, message: str = "Run not found", status_code: Optional[int] = 404):
        super().__init__(message, status_code)

    def get_display_message(self) -> str:
        return "We couldn't find details for that run. It may have been removed."


class PickEntryNotFoundError(ServiceError):
    """Raised when a pick status update answers 404."""

    def __init__(self, message: str = "Pick entry not found", status_code: Optional[int] = 404):
        super().__init__(message, status_code)

    def get_display_message(self) -> str:
        return "We couldn't find that pick entry. It may have already been removed."


class PackingSessionNotFoundError(ServiceError):
    """Raised when a packing session call (abandon, finish) answers 404."""

    def __init__(self, message: str = "Packing session not found", status_code: Optional[int] = 404):
        super().__init__(message, status_code)

    def get_display_message(self) -> str:
        return "We couldn't find that packing session for this run. Please try starting again."


class ChocolateBoxNumberExistsError(ServiceError):
    """Raised when creating a chocolate box whose number is already taken (409)."""

    def __init__(self, message: str = "Chocolate box number exists", status_code: Optional[int] = 409):
        super().__init__(message, status_code)

    def get_display_message(self) -> str:
        return "This chocolate box number already exists for this run."


class SessionLoadError(RoutePackerError):
    """
    Raised when a packing session cannot present a command sequence.

    Load failures are fatal to the session: the player records the message,
    best-effort abandons the remote session and stays in the ERROR phase
    until the picker starts again from scratch.

    Attributes:
        cause (Exception | None): Underlying backend error, if any
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause

    def get_display_message(self) -> str:
        if isinstance(self.cause, RoutePackerError):
            return self.cause.get_display_message()
        return str(self)


class ValidationError(RoutePackerError):
    """
    Raised when input validation fails.

    Example usage:
        if not command_id:
            raise ValidationError("Audio command is missing its id")
    """
    pass
