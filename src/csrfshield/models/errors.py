"""Exception hierarchy for CSRF token acquisition and protected calls.

Each failure mode gets its own type so callers can decide whether to
retry, prompt the user to sign in again, or surface a generic error.
"""

from __future__ import annotations

from typing import Any

SESSION_EXPIRED_MESSAGE = "Session expired. Please refresh the page and try again."


class CSRFError(Exception):
    """Base exception for all CSRF protection errors."""

    user_message = "Something went wrong securing your request. Please try again."


class CSRFConfigurationError(CSRFError):
    """Raised when the protection layer is used before it is set up."""

    pass


class UnauthenticatedError(CSRFError):
    """Raised when no bearer credential is available at acquisition time."""

    user_message = "Please sign in to continue."


class NetworkFailureError(CSRFError):
    """Raised when the token endpoint cannot be reached."""

    user_message = "Network problem while securing your request. Please try again."


class ServerRejectionError(CSRFError):
    """Raised when the token endpoint answers with a non-success status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
        if status_code in (401, 403):
            self.user_message = SESSION_EXPIRED_MESSAGE


class MalformedResponseError(CSRFError):
    """Raised when a success response does not carry a usable token."""

    pass


class CSRFRejectedError(CSRFError):
    """Raised when a protected call was refused because of its CSRF token.

    The server is the authoritative enforcer; this only translates its
    refusal into something a user can act on.
    """

    user_message = SESSION_EXPIRED_MESSAGE

    def __init__(self, message: str, response: Any = None):
        super().__init__(message)
        self.response = response
