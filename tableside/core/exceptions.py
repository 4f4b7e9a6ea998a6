"""
Typed error taxonomy for session, cart and menu operations.

Every core operation raises one of these instead of returning a silent
failure; the HTTP layer maps each class to a status code.
"""

from typing import Optional


class TablesideError(Exception):
    """Base class for all domain errors."""

    code = "error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code, "detail": self.message}


class ValidationError(TablesideError):
    """Malformed or missing input, rejected before any store call."""

    code = "validation_error"
    status_code = 422


class SessionClosedError(TablesideError):
    """The session's current state forbids the attempted operation."""

    code = "session_closed"
    status_code = 409


class NotFoundError(TablesideError):
    """The referenced session or menu item no longer exists."""

    code = "not_found"
    status_code = 404


class SyncFailure(TablesideError):
    """The document store call itself failed (network, permission, contention)."""

    code = "sync_failure"
    status_code = 503


class AuthenticationError(TablesideError):
    """Missing or wrong chef credential."""

    code = "unauthorized"
    status_code = 401
