"""Error taxonomy shared by the ride, chat and auth services."""

from typing import Any, Dict, List, Optional


class RideHailError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500

    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        code: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.errors = errors
        self.code = code
        self.headers = headers

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        if self.code:
            body["code"] = self.code
        return body


class ValidationError(RideHailError):
    """Raised when input is missing or malformed."""

    status_code = 400


class AuthorizationError(RideHailError):
    """Raised when the actor lacks the role or ownership for an operation."""

    status_code = 403


class NotFoundError(RideHailError):
    """Raised when a ride, message or user id does not resolve."""

    status_code = 404


class ConflictError(RideHailError):
    """Raised when a transition is not valid from the current state."""

    status_code = 409


class RateLimitError(RideHailError):
    """Raised when a client exceeds its request budget."""

    status_code = 429

    def __init__(
        self,
        message: str = "Too many requests, please try again later",
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message, code="RATE_LIMIT_EXCEEDED", headers=headers)
