"""
Domain Errors

Every error a service can raise on purpose. Each one carries the HTTP status
the API answers with, so route handlers never translate by hand.

    ValidationError        422  bad input, rejected before touching the store
    NotFoundError          404  id does not resolve
    InvalidTransitionError 409  illegal status move or message/pay too late
    AuthenticationError    401  wrong PIN, unknown or expired staff session
    PersistenceError       503  the store failed; the caller may retry by hand
"""

from typing import Optional


class OrderingError(Exception):
    """Base class for all handled errors."""

    status_code: int = 400
    error: str = "Bad Request"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.error,
            "detail": self.message if self.detail is None else f"{self.message}: {self.detail}",
        }


class ValidationError(OrderingError):
    status_code = 422
    error = "Validation Error"


class NotFoundError(OrderingError):
    status_code = 404
    error = "Not Found"


class InvalidTransitionError(OrderingError):
    status_code = 409
    error = "Conflict"


class AuthenticationError(OrderingError):
    status_code = 401
    error = "Unauthorized"


class PersistenceError(OrderingError):
    status_code = 503
    error = "Service Unavailable"
