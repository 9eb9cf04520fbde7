"""
Error taxonomy shared by the services and the HTTP layer.

Services raise these; `propmarket.main` maps them to `{"detail": message}`
responses with the class's status code.
"""

from __future__ import annotations


class AppError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid input"


class PreconditionFailed(AppError):
    status_code = 400
    default_message = "Operation not allowed in the current state"


class ConflictError(AppError):
    status_code = 400
    default_message = "Already exists"


class AuthenticationError(AppError):
    status_code = 401
    default_message = "Not authenticated"


class InvalidOrExpiredCode(AuthenticationError):
    # One message for wrong, expired, used and exhausted codes.
    default_message = "Invalid or expired code"

    def __init__(self) -> None:
        super().__init__(self.default_message)


class AuthorizationError(AppError):
    status_code = 403
    default_message = "Not allowed"


class AccountSuspended(AuthorizationError):
    default_message = "Account suspended"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class RateLimited(AppError):
    status_code = 429
    default_message = "Too many requests"


class DependencyUnavailable(AppError):
    status_code = 503
    default_message = "Service unavailable"


class StorageUnavailable(DependencyUnavailable):
    default_message = "Document storage is not configured"


class DeliveryError(DependencyUnavailable):
    status_code = 500
    default_message = "Failed to send verification code"


class InternalError(AppError):
    status_code = 500
