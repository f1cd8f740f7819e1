"""Custom exceptions for the ExpenseFlow application."""

from __future__ import annotations


class ExpenseFlowError(Exception):
    """Base exception for all ExpenseFlow errors."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ExpenseFlowError):
    """Raised when required configuration is missing or malformed."""

    pass


class ValidationError(ExpenseFlowError):
    """Raised when input validation fails."""

    status_code = 400

    def __init__(self, message: str, fields: dict[str, str] | None = None) -> None:
        super().__init__(message, {"fields": fields or {}})
        self.fields = fields or {}


class AuthError(ExpenseFlowError):
    """Base exception for authentication and authorization failures."""

    status_code = 401


class UnauthorizedError(AuthError):
    """Raised when a credential is missing, invalid, revoked or expired."""

    status_code = 401


class ForbiddenError(AuthError):
    """Raised when a valid credential lacks scope or uses the wrong source."""

    status_code = 403


class RateLimitError(ExpenseFlowError):
    """Raised when an identity exceeds its request quota."""

    status_code = 429

    def __init__(self, retry_after: int, message: str = "Too many requests") -> None:
        super().__init__(message, {"retry_after": retry_after})
        self.retry_after = retry_after


class NotFoundError(ExpenseFlowError):
    """Raised when an entity is absent or not owned by the caller."""

    status_code = 404


class DecryptionError(ExpenseFlowError):
    """Raised when a ciphertext is corrupted or was sealed with an unknown key."""

    pass
