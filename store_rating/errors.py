"""
Store Rating - Error Taxonomy

Typed failures raised by the auth components and mapped to the response
envelope by the gateway exception handlers.

Every error carries:
- status_code: HTTP status
- code: stable machine-readable string surfaced to clients
- message: safe, human-readable text (never internal exception text)
- details: optional structured data (e.g. per-field validation messages)
"""

from typing import Any, Optional


class AuthError(Exception):
    """Base class for expected, client-facing failures."""

    status_code: int = 400
    code: str = "VALIDATION_ERROR"
    default_message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, *, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class InvalidInputError(AuthError):
    """Malformed or missing input (400)."""
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid input data"


class InvalidCredentialsError(AuthError):
    """Unknown identifier or wrong password; wording never says which (401)."""
    status_code = 401
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid email/username or password"


class AccountDeactivatedError(AuthError):
    """Correct credentials but the account is inactive (401)."""
    status_code = 401
    code = "ACCOUNT_DEACTIVATED"
    default_message = "Account is deactivated"


class InvalidTokenError(AuthError):
    """Token malformed, wrongly signed, wrong issuer/audience, or revoked (401)."""
    status_code = 401
    code = "INVALID_TOKEN"
    default_message = "Invalid token"


class TokenExpiredError(AuthError):
    """Token is authentic but past its expiry (401)."""
    status_code = 401
    code = "TOKEN_EXPIRED"
    default_message = "Token has expired"


class UnauthenticatedError(AuthError):
    """No usable credentials presented (401)."""
    status_code = 401
    code = "UNAUTHENTICATED"
    default_message = "Authentication required"


class ForbiddenError(AuthError):
    """Authenticated but not allowed (403)."""
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Insufficient permissions"


class AccountNotFoundError(AuthError):
    """Target account of an admin operation does not exist (404)."""
    status_code = 404
    code = "NOT_FOUND"
    default_message = "User not found"


class UserExistsError(AuthError):
    """Email or username already registered (409)."""
    status_code = 409
    code = "USER_EXISTS"
    default_message = "User with this email or username already exists"


class CurrentPasswordMismatchError(AuthError):
    """Self-service password change with a wrong current password (400)."""
    status_code = 400
    code = "INVALID_CURRENT_PASSWORD"
    default_message = "Current password is incorrect"


class SigningKeyError(RuntimeError):
    """
    A signing secret is unavailable at runtime.

    Not an AuthError: this is a deployment fault, surfaced as a generic 500.
    """
