"""Custom exceptions for the account-protection core."""

from datetime import datetime


class TokenError(Exception):
    """Base class for token verification failures (401-class)."""

    def __init__(self, message: str = "Invalid token"):
        self.message = message
        super().__init__(message)


class TokenExpiredError(TokenError):
    """Raised when a well-formed token is past its expiry."""

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message)


class InvalidTokenError(TokenError):
    """Raised when a token is malformed or its signature does not verify."""

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class WrongTokenTypeError(TokenError):
    """Raised when a valid token is presented to the verifier of the other token class."""

    def __init__(self, expected: str, actual: str | None):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected a {expected} token")


class MalformedTokenInputError(ValueError):
    """Raised when token input is missing, blank or not a string (400-class)."""

    def __init__(self, message: str = "Invalid refresh token format"):
        self.message = message
        super().__init__(message)


class AccountLockedError(Exception):
    """Raised when authentication is attempted against a locked account."""

    def __init__(self, unlock_at: datetime | None, reason: str | None = None):
        self.unlock_at = unlock_at
        self.reason = reason
        super().__init__("Account is temporarily locked")


class PasswordResetRequiredError(Exception):
    """Raised when an account must complete a password reset before signing in."""

    def __init__(self, reason: str | None = None):
        self.reason = reason
        super().__init__("Password reset required")


class RateLimitExceededError(Exception):
    """Raised by the HTTP layer when the request-level limiter denies a request."""

    def __init__(self, retry_after_ms: int):
        self.retry_after_ms = retry_after_ms
        super().__init__("Too many requests")


class SecurityRecordNotFoundError(LookupError):
    """Raised when a security operation targets a user that does not exist."""

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class PasswordResetTokenError(ValueError):
    """Raised when a password reset token is unknown, expired or already used."""

    def __init__(self, message: str = "Invalid or expired password reset token"):
        self.message = message
        super().__init__(message)
