"""
Standardized error response system.

Provides consistent error responses across all API endpoints and maps the
account-protection exceptions onto them.
"""
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from jobtrail.core.exceptions import (
    AccountLockedError,
    InvalidTokenError,
    MalformedTokenInputError,
    PasswordResetRequiredError,
    PasswordResetTokenError,
    RateLimitExceededError,
    SecurityRecordNotFoundError,
    TokenError,
    TokenExpiredError,
    WrongTokenTypeError,
)
from jobtrail.utils.time import ensure_utc, format_time_remaining, utc_now


class ErrorCode:
    """Standard error codes."""

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    # Authentication/Authorization
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    WRONG_TOKEN_TYPE = "WRONG_TOKEN_TYPE"

    # Account protection
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    PASSWORD_RESET_REQUIRED = "PASSWORD_RESET_REQUIRED"
    RATE_LIMITED = "RATE_LIMITED"

    # Resource errors
    NOT_FOUND = "NOT_FOUND"

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse:
    """Standard error response format."""

    @staticmethod
    def create(
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> JSONResponse:
        """
        Create a standardized error response.

        Args:
            code: Machine-readable error code
            message: Human-readable error message
            status_code: HTTP status code
            details: Additional error details (optional)
            request_id: Request correlation ID (optional)
            headers: Extra response headers such as Retry-After (optional)

        Returns:
            JSONResponse with standard error format
        """
        error_data: Dict[str, Any] = {
            "error": {
                "code": code,
                "message": message,
            }
        }

        if details:
            error_data["error"]["details"] = details

        if request_id:
            error_data["error"]["request_id"] = request_id

        return JSONResponse(status_code=status_code, content=error_data, headers=headers)


class HTTPError(HTTPException):
    """
    Enhanced HTTPException with standard error response format.

    Usage:
        raise HTTPError(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            message="User not found",
            details={"user_id": "..."}
        )
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message, headers=headers)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


async def http_error_handler(request: Request, exc: HTTPError) -> JSONResponse:
    """Handle HTTPError exceptions and return standardized error response."""
    return ErrorResponse.create(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=_request_id(request),
        headers=exc.headers,
    )


def token_error_to_http(exc: TokenError | MalformedTokenInputError) -> HTTPError:
    """
    Map a token failure to its HTTP error.

    Clients retry silently via refresh only on TOKEN_EXPIRED; every other
    code means re-authenticate.
    """
    if isinstance(exc, MalformedTokenInputError):
        return validation_error(exc.message, code=ErrorCode.INVALID_INPUT)
    if isinstance(exc, TokenExpiredError):
        return unauthorized(exc.message, code=ErrorCode.TOKEN_EXPIRED)
    if isinstance(exc, WrongTokenTypeError):
        return unauthorized("Token type not accepted here", code=ErrorCode.WRONG_TOKEN_TYPE)
    if isinstance(exc, InvalidTokenError):
        return unauthorized(exc.message, code=ErrorCode.INVALID_TOKEN)
    return unauthorized()


def account_locked(exc: AccountLockedError) -> HTTPError:
    """Create a 403 ACCOUNT_LOCKED error carrying the unlock estimate."""
    details: Dict[str, Any] = {}
    message = "Account is temporarily locked due to repeated failed sign-in attempts."
    unlock_at = ensure_utc(exc.unlock_at)
    if unlock_at is not None:
        remaining = unlock_at - utc_now()
        details["unlock_at"] = unlock_at.isoformat()
        details["retry_after"] = format_time_remaining(remaining)
        message = f"Account is temporarily locked. Try again in {details['retry_after']}."
    return HTTPError(
        status_code=status.HTTP_403_FORBIDDEN,
        code=ErrorCode.ACCOUNT_LOCKED,
        message=message,
        details=details or None,
    )


def password_reset_required() -> HTTPError:
    """Create a 403 PASSWORD_RESET_REQUIRED error routing the client to the reset flow."""
    return HTTPError(
        status_code=status.HTTP_403_FORBIDDEN,
        code=ErrorCode.PASSWORD_RESET_REQUIRED,
        message="A password reset is required before you can sign in.",
        details={"requires_password_reset": True},
    )


def rate_limited(retry_after_ms: int) -> HTTPError:
    """Create a 429 RATE_LIMITED error with Retry-After."""
    retry_after_seconds = max(1, -(-retry_after_ms // 1000))
    remaining = format_time_remaining_ms(retry_after_ms)
    return HTTPError(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        code=ErrorCode.RATE_LIMITED,
        message=f"Too many attempts. Try again in {remaining}.",
        details={"retry_after_ms": retry_after_ms},
        headers={"Retry-After": str(retry_after_seconds)},
    )


def format_time_remaining_ms(milliseconds: int) -> str:
    return format_time_remaining(timedelta(milliseconds=milliseconds))


# Convenience functions for common errors

def not_found(resource: str, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 404 NOT_FOUND error."""
    return HTTPError(
        status_code=status.HTTP_404_NOT_FOUND,
        code=ErrorCode.NOT_FOUND,
        message=f"{resource} not found",
        details=details,
    )


def unauthorized(
    message: str = "Unauthorized",
    details: Optional[Dict[str, Any]] = None,
    code: str = ErrorCode.UNAUTHORIZED,
) -> HTTPError:
    """Create a 401 error."""
    return HTTPError(
        status_code=status.HTTP_401_UNAUTHORIZED,
        code=code,
        message=message,
        details=details,
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden(message: str = "Forbidden", details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 403 FORBIDDEN error."""
    return HTTPError(
        status_code=status.HTTP_403_FORBIDDEN,
        code=ErrorCode.FORBIDDEN,
        message=message,
        details=details,
    )


def validation_error(
    message: str,
    details: Optional[Dict[str, Any]] = None,
    code: str = ErrorCode.VALIDATION_ERROR,
) -> HTTPError:
    """Create a 400 error."""
    return HTTPError(
        status_code=status.HTTP_400_BAD_REQUEST,
        code=code,
        message=message,
        details=details,
    )


async def token_error_handler(request: Request, exc: TokenError) -> JSONResponse:
    return await http_error_handler(request, token_error_to_http(exc))


async def malformed_token_handler(request: Request, exc: MalformedTokenInputError) -> JSONResponse:
    return await http_error_handler(request, token_error_to_http(exc))


async def account_locked_handler(request: Request, exc: AccountLockedError) -> JSONResponse:
    return await http_error_handler(request, account_locked(exc))


async def password_reset_required_handler(request: Request, exc: PasswordResetRequiredError) -> JSONResponse:
    return await http_error_handler(request, password_reset_required())


async def reset_token_handler(request: Request, exc: PasswordResetTokenError) -> JSONResponse:
    return await http_error_handler(request, validation_error(exc.message, code=ErrorCode.INVALID_INPUT))


async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    return await http_error_handler(request, rate_limited(exc.retry_after_ms))


async def record_not_found_handler(request: Request, exc: SecurityRecordNotFoundError) -> JSONResponse:
    return await http_error_handler(request, not_found("User"))


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all account-protection exception handlers to the app."""
    app.add_exception_handler(HTTPError, http_error_handler)
    app.add_exception_handler(TokenError, token_error_handler)
    app.add_exception_handler(MalformedTokenInputError, malformed_token_handler)
    app.add_exception_handler(AccountLockedError, account_locked_handler)
    app.add_exception_handler(PasswordResetRequiredError, password_reset_required_handler)
    app.add_exception_handler(PasswordResetTokenError, reset_token_handler)
    app.add_exception_handler(RateLimitExceededError, rate_limit_handler)
    app.add_exception_handler(SecurityRecordNotFoundError, record_not_found_handler)
