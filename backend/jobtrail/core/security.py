"""
Token service and password helpers.

Access and refresh tokens are HS256 JWTs carrying
``{"userId", "email", "role", "type"}``. The two token classes are signed
with different secrets. Tokens are stateless: there is no server-side
revocation list, so a token stays valid until it expires.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

import jwt
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict, Field

from jobtrail.core.config import settings
from jobtrail.core.exceptions import (
    InvalidTokenError,
    MalformedTokenInputError,
    TokenExpiredError,
    WrongTokenTypeError,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"

TokenType = Literal["access", "refresh"]


class TokenClaims(BaseModel):
    """Identity claims embedded in every token. Field aliases are the wire names."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    email: str
    role: str
    type: TokenType


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def _secret_for(token_type: str) -> str:
    if token_type == TOKEN_TYPE_ACCESS:
        return settings.JWT_SECRET_KEY
    return settings.JWT_REFRESH_SECRET_KEY


def _default_lifetime(token_type: str) -> timedelta:
    if token_type == TOKEN_TYPE_ACCESS:
        return timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    return timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)


def create_token(
    user_id: Any,
    email: str,
    role: str,
    token_type: TokenType,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Sign a single token of the given class.

    Args:
        user_id: User identifier, serialized as a string claim
        email: User email
        role: User role value
        token_type: "access" or "refresh"; selects the signing secret
        expires_delta: Lifetime override (defaults from settings)

    Returns:
        Encoded JWT
    """
    now = datetime.now(UTC)
    lifetime = expires_delta if expires_delta is not None else _default_lifetime(token_type)
    payload = {
        "userId": str(user_id),
        "email": email,
        "role": getattr(role, "value", role),
        "type": token_type,
        "iat": now,
        "exp": now + lifetime,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, _secret_for(token_type), algorithm=settings.JWT_ALGORITHM)


def issue_token_pair(user_id: Any, email: str, role: str) -> TokenPair:
    """Issue a fresh access/refresh pair for a user."""
    return TokenPair(
        access_token=create_token(user_id, email, role, TOKEN_TYPE_ACCESS),
        refresh_token=create_token(user_id, email, role, TOKEN_TYPE_REFRESH),
    )


def _decode(token: str, secret: str) -> dict:
    return jwt.decode(
        token,
        secret,
        algorithms=[settings.JWT_ALGORITHM],
        options={"require": ["exp", "iat", "type"]},
    )


def _is_other_class(token: str, expected: str) -> str | None:
    """Return the token's type if it is a validly signed token of the other class."""
    other = TOKEN_TYPE_REFRESH if expected == TOKEN_TYPE_ACCESS else TOKEN_TYPE_ACCESS
    try:
        payload = jwt.decode(
            token,
            _secret_for(other),
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except jwt.InvalidTokenError:
        return None
    if payload.get("type") == other:
        return other
    return None


def _verify(token: str, expected: str) -> TokenClaims:
    if not isinstance(token, str) or not token:
        raise InvalidTokenError()

    try:
        payload = _decode(token, _secret_for(expected))
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError(
            "Refresh token has expired" if expected == TOKEN_TYPE_REFRESH else "Token has expired"
        )
    except jwt.InvalidSignatureError:
        actual = _is_other_class(token, expected)
        if actual is not None:
            logger.warning(f"{actual} token presented where a {expected} token was expected")
            raise WrongTokenTypeError(expected=expected, actual=actual)
        raise InvalidTokenError()
    except jwt.InvalidTokenError as e:
        logger.debug(f"Rejected {expected} token: {e}")
        raise InvalidTokenError()

    if payload.get("type") != expected:
        raise WrongTokenTypeError(expected=expected, actual=payload.get("type"))

    try:
        return TokenClaims.model_validate(payload)
    except ValueError:
        raise InvalidTokenError("Invalid token payload")


def verify_access_token(token: str) -> TokenClaims:
    """
    Verify an access token.

    Raises:
        TokenExpiredError: token is past its expiry
        InvalidTokenError: malformed token or bad signature
        WrongTokenTypeError: a refresh token was presented
    """
    return _verify(token, TOKEN_TYPE_ACCESS)


def verify_refresh_token(token: str) -> TokenClaims:
    """
    Verify a refresh token.

    Raises:
        TokenExpiredError: token is past its expiry
        InvalidTokenError: malformed token or bad signature
        WrongTokenTypeError: an access token was presented
    """
    return _verify(token, TOKEN_TYPE_REFRESH)


def rotate_tokens(refresh_token: Any) -> TokenPair:
    """
    Exchange a refresh token for a brand-new pair.

    Both tokens are replaced, which slides the session forward.

    Raises:
        MalformedTokenInputError: input is missing, blank or not a string
        TokenError: the refresh token fails verification
    """
    if not isinstance(refresh_token, str) or refresh_token.strip() == "":
        raise MalformedTokenInputError()

    claims = verify_refresh_token(refresh_token)
    return issue_token_pair(claims.user_id, claims.email, claims.role)
