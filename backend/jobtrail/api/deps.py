from typing import Annotated
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from jobtrail.core.errors import ErrorCode, forbidden, unauthorized
from jobtrail.core.exceptions import RateLimitExceededError
from jobtrail.core.security import verify_access_token
from jobtrail.db.session import get_db
from jobtrail.models.user import User, UserRole
from jobtrail.services.rate_limit import RateLimitContext, RateLimiter, RateLimitPolicy
from jobtrail.utils.request import get_client_ip, get_user_agent

# auto_error=False so a missing header gets the standard error envelope
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    if credentials is None:
        raise unauthorized("Not authenticated")

    # TokenError subclasses propagate to their registered handlers
    claims = verify_access_token(credentials.credentials)

    try:
        user_id = UUID(claims.user_id)
    except ValueError:
        raise unauthorized("Invalid token payload", code=ErrorCode.INVALID_TOKEN)

    user = await db.get(User, user_id)
    if user is None:
        raise unauthorized("User not found")

    if not user.is_active:
        raise forbidden("User is inactive")

    return user


async def require_admin(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    if current_user.role != UserRole.ADMIN:
        raise forbidden("Admin access required")
    return current_user


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


async def enforce_rate_limit(
    request: Request,
    policy: RateLimitPolicy,
    limiter: RateLimiter,
    db: AsyncSession | None = None,
    identifier: str | None = None,
) -> str:
    """
    Count this request against ``policy`` and reject it if the key is limited.

    Returns:
        The limiter key, so the caller can reset it after a successful action

    Raises:
        RateLimitExceededError: the key is currently rate limited
    """
    ip_address = get_client_ip(request)
    key = policy.key(ip_address, identifier)
    decision = await limiter.check(
        key,
        policy,
        RateLimitContext(
            ip_address=ip_address,
            user_agent=get_user_agent(request),
            identifier=identifier,
            db=db,
        ),
    )
    if not decision.allowed:
        raise RateLimitExceededError(decision.retry_after_ms or 1000)
    request.state.rate_limit = decision
    return key

