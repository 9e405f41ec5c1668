from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from jobtrail.api.deps import enforce_rate_limit, get_current_user, get_rate_limiter
from jobtrail.core.errors import unauthorized
from jobtrail.core.exceptions import AccountLockedError, PasswordResetRequiredError
from jobtrail.core.security import issue_token_pair, rotate_tokens, verify_password
from jobtrail.db.session import get_db
from jobtrail.models.audit_log import AuditEvent
from jobtrail.models.user import User
from jobtrail.schemas.auth import (
    LoginRequest,
    MessageResponse,
    PasswordResetComplete,
    PasswordResetRequest,
    RefreshRequest,
    TokenResponse,
)
from jobtrail.schemas.security import SecurityStatusResponse
from jobtrail.services.audit import audit_log, log_login_failure
from jobtrail.services.lockout import (
    get_security_status,
    is_account_locked,
    record_failed_attempt,
    record_successful_login,
)
from jobtrail.services.password_reset import (
    complete_password_reset,
    get_user_by_email,
    request_password_reset,
)
from jobtrail.services.rate_limit import LOGIN_POLICY, PASSWORD_RESET_POLICY, RateLimiter
from jobtrail.services.user_security import get_security_record
from jobtrail.utils.request import get_client_ip, get_user_agent

router = APIRouter(prefix="/auth", tags=["auth"])

INVALID_CREDENTIALS = "Invalid credentials"
RESET_REQUESTED_MESSAGE = "If an account exists for that email, a reset link has been sent."


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
):
    email = body.email.lower()
    ip_address = get_client_ip(request)
    user_agent = get_user_agent(request)

    limiter_key = await enforce_rate_limit(request, LOGIN_POLICY, limiter, db)

    user = await get_user_by_email(db, email)
    if user is None or user.password_hash is None or not user.is_active:
        # Pre-authentication failure: no account to lock, keyed by email only
        await log_login_failure(db, None, ip_address, user_agent, "Unknown account", email=email)
        await db.commit()
        raise unauthorized(INVALID_CREDENTIALS)

    lock = await is_account_locked(db, user.id)
    if lock.locked:
        raise AccountLockedError(lock.unlock_at, lock.reason)

    if not verify_password(body.password, user.password_hash):
        outcome = await record_failed_attempt(db, user.id, ip_address, user_agent, "Invalid password")
        if outcome.locked:
            raise AccountLockedError(outcome.unlock_at)
        raise unauthorized(INVALID_CREDENTIALS)

    record = await get_security_record(db, user.id)
    if record is not None and record.force_password_reset:
        raise PasswordResetRequiredError(record.force_password_reset_reason)

    await record_successful_login(db, user.id, ip_address, user_agent)
    limiter.reset(limiter_key)

    pair = issue_token_pair(user.id, user.email, user.role.value)
    return TokenResponse(access_token=pair.access_token, refresh_token=pair.refresh_token)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest):
    """Exchange a refresh token for a new access/refresh pair."""
    pair = rotate_tokens(body.refresh_token)
    return TokenResponse(access_token=pair.access_token, refresh_token=pair.refresh_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    # Tokens are stateless; the client discards them
    await audit_log(
        db,
        AuditEvent.LOGOUT,
        user_id=current_user.id,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    await db.commit()
    return MessageResponse(message="Logged out")


@router.get("/me/security", response_model=SecurityStatusResponse)
async def get_my_security_status(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    status = await get_security_status(db, current_user.id)
    return SecurityStatusResponse.model_validate(status)


@router.post("/password-reset/request", response_model=MessageResponse)
async def password_reset_request(
    body: PasswordResetRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
):
    email = body.email.lower()
    await enforce_rate_limit(request, PASSWORD_RESET_POLICY, limiter, db, identifier=email)
    await request_password_reset(
        db,
        email,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    # Same response whether or not the account exists
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/password-reset/complete", response_model=MessageResponse)
async def password_reset_complete(
    body: PasswordResetComplete,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await complete_password_reset(
        db,
        body.token,
        body.new_password,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return MessageResponse(message="Password has been reset. You can now sign in.")
