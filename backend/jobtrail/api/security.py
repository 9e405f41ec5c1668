"""Administrative account-security endpoints."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from jobtrail.api.deps import require_admin
from jobtrail.core.errors import ErrorCode, not_found, validation_error
from jobtrail.db.session import get_db
from jobtrail.models.audit_log import AuditEvent
from jobtrail.models.user import User
from jobtrail.schemas.audit import AuditLogEntry, AuditLogListResponse
from jobtrail.schemas.security import (
    ForcePasswordResetRequest,
    ForcePasswordResetResponse,
    LockedAccount,
    LockedAccountListResponse,
    SecurityStatisticsResponse,
    SecurityStatusResponse,
    UnlockRequest,
)
from jobtrail.services.audit import (
    get_audit_logs,
    get_security_statistics,
    get_user_security_logs,
    log_admin_security_access,
    log_admin_security_action,
)
from jobtrail.services.lockout import (
    get_locked_accounts,
    get_security_status,
    is_account_locked,
    unlock_account,
)
from jobtrail.services.suspicious_activity import force_password_reset
from jobtrail.utils.request import get_client_ip, get_user_agent
from jobtrail.utils.time import ensure_utc, format_time_remaining, utc_now

router = APIRouter(prefix="/admin/security", tags=["admin-security"])


async def _get_user_or_404(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise not_found("User", {"user_id": str(user_id)})
    return user


@router.get("/users/{user_id}/status", response_model=SecurityStatusResponse)
async def get_user_security_status(
    user_id: UUID,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_admin)],
):
    status = await get_security_status(db, user_id)
    await log_admin_security_access(
        db,
        admin.id,
        get_client_ip(request),
        get_user_agent(request),
        f"Viewed security status for user {user_id}",
    )
    await db.commit()
    return SecurityStatusResponse.model_validate(status)


@router.get("/users/{user_id}/logs", response_model=AuditLogListResponse)
async def list_user_security_logs(
    user_id: UUID,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_admin)],
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    event: AuditEvent | None = Query(None),
):
    """A user's security history, newest first. Without ``event`` only security events are listed."""
    await _get_user_or_404(db, user_id)
    logs, total = await get_user_security_logs(
        db, user_id, page=page, limit=limit, event=event
    )
    await log_admin_security_access(
        db,
        admin.id,
        get_client_ip(request),
        get_user_agent(request),
        f"Viewed audit logs for user {user_id}",
    )
    await db.commit()
    return AuditLogListResponse(
        items=[AuditLogEntry.model_validate(log) for log in logs],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/users/{user_id}/unlock", response_model=SecurityStatusResponse)
async def unlock_user(
    user_id: UUID,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_admin)],
    body: Annotated[UnlockRequest | None, Body()] = None,
):
    """Unlock a locked account. Returns 400 if the account is not locked."""
    await _get_user_or_404(db, user_id)
    reason = body.reason if body else UnlockRequest().reason
    ip_address = get_client_ip(request)
    user_agent = get_user_agent(request)

    lock = await is_account_locked(db, user_id)
    if not lock.locked:
        raise validation_error(
            "Account is not locked",
            details={"user_id": str(user_id)},
            code=ErrorCode.INVALID_INPUT,
        )

    unlocked = await unlock_account(
        db,
        user_id,
        reason,
        admin_id=admin.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    if not unlocked:
        # Lock expired between the check and the update
        raise validation_error("Account is not locked", code=ErrorCode.INVALID_INPUT)

    await log_admin_security_action(
        db,
        admin.id,
        f"Unlocked user account: {reason}",
        ip_address,
        user_agent,
        target_user_id=user_id,
    )
    await db.commit()
    status = await get_security_status(db, user_id)
    return SecurityStatusResponse.model_validate(status)


@router.post("/users/{user_id}/force-password-reset", response_model=ForcePasswordResetResponse)
async def force_user_password_reset(
    user_id: UUID,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_admin)],
    body: Annotated[ForcePasswordResetRequest | None, Body()] = None,
):
    """Flag an account for a forced password reset. Admins cannot clear the flag."""
    await _get_user_or_404(db, user_id)
    reason = body.reason if body else ForcePasswordResetRequest().reason
    newly_flagged = await force_password_reset(db, user_id, reason, admin_id=admin.id)

    await log_admin_security_action(
        db,
        admin.id,
        f"Forced password reset: {reason}",
        get_client_ip(request),
        get_user_agent(request),
        target_user_id=user_id,
    )
    await db.commit()
    return ForcePasswordResetResponse(
        user_id=user_id,
        force_password_reset=True,
        newly_flagged=newly_flagged,
    )


@router.get("/locked-accounts", response_model=LockedAccountListResponse)
async def list_locked_accounts(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_admin)],
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    rows, total = await get_locked_accounts(db, page=page, limit=limit)
    now = utc_now()
    items = []
    for record, user in rows:
        lockout_until = ensure_utc(record.lockout_until)
        items.append(
            LockedAccount(
                user_id=user.id,
                email=user.email,
                name=user.name,
                lockout_until=lockout_until,
                lockout_count=record.lockout_count,
                last_lockout_reason=record.last_lockout_reason,
                time_until_unlock=format_time_remaining(lockout_until - now) if lockout_until else None,
            )
        )

    await log_admin_security_access(
        db, admin.id, get_client_ip(request), get_user_agent(request), "Viewed locked accounts"
    )
    await db.commit()
    return LockedAccountListResponse(items=items, total=total, page=page, limit=limit)


@router.get("/statistics", response_model=SecurityStatisticsResponse)
async def security_statistics(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_admin)],
):
    stats = await get_security_statistics(db)
    await log_admin_security_access(
        db,
        admin.id,
        get_client_ip(request),
        get_user_agent(request),
        "Viewed security statistics dashboard",
    )
    await db.commit()
    return SecurityStatisticsResponse(**stats)


@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    _: Annotated[User, Depends(require_admin)],
    user_id: UUID | None = Query(None),
    event: AuditEvent | None = Query(None),
    ip_address: str | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    successful: bool | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
):
    """
    Get audit log entries with optional filters.
    Admin only. Returns a page of entries, newest first.
    """
    logs, total = await get_audit_logs(
        db,
        user_id=user_id,
        event=event,
        ip_address=ip_address,
        start_date=start_date,
        end_date=end_date,
        successful=successful,
        page=page,
        limit=limit,
    )
    return AuditLogListResponse(
        items=[AuditLogEntry.model_validate(log) for log in logs],
        total=total,
        page=page,
        limit=limit,
    )
