"""
Security audit log service.

Every security-relevant event lands here. Writes are added to the caller's
session and flushed, never committed, so the audit entry shares the fate of
the transaction that produced it.

Usage:
    from jobtrail.services.audit import audit_log
    await audit_log(db, AuditEvent.LOGIN_FAILURE, user_id=user.id, ip_address=ip)
"""
import logging
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobtrail.models.audit_log import SECURITY_EVENTS, AuditEvent, AuditLog
from jobtrail.models.user_security import UserSecurity
from jobtrail.utils.time import utc_now

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


async def audit_log(
    db: AsyncSession,
    event: AuditEvent | str,
    user_id: UUID | None = None,
    details: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    successful: bool = True,
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        event: Event kind; strings outside AuditEvent raise ValueError
        user_id: Subject of the event (None for pre-authentication failures)
        details: Additional context
        ip_address: Source IP of the request
        user_agent: Client user agent
        successful: Outcome flag

    Returns:
        Created AuditLog entry
    """
    log = AuditLog(
        user_id=user_id,
        event=AuditEvent(event),
        details=details or None,
        ip_address=ip_address,
        user_agent=user_agent,
        successful=successful,
    )
    db.add(log)
    # Don't commit here - let the caller manage the transaction
    await db.flush()
    return log


async def log_login_success(
    db: AsyncSession, user_id: UUID, ip_address: str | None, user_agent: str | None
) -> AuditLog:
    return await audit_log(
        db, AuditEvent.LOGIN_SUCCESS, user_id=user_id, ip_address=ip_address, user_agent=user_agent
    )


async def log_login_failure(
    db: AsyncSession,
    user_id: UUID | None,
    ip_address: str | None,
    user_agent: str | None,
    reason: str,
    email: str | None = None,
) -> AuditLog:
    details: dict[str, Any] = {"reason": reason}
    if email:
        details["email"] = email
    return await audit_log(
        db,
        AuditEvent.LOGIN_FAILURE,
        user_id=user_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent,
        successful=False,
    )


async def log_admin_security_access(
    db: AsyncSession,
    admin_id: UUID,
    ip_address: str | None,
    user_agent: str | None,
    description: str,
) -> AuditLog:
    """Record an administrator viewing security data."""
    return await audit_log(
        db,
        AuditEvent.ADMIN_LOGIN,
        user_id=admin_id,
        details={"action": "security_access", "description": description},
        ip_address=ip_address,
        user_agent=user_agent,
    )


async def log_admin_security_action(
    db: AsyncSession,
    admin_id: UUID,
    description: str,
    ip_address: str | None,
    user_agent: str | None,
    target_user_id: UUID | None = None,
) -> AuditLog:
    """Record an administrator changing another account's security state."""
    details: dict[str, Any] = {"action": "security_action", "description": description}
    if target_user_id is not None:
        details["target_user_id"] = str(target_user_id)
    return await audit_log(
        db,
        AuditEvent.ADMIN_LOGIN,
        user_id=admin_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent,
    )


async def count_recent_failures(db: AsyncSession, user_id: UUID, window: timedelta) -> int:
    """Count LOGIN_FAILURE entries for a user within ``now - window``."""
    cutoff = utc_now() - window
    result = await db.execute(
        select(func.count())
        .select_from(AuditLog)
        .where(
            AuditLog.user_id == user_id,
            AuditLog.event == AuditEvent.LOGIN_FAILURE,
            AuditLog.created_at >= cutoff,
        )
    )
    return result.scalar() or 0


async def get_recent_failure_ips(
    db: AsyncSession, user_id: UUID, window: timedelta
) -> list[str | None]:
    """Source IP of each LOGIN_FAILURE for a user within ``now - window``, one per entry."""
    cutoff = utc_now() - window
    result = await db.execute(
        select(AuditLog.ip_address).where(
            AuditLog.user_id == user_id,
            AuditLog.event == AuditEvent.LOGIN_FAILURE,
            AuditLog.created_at >= cutoff,
        )
    )
    return list(result.scalars().all())


async def get_audit_logs(
    db: AsyncSession,
    user_id: UUID | None = None,
    event: AuditEvent | None = None,
    events: tuple[AuditEvent, ...] | None = None,
    ip_address: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    successful: bool | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[AuditLog], int]:
    """
    Query audit entries, newest first.

    Returns:
        (page of entries, total matching entries)
    """
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    conditions = []
    if user_id is not None:
        conditions.append(AuditLog.user_id == user_id)
    if event is not None:
        conditions.append(AuditLog.event == event)
    elif events:
        conditions.append(AuditLog.event.in_(events))
    if ip_address:
        conditions.append(AuditLog.ip_address == ip_address)
    if start_date is not None:
        conditions.append(AuditLog.created_at >= start_date)
    if end_date is not None:
        conditions.append(AuditLog.created_at <= end_date)
    if successful is not None:
        conditions.append(AuditLog.successful == successful)

    count_result = await db.execute(select(func.count()).select_from(AuditLog).where(*conditions))
    total = count_result.scalar() or 0

    result = await db.execute(
        select(AuditLog)
        .where(*conditions)
        .order_by(desc(AuditLog.created_at))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def get_user_security_logs(
    db: AsyncSession,
    user_id: UUID,
    page: int = 1,
    limit: int = 20,
    event: AuditEvent | None = None,
) -> tuple[list[AuditLog], int]:
    """A user's security history; limited to SECURITY_EVENTS unless an event is given."""
    return await get_audit_logs(
        db,
        user_id=user_id,
        event=event,
        events=None if event is not None else SECURITY_EVENTS,
        page=page,
        limit=limit,
    )


async def cleanup_old_logs(db: AsyncSession, days: int = 90) -> int:
    """
    Delete audit entries older than ``days``.

    Doesn't commit; the caller owns the transaction.

    Returns:
        Number of entries deleted
    """
    cutoff = utc_now() - timedelta(days=days)
    result = await db.execute(delete(AuditLog).where(AuditLog.created_at < cutoff))
    deleted = result.rowcount or 0
    if deleted:
        logger.info(f"Purged {deleted} audit log entries older than {days} days")
    return deleted


async def get_security_statistics(db: AsyncSession) -> dict[str, Any]:
    """Aggregate counts for the admin security dashboard."""
    now = utc_now()
    since = now - timedelta(hours=24)

    locked = await db.execute(
        select(func.count())
        .select_from(UserSecurity)
        .where(UserSecurity.is_locked.is_(True), UserSecurity.lockout_until > now)
    )
    forced = await db.execute(
        select(func.count())
        .select_from(UserSecurity)
        .where(UserSecurity.force_password_reset.is_(True))
    )
    failed = await db.execute(
        select(func.count())
        .select_from(AuditLog)
        .where(AuditLog.event == AuditEvent.LOGIN_FAILURE, AuditLog.created_at >= since)
    )
    lockouts = await db.execute(
        select(func.count())
        .select_from(AuditLog)
        .where(AuditLog.event == AuditEvent.ACCOUNT_LOCKED, AuditLog.created_at >= since)
    )

    reason_count = func.count(UserSecurity.id).label("count")
    reasons = await db.execute(
        select(UserSecurity.last_lockout_reason, reason_count)
        .where(UserSecurity.last_lockout_reason.is_not(None))
        .group_by(UserSecurity.last_lockout_reason)
        .order_by(desc(reason_count))
        .limit(5)
    )

    return {
        "total_locked_accounts": locked.scalar() or 0,
        "total_forced_password_resets": forced.scalar() or 0,
        "recent_failed_logins": failed.scalar() or 0,
        "recent_lockouts": lockouts.scalar() or 0,
        "top_lockout_reasons": [
            {"reason": reason, "count": count} for reason, count in reasons.all()
        ],
    }
