"""
Suspicious-activity detection.

Failed logins against one account from many source IPs in a short window
look like credential stuffing rather than a user who forgot their password.
When that pattern shows up the account is flagged for a forced password
reset. The flag has no expiry; only a completed reset clears it.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from jobtrail.models.audit_log import AuditEvent
from jobtrail.models.user_security import UserSecurity
from jobtrail.services.audit import audit_log, get_recent_failure_ips
from jobtrail.services.notification import SecurityNotifier, email_notifier, notify_user
from jobtrail.services.user_security import get_or_create_security_record, update_security_record

logger = logging.getLogger(__name__)

SUSPICIOUS_WINDOW = timedelta(minutes=60)
MIN_DISTINCT_IPS = 3
MIN_FAILED_ATTEMPTS = 10


@dataclass
class SuspiciousActivityResult:
    triggered: bool
    newly_flagged: bool = False
    reason: str | None = None
    total_attempts: int = 0
    distinct_ips: list[str] = field(default_factory=list)


def is_distributed_attack(total_attempts: int, distinct_ips: int) -> bool:
    return distinct_ips >= MIN_DISTINCT_IPS and total_attempts >= MIN_FAILED_ATTEMPTS


async def check_suspicious_activity(
    db: AsyncSession,
    user_id: UUID,
    notifier: SecurityNotifier | None = None,
) -> SuspiciousActivityResult:
    """
    Flag the account for a forced reset if recent failures come from many IPs.

    Can fire while the account is not locked.
    """
    ips = await get_recent_failure_ips(db, user_id, SUSPICIOUS_WINDOW)
    total = len(ips)
    distinct = sorted({ip for ip in ips if ip})

    if not is_distributed_attack(total, len(distinct)):
        return SuspiciousActivityResult(triggered=False, total_attempts=total, distinct_ips=distinct)

    reason = f"Suspicious activity: {total} failed attempts from {len(distinct)} different IPs"
    flagged = await force_password_reset(
        db,
        user_id,
        reason,
        notifier=notifier,
        details={
            "total_attempts": total,
            "distinct_ip_count": len(distinct),
            "ip_addresses": distinct,
            "window_minutes": int(SUSPICIOUS_WINDOW.total_seconds() // 60),
        },
    )
    return SuspiciousActivityResult(
        triggered=True,
        newly_flagged=flagged,
        reason=reason,
        total_attempts=total,
        distinct_ips=distinct,
    )


async def force_password_reset(
    db: AsyncSession,
    user_id: UUID,
    reason: str,
    notifier: SecurityNotifier | None = None,
    details: dict | None = None,
    admin_id: UUID | None = None,
) -> bool:
    """
    Require the user to reset their password before signing in again.

    ``details`` carries the detector's counts; when present a
    SUSPICIOUS_ACTIVITY entry is written alongside PASSWORD_RESET_FORCED.

    Returns:
        False when the account was already flagged (nothing is written)
    """
    await get_or_create_security_record(db, user_id)
    result = await db.execute(
        update(UserSecurity)
        .where(UserSecurity.user_id == user_id, UserSecurity.force_password_reset.is_(False))
        .values(force_password_reset=True, force_password_reset_reason=reason)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    forced_details = {"reason": reason}
    if admin_id is not None:
        forced_details["forced_by"] = str(admin_id)
    await audit_log(db, AuditEvent.PASSWORD_RESET_FORCED, user_id=user_id, details=forced_details)
    if details is not None:
        await audit_log(
            db,
            AuditEvent.SUSPICIOUS_ACTIVITY,
            user_id=user_id,
            details={"reason": reason, **details},
            successful=False,
        )
    await db.commit()
    logger.warning(f"Forced password reset for user {user_id}: {reason}")

    sender = notifier if notifier is not None else email_notifier
    await notify_user(
        db,
        user_id,
        "forced_password_reset",
        lambda user: sender.send_forced_password_reset_email(user.email, user.name, reason),
    )
    return True


async def clear_force_password_reset(
    db: AsyncSession,
    user_id: UUID,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """Clear the forced-reset flag after the user completed a password reset."""
    await get_or_create_security_record(db, user_id)
    await update_security_record(
        db, user_id, force_password_reset=False, force_password_reset_reason=None
    )
    await audit_log(
        db,
        AuditEvent.PASSWORD_RESET_COMPLETED,
        user_id=user_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await db.commit()
