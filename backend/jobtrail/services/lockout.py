"""
Progressive account lockout.

A user's failed logins over the last hour are counted from the audit log and
compared against a threshold that grows with every previous lockout. Lock
and unlock transitions are conditional UPDATE statements so that concurrent
requests cannot double-count a lockout or emit duplicate unlock entries.

Lock expiry is lazy: nothing sweeps stale locks, the next status check clears
them.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobtrail.core.exceptions import SecurityRecordNotFoundError
from jobtrail.models.audit_log import AuditEvent
from jobtrail.models.user import User
from jobtrail.models.user_security import UserSecurity
from jobtrail.services.audit import audit_log, count_recent_failures, log_login_failure, log_login_success
from jobtrail.services.notification import SecurityNotifier, email_notifier, notify_user
from jobtrail.services.suspicious_activity import check_suspicious_activity
from jobtrail.services.user_security import (
    get_or_create_security_record,
    get_security_record,
    update_security_record,
)
from jobtrail.utils.time import ensure_utc, format_time_remaining, utc_now

logger = logging.getLogger(__name__)

FAILURE_WINDOW = timedelta(minutes=60)

UNLOCK_AUTOMATIC = "automatic"
UNLOCK_ADMIN = "admin"


@dataclass(frozen=True)
class LockoutTier:
    """Failures within FAILURE_WINDOW that trigger the next lock, and its length."""

    max_failed_attempts: int
    duration: timedelta


# Indexed by min(lockout_count, 3): saturates at the harshest tier
LOCKOUT_PROGRESSION: tuple[LockoutTier, ...] = (
    LockoutTier(5, timedelta(minutes=15)),
    LockoutTier(10, timedelta(minutes=30)),
    LockoutTier(15, timedelta(minutes=60)),
    LockoutTier(20, timedelta(minutes=1440)),
)


@dataclass
class LockStatus:
    locked: bool
    unlock_at: datetime | None = None
    reason: str | None = None


@dataclass
class FailedAttemptResult:
    """Outcome of recording a failed login."""

    locked: bool
    unlock_at: datetime | None = None
    newly_locked: bool = False
    lockout_tier: LockoutTier | None = None
    password_reset_forced: bool = False


@dataclass
class SecurityStatus:
    is_locked: bool
    lockout_count: int
    lockout_until: datetime | None
    last_lockout_reason: str | None
    force_password_reset: bool
    force_password_reset_reason: str | None
    time_until_unlock: str | None


def lockout_tier(lockout_count: int) -> LockoutTier:
    index = min(max(lockout_count, 0), len(LOCKOUT_PROGRESSION) - 1)
    return LOCKOUT_PROGRESSION[index]


def _resolve_notifier(notifier: SecurityNotifier | None) -> SecurityNotifier:
    return notifier if notifier is not None else email_notifier


async def _release_lock(
    db: AsyncSession,
    user_id: UUID,
    *conditions,
) -> bool:
    """Clear the lock if ``conditions`` still hold. True only for the caller whose UPDATE matched."""
    result = await db.execute(
        update(UserSecurity)
        .where(UserSecurity.user_id == user_id, UserSecurity.is_locked.is_(True), *conditions)
        .values(is_locked=False, lockout_until=None, last_lockout_reason=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def is_account_locked(
    db: AsyncSession,
    user_id: UUID,
    notifier: SecurityNotifier | None = None,
) -> LockStatus:
    """
    Report whether a user is currently locked out.

    Side-effect free except for the lazy auto-unlock: the first check after
    ``lockout_until`` has passed clears the lock and writes a single
    automatic ACCOUNT_UNLOCKED entry. Later checks find nothing to clear.
    """
    record = await get_security_record(db, user_id)
    if record is None or not record.is_locked:
        return LockStatus(locked=False)

    now = utc_now()
    lockout_until = ensure_utc(record.lockout_until)
    if lockout_until is not None and lockout_until > now:
        return LockStatus(locked=True, unlock_at=lockout_until, reason=record.last_lockout_reason)

    released = await _release_lock(
        db,
        user_id,
        or_(UserSecurity.lockout_until.is_(None), UserSecurity.lockout_until <= now),
    )
    if not released:
        # Another request already performed the unlock
        return LockStatus(locked=False)

    await audit_log(
        db,
        AuditEvent.ACCOUNT_UNLOCKED,
        user_id=user_id,
        details={
            "reason": "Automatic unlock - lockout period expired",
            "unlock_type": UNLOCK_AUTOMATIC,
            "unlocked_by": "system",
        },
    )
    await db.commit()
    logger.info(f"Lockout for user {user_id} expired, account unlocked")

    sender = _resolve_notifier(notifier)
    await notify_user(
        db,
        user_id,
        "account_unlocked",
        lambda user: sender.send_account_unlocked_email(user.email, user.name, UNLOCK_AUTOMATIC),
    )
    return LockStatus(locked=False)


async def lock_account(
    db: AsyncSession,
    user_id: UUID,
    tier: LockoutTier,
    reason: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    notifier: SecurityNotifier | None = None,
) -> datetime | None:
    """
    Lock an account for ``tier.duration``.

    The lock flag, expiry, reason and the lockout_count increment are written
    by one conditional UPDATE. A request that finds the account already
    locked does nothing.

    Returns:
        The new ``lockout_until``, or None when another request holds the lock
    """
    now = utc_now()
    lockout_until = now + tier.duration
    result = await db.execute(
        update(UserSecurity)
        .where(
            UserSecurity.user_id == user_id,
            or_(
                UserSecurity.is_locked.is_(False),
                UserSecurity.lockout_until.is_(None),
                UserSecurity.lockout_until <= now,
            ),
        )
        .values(
            is_locked=True,
            lockout_until=lockout_until,
            last_lockout_reason=reason,
            lockout_count=UserSecurity.lockout_count + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None

    record = await get_security_record(db, user_id)
    await audit_log(
        db,
        AuditEvent.ACCOUNT_LOCKED,
        user_id=user_id,
        details={
            "reason": reason,
            "lockout_until": lockout_until.isoformat(),
            "lockout_count": record.lockout_count if record else None,
            "duration_minutes": int(tier.duration.total_seconds() // 60),
        },
        ip_address=ip_address,
        user_agent=user_agent,
        successful=False,
    )
    await db.commit()
    logger.warning(
        f"Account {user_id} locked until {lockout_until.isoformat()} "
        f"(lockout #{record.lockout_count if record else '?'})"
    )

    sender = _resolve_notifier(notifier)
    await notify_user(
        db,
        user_id,
        "account_locked",
        lambda user: sender.send_account_locked_email(user.email, user.name, lockout_until, reason),
    )
    return lockout_until


async def record_failed_attempt(
    db: AsyncSession,
    user_id: UUID,
    ip_address: str | None,
    user_agent: str | None,
    reason: str = "Failed login attempt",
    notifier: SecurityNotifier | None = None,
) -> FailedAttemptResult:
    """
    Record a failed login and re-evaluate lockout and suspicious activity.

    The LOGIN_FAILURE entry is written before counting, so the current
    failure is part of the count. An already-locked account still gets the
    audit entry but is not escalated further.
    """
    await get_or_create_security_record(db, user_id)
    status = await is_account_locked(db, user_id, notifier=notifier)

    await log_login_failure(db, user_id, ip_address, user_agent, reason)

    outcome = FailedAttemptResult(locked=status.locked, unlock_at=status.unlock_at)
    if not status.locked:
        record = await get_security_record(db, user_id)
        tier = lockout_tier(record.lockout_count)
        failures = await count_recent_failures(db, user_id, FAILURE_WINDOW)
        if failures >= tier.max_failed_attempts:
            unlock_at = await lock_account(
                db,
                user_id,
                tier,
                "Too many failed login attempts",
                ip_address=ip_address,
                user_agent=user_agent,
                notifier=notifier,
            )
            if unlock_at is not None:
                outcome = FailedAttemptResult(
                    locked=True, unlock_at=unlock_at, newly_locked=True, lockout_tier=tier
                )
            else:
                # Lost the race to a concurrent failure that locked first
                current = await is_account_locked(db, user_id, notifier=notifier)
                outcome = FailedAttemptResult(locked=current.locked, unlock_at=current.unlock_at)

    suspicious = await check_suspicious_activity(db, user_id, notifier=notifier)
    outcome.password_reset_forced = suspicious.triggered
    await db.commit()
    return outcome


async def unlock_account(
    db: AsyncSession,
    user_id: UUID,
    reason: str,
    admin_id: UUID | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    notifier: SecurityNotifier | None = None,
) -> bool:
    """
    Administratively unlock an account.

    Returns:
        False when the account was not locked
    """
    released = await _release_lock(db, user_id)
    if not released:
        return False

    unlock_type = UNLOCK_ADMIN if admin_id is not None else UNLOCK_AUTOMATIC
    await audit_log(
        db,
        AuditEvent.ACCOUNT_UNLOCKED,
        user_id=user_id,
        details={
            "reason": reason,
            "unlock_type": unlock_type,
            "unlocked_by": str(admin_id) if admin_id is not None else "system",
        },
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await db.commit()
    logger.info(f"Account {user_id} unlocked ({unlock_type}): {reason}")

    sender = _resolve_notifier(notifier)
    await notify_user(
        db,
        user_id,
        "account_unlocked",
        lambda user: sender.send_account_unlocked_email(user.email, user.name, unlock_type),
    )
    return True


async def record_successful_login(
    db: AsyncSession,
    user_id: UUID,
    ip_address: str | None,
    user_agent: str | None,
) -> None:
    """Write LOGIN_SUCCESS and forgive all lockout history."""
    await get_or_create_security_record(db, user_id)
    await update_security_record(db, user_id, lockout_count=0)
    await log_login_success(db, user_id, ip_address, user_agent)
    await db.commit()


async def get_security_status(
    db: AsyncSession,
    user_id: UUID,
    notifier: SecurityNotifier | None = None,
) -> SecurityStatus:
    """
    Security state for admin and self-service display.

    Raises:
        SecurityRecordNotFoundError: the user does not exist
    """
    lock = await is_account_locked(db, user_id, notifier=notifier)
    record = await get_security_record(db, user_id)
    if record is None:
        user_exists = await db.execute(select(User.id).where(User.id == user_id))
        if user_exists.scalar_one_or_none() is None:
            raise SecurityRecordNotFoundError(user_id)
        return SecurityStatus(
            is_locked=False,
            lockout_count=0,
            lockout_until=None,
            last_lockout_reason=None,
            force_password_reset=False,
            force_password_reset_reason=None,
            time_until_unlock=None,
        )

    time_until_unlock = None
    if lock.locked and lock.unlock_at is not None:
        time_until_unlock = format_time_remaining(lock.unlock_at - utc_now())

    return SecurityStatus(
        is_locked=lock.locked,
        lockout_count=record.lockout_count,
        lockout_until=lock.unlock_at,
        last_lockout_reason=record.last_lockout_reason,
        force_password_reset=record.force_password_reset,
        force_password_reset_reason=record.force_password_reset_reason,
        time_until_unlock=time_until_unlock,
    )


async def get_locked_accounts(
    db: AsyncSession,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[tuple[UserSecurity, User]], int]:
    """Accounts whose lock has not yet expired, soonest expiry first."""
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    now = utc_now()
    conditions = (UserSecurity.is_locked.is_(True), UserSecurity.lockout_until > now)

    total = await db.execute(select(func.count()).select_from(UserSecurity).where(*conditions))
    result = await db.execute(
        select(UserSecurity, User)
        .join(User, User.id == UserSecurity.user_id)
        .where(*conditions)
        .order_by(UserSecurity.lockout_until.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return [(record, user) for record, user in result.all()], total.scalar() or 0
