"""
Password reset flow.

Reset links carry a random token; only its SHA-256 digest is stored. A
completed reset is the only path that clears a forced-reset flag.
"""
import hashlib
import logging
import secrets
from datetime import timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobtrail.core.config import settings
from jobtrail.core.exceptions import PasswordResetTokenError
from jobtrail.core.security import get_password_hash
from jobtrail.models.audit_log import AuditEvent
from jobtrail.models.password_reset_token import PasswordResetToken
from jobtrail.models.user import User
from jobtrail.services.audit import audit_log
from jobtrail.services.notification import SecurityNotifier, email_notifier, notify_user
from jobtrail.services.suspicious_activity import clear_force_password_reset
from jobtrail.services.user_security import get_or_create_security_record
from jobtrail.utils.time import utc_now

logger = logging.getLogger(__name__)


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def create_reset_token(db: AsyncSession, user_id) -> str:
    """
    Issue a new reset token for a user, replacing any outstanding ones.

    Doesn't commit.

    Returns:
        The raw token, to be sent to the user and never stored
    """
    await db.execute(
        delete(PasswordResetToken).where(
            PasswordResetToken.user_id == user_id,
            PasswordResetToken.used_at.is_(None),
        )
    )
    token = secrets.token_urlsafe(32)
    db.add(
        PasswordResetToken(
            user_id=user_id,
            token_hash=hash_reset_token(token),
            expires_at=utc_now() + timedelta(minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES),
        )
    )
    await db.flush()
    return token


async def request_password_reset(
    db: AsyncSession,
    email: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    notifier: SecurityNotifier | None = None,
) -> bool:
    """
    Email a reset link if the address belongs to an active account.

    Callers must respond identically either way so accounts can't be
    enumerated.

    Returns:
        True when a link was issued
    """
    user = await get_user_by_email(db, email)
    if user is None or not user.is_active:
        logger.info("Password reset requested for unknown or inactive account")
        return False

    token = await create_reset_token(db, user.id)
    await audit_log(
        db,
        AuditEvent.PASSWORD_RESET_REQUESTED,
        user_id=user.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await db.commit()

    reset_url = f"{settings.FRONTEND_URL}/reset-password?token={token}"
    sender = notifier if notifier is not None else email_notifier
    await notify_user(
        db,
        user.id,
        "password_reset",
        lambda u: sender.send_password_reset_email(u.email, u.name, reset_url),
    )
    return True


async def complete_password_reset(
    db: AsyncSession,
    token: str,
    new_password: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> User:
    """
    Set a new password using a reset token and clear any forced-reset flag.

    Raises:
        PasswordResetTokenError: token unknown, expired or already used
    """
    result = await db.execute(
        select(PasswordResetToken).where(PasswordResetToken.token_hash == hash_reset_token(token))
    )
    reset_token = result.scalar_one_or_none()
    if reset_token is None or not reset_token.is_usable:
        raise PasswordResetTokenError()

    await get_or_create_security_record(db, reset_token.user_id)

    # Single use: only one concurrent completion can claim the token
    claimed = await db.execute(
        update(PasswordResetToken)
        .where(PasswordResetToken.id == reset_token.id, PasswordResetToken.used_at.is_(None))
        .values(used_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        raise PasswordResetTokenError()

    user = await db.get(User, reset_token.user_id)
    if user is None:
        raise PasswordResetTokenError()

    user.password_hash = get_password_hash(new_password)
    await audit_log(
        db,
        AuditEvent.PASSWORD_CHANGE,
        user_id=user.id,
        details={"method": "reset_token"},
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await clear_force_password_reset(db, user.id, ip_address=ip_address, user_agent=user_agent)
    logger.info(f"Password reset completed for user {user.id}")
    return user


async def cleanup_expired_reset_tokens(db: AsyncSession) -> int:
    """Delete expired or used reset tokens. Doesn't commit."""
    result = await db.execute(
        delete(PasswordResetToken).where(
            or_(
                PasswordResetToken.expires_at < utc_now(),
                PasswordResetToken.used_at.is_not(None),
            )
        )
    )
    return result.rowcount or 0
