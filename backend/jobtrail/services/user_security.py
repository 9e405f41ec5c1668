"""
Persistence for the per-user security record.

Records are created lazily on first need and never deleted. All state
transitions go through UPDATE statements rather than read-modify-write on a
loaded instance.
"""
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from jobtrail.core.exceptions import SecurityRecordNotFoundError
from jobtrail.models.user import User
from jobtrail.models.user_security import UserSecurity

logger = logging.getLogger(__name__)


async def get_security_record(db: AsyncSession, user_id: UUID) -> UserSecurity | None:
    # populate_existing so UPDATE statements issued earlier in the session are visible
    result = await db.execute(
        select(UserSecurity)
        .where(UserSecurity.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_security_record(db: AsyncSession, user_id: UUID) -> UserSecurity:
    """
    Load a user's security record, creating it on first use.

    The insert is committed immediately. Call this before adding other pending
    changes to the session: a concurrent creation is resolved by rolling back
    and re-reading the winner's row.

    Raises:
        SecurityRecordNotFoundError: the user does not exist
    """
    record = await get_security_record(db, user_id)
    if record is not None:
        return record

    user_exists = await db.execute(select(User.id).where(User.id == user_id))
    if user_exists.scalar_one_or_none() is None:
        raise SecurityRecordNotFoundError(user_id)

    db.add(UserSecurity(user_id=user_id))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.debug(f"Security record for user {user_id} created concurrently")

    record = await get_security_record(db, user_id)
    if record is None:
        raise SecurityRecordNotFoundError(user_id)
    return record


async def update_security_record(db: AsyncSession, user_id: UUID, **patch: Any) -> int:
    """
    Apply a patch to a user's security record in one UPDATE.

    Doesn't commit.

    Returns:
        Number of rows updated (0 when the record does not exist)
    """
    if not patch:
        return 0
    unknown = set(patch) - set(UserSecurity.__table__.columns.keys())
    if unknown:
        raise ValueError(f"Unknown security record fields: {sorted(unknown)}")

    result = await db.execute(
        update(UserSecurity)
        .where(UserSecurity.user_id == user_id)
        .values(**patch)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
