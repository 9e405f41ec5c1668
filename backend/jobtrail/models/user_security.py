"""
Per-user security record.

One row per user, created the first time the lockout engine needs it. The
lock flag, expiry and reason are always written together in a single UPDATE.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobtrail.db.base import Base, TimestampMixin, UUIDMixin


class UserSecurity(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "user_security"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    lockout_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lockout_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_lockout_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    force_password_reset: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    force_password_reset_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<UserSecurity user={self.user_id} locked={self.is_locked} count={self.lockout_count}>"
