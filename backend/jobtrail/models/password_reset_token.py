"""
Password reset token storage.

Only the SHA-256 digest of the emailed token is stored. Tokens are single use
and expire after PASSWORD_RESET_TOKEN_EXPIRE_MINUTES.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobtrail.db.base import Base, TimestampMixin, UUIDMixin
from jobtrail.utils.time import ensure_utc, utc_now


class PasswordResetToken(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "password_reset_tokens"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_password_reset_tokens_expires_at", "expires_at"),
    )

    @property
    def is_expired(self) -> bool:
        return utc_now() > ensure_utc(self.expires_at)

    @property
    def is_usable(self) -> bool:
        return self.used_at is None and not self.is_expired

    def __repr__(self) -> str:
        return f"<PasswordResetToken user={self.user_id} expires={self.expires_at}>"
