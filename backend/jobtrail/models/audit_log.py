"""
Security audit log.

Append-only record of authentication and account-protection events. Rows are
never updated; the retention sweep is the only thing that deletes them.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, validates

from jobtrail.db.base import Base, UUIDMixin
from jobtrail.utils.time import utc_now


class AuditEvent(str, Enum):
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGOUT = "LOGOUT"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET_COMPLETED = "PASSWORD_RESET_COMPLETED"
    PASSWORD_RESET_FORCED = "PASSWORD_RESET_FORCED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_UNLOCKED = "ACCOUNT_UNLOCKED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    MULTIPLE_FAILED_ATTEMPTS = "MULTIPLE_FAILED_ATTEMPTS"
    SECURITY_QUESTIONS_SETUP = "SECURITY_QUESTIONS_SETUP"
    SECURITY_QUESTION_VERIFY_SUCCESS = "SECURITY_QUESTION_VERIFY_SUCCESS"
    SECURITY_QUESTION_VERIFY_FAILURE = "SECURITY_QUESTION_VERIFY_FAILURE"
    SECONDARY_EMAIL_ADDED = "SECONDARY_EMAIL_ADDED"
    SECONDARY_EMAIL_CHANGED = "SECONDARY_EMAIL_CHANGED"
    SECONDARY_EMAIL_VERIFIED = "SECONDARY_EMAIL_VERIFIED"
    SECONDARY_EMAIL_RECOVERY = "SECONDARY_EMAIL_RECOVERY"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    ADMIN_LOGIN = "ADMIN_LOGIN"


# Events shown in a user's security history when no explicit filter is given
SECURITY_EVENTS = (
    AuditEvent.LOGIN_SUCCESS,
    AuditEvent.LOGIN_FAILURE,
    AuditEvent.ACCOUNT_LOCKED,
    AuditEvent.ACCOUNT_UNLOCKED,
    AuditEvent.PASSWORD_CHANGE,
    AuditEvent.PASSWORD_RESET_FORCED,
    AuditEvent.PASSWORD_RESET_COMPLETED,
    AuditEvent.SUSPICIOUS_ACTIVITY,
    AuditEvent.MULTIPLE_FAILED_ATTEMPTS,
)


class AuditLog(Base, UUIDMixin):
    __tablename__ = "audit_logs"

    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    event: Mapped[AuditEvent] = mapped_column(
        SAEnum(AuditEvent, name="auditevent"), nullable=False, index=True
    )
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True, index=True)  # IPv6 max length
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    successful: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )

    __table_args__ = (
        Index("ix_audit_logs_user_event_created", "user_id", "event", "created_at"),
    )

    @validates("event")
    def validate_event(self, key: str, value) -> AuditEvent:
        # Raises ValueError for kinds outside the closed set
        return AuditEvent(value)

    def __repr__(self) -> str:
        return f"<AuditLog {self.event} user={self.user_id} at {self.created_at}>"
