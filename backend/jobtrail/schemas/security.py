from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SecurityStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    is_locked: bool
    lockout_count: int
    lockout_until: datetime | None
    last_lockout_reason: str | None
    force_password_reset: bool
    force_password_reset_reason: str | None
    time_until_unlock: str | None


class UnlockRequest(BaseModel):
    reason: str = Field(default="Unlocked by administrator", max_length=500)


class ForcePasswordResetRequest(BaseModel):
    reason: str = Field(default="Password reset required by administrator", max_length=500)


class ForcePasswordResetResponse(BaseModel):
    user_id: UUID
    force_password_reset: bool
    newly_flagged: bool


class LockedAccount(BaseModel):
    user_id: UUID
    email: str
    name: str | None
    lockout_until: datetime | None
    lockout_count: int
    last_lockout_reason: str | None
    time_until_unlock: str | None


class LockedAccountListResponse(BaseModel):
    items: list[LockedAccount]
    total: int
    page: int
    limit: int


class LockoutReasonCount(BaseModel):
    reason: str
    count: int


class SecurityStatisticsResponse(BaseModel):
    total_locked_accounts: int
    total_forced_password_resets: int
    recent_failed_logins: int
    recent_lockouts: int
    top_lockout_reasons: list[LockoutReasonCount]
