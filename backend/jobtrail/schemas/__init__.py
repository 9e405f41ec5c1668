from jobtrail.schemas.audit import AuditLogEntry, AuditLogListResponse
from jobtrail.schemas.auth import (
    LoginRequest,
    MessageResponse,
    PasswordResetComplete,
    PasswordResetRequest,
    RefreshRequest,
    TokenResponse,
)
from jobtrail.schemas.security import (
    ForcePasswordResetRequest,
    ForcePasswordResetResponse,
    LockedAccount,
    LockedAccountListResponse,
    SecurityStatisticsResponse,
    SecurityStatusResponse,
    UnlockRequest,
)

__all__ = [
    "AuditLogEntry",
    "AuditLogListResponse",
    "ForcePasswordResetRequest",
    "ForcePasswordResetResponse",
    "LockedAccount",
    "LockedAccountListResponse",
    "LoginRequest",
    "MessageResponse",
    "PasswordResetComplete",
    "PasswordResetRequest",
    "RefreshRequest",
    "SecurityStatisticsResponse",
    "SecurityStatusResponse",
    "TokenResponse",
    "UnlockRequest",
]
