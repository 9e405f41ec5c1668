from jobtrail.models.audit_log import SECURITY_EVENTS, AuditEvent, AuditLog
from jobtrail.models.password_reset_token import PasswordResetToken
from jobtrail.models.user import User, UserRole
from jobtrail.models.user_security import UserSecurity

__all__ = [
    "AuditEvent",
    "AuditLog",
    "PasswordResetToken",
    "SECURITY_EVENTS",
    "User",
    "UserRole",
    "UserSecurity",
]
