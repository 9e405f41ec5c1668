from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from jobtrail.models.audit_log import AuditEvent


class AuditLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID | None
    event: AuditEvent
    details: dict | None
    ip_address: str | None
    user_agent: str | None
    successful: bool
    created_at: datetime


class AuditLogListResponse(BaseModel):
    items: list[AuditLogEntry]
    total: int
    page: int
    limit: int
