# audit_schema.py
from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


class AuditEntryRead(BaseModel):
    id: int
    created_at: datetime
    organization_id: Optional[int] = None
    principal_id: Optional[int] = None
    action: str
    outcome: str
    reason: Optional[str] = None
    detail: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
