# organization_schema.py
from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime

from models.models import OrganizationStatus


class SubscriptionPlanRead(BaseModel):
    id: int
    name: str
    slug: str
    max_users: int
    max_invoices: int
    max_customers: int
    max_expenses: int
    features: list[str] = []
    is_active: bool
    is_public: bool

    model_config = ConfigDict(from_attributes=True)


class OrganizationRead(BaseModel):
    id: int
    name: str
    slug: str
    status: OrganizationStatus
    plan_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrganizationStatusUpdate(BaseModel):
    status: OrganizationStatus
