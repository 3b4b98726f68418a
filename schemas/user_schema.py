# user_schema.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional
from datetime import datetime

from models.models import UserRole


class UserSync(BaseModel):
    email: EmailStr
    full_name: Optional[str] = Field(default=None, max_length=100)


class UserRead(BaseModel):
    id: int
    external_id: str
    email: str
    full_name: Optional[str] = None
    role: UserRole
    is_active: bool = True
    organization_id: Optional[int] = None
    last_login_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserRoleUpdate(BaseModel):
    role: UserRole


class UserStatusUpdate(BaseModel):
    is_active: bool
