# principal_schema.py
from pydantic import BaseModel, ConfigDict
from typing import Optional

from models.models import UserRole


class Principal(BaseModel):
    """An authenticated actor with resolved role and organization binding."""

    user_id: int
    external_id: str
    organization_id: Optional[int] = None
    role: UserRole
    is_active: bool = True
    is_superuser: bool = False

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(
            user_id=user.id,
            external_id=user.external_id,
            organization_id=user.organization_id,
            role=user.role,
            is_active=user.is_active,
            is_superuser=user.is_superuser,
        )
