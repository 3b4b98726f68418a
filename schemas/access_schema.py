# access_schema.py
from pydantic import BaseModel, ConfigDict
from typing import Optional

from core.exceptions import DenyReason


class AccessDecision(BaseModel):
    allowed: bool
    reason: Optional[DenyReason] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> "AccessDecision":
        return cls(allowed=False, reason=reason)
