# quota_schema.py
import math
from pydantic import BaseModel, ConfigDict
from typing import Optional

from models.models import ResourceKind


class QuotaDecision(BaseModel):
    """Outcome of a quota reservation. ``remaining`` is ``math.inf`` when unlimited."""

    allowed: bool
    resource_kind: ResourceKind
    limit: int
    current: int
    remaining: float = 0

    model_config = ConfigDict(frozen=True)

    @property
    def unlimited(self) -> bool:
        return math.isinf(self.remaining)


# ============================================================
# Usage read model (JSON safe: None means unlimited)
# ============================================================
class QuotaUsageRead(BaseModel):
    resource_kind: ResourceKind
    limit: Optional[int] = None
    current: int
    remaining: Optional[int] = None
    can_add_more: bool
