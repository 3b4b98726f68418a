# budget_schema.py
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime

from models.models import BudgetPeriod


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class CategoryRead(BaseModel):
    id: int
    name: str
    organization_id: int

    model_config = ConfigDict(from_attributes=True)


class BudgetUpsert(BaseModel):
    category_id: int
    limit_amount: float = Field(..., gt=0)
    period: BudgetPeriod = BudgetPeriod.MONTHLY


class BudgetRead(BaseModel):
    id: int
    user_id: int
    category_id: int
    organization_id: int
    limit_amount: float
    period: BudgetPeriod
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BudgetWithSpending(BudgetRead):
    spent: float = 0.0
    remaining: float = 0.0
    percentage: float = 0.0
