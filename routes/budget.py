# routes/budget.py
from typing import List

from fastapi import APIRouter, Depends, status

from core.deps import get_budget_service
from core.security import get_current_principal
from schemas.budget_schema import BudgetRead, BudgetUpsert, BudgetWithSpending, CategoryCreate, CategoryRead
from schemas.principal_schema import Principal
from services.budget_service import BudgetService

router = APIRouter(prefix="/budgets", tags=["Budgets"])


# ==================================================================
#  ✅ BUDGETS WITH CURRENT-PERIOD SPENDING
# ==================================================================
@router.get("", response_model=List[BudgetWithSpending])
def list_budgets(
    principal: Principal = Depends(get_current_principal),
    service: BudgetService = Depends(get_budget_service),
):
    """USER sees own budgets; ADMIN and ACCOUNTANT see the organization's."""
    return service.list_budgets(principal)


# ==================================================================
#  ✅ CREATE / UPDATE BUDGET (not for accountants)
# ==================================================================
@router.put("", response_model=BudgetRead)
def upsert_budget(
    payload: BudgetUpsert,
    principal: Principal = Depends(get_current_principal),
    service: BudgetService = Depends(get_budget_service),
):
    return service.upsert_budget(principal, payload.category_id, payload.limit_amount, payload.period)


# ==================================================================
#  ✅ CATEGORIES
# ==================================================================
@router.get("/categories", response_model=List[CategoryRead])
def list_categories(
    principal: Principal = Depends(get_current_principal),
    service: BudgetService = Depends(get_budget_service),
):
    return service.list_categories(principal)


@router.post("/categories", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CategoryCreate,
    principal: Principal = Depends(get_current_principal),
    service: BudgetService = Depends(get_budget_service),
):
    return service.create_category(principal, payload.name)
