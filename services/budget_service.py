import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, func

from core.access import AccessGate, Capability
from core.database import transaction
from core.exceptions import AlreadyExists, NotFound
from models.models import Budget, BudgetPeriod, Expense, ExpenseCategory, UserRole, utcnow
from schemas.budget_schema import BudgetWithSpending
from schemas.principal_schema import Principal
from services.audit_service import AuditLog

logger = logging.getLogger(__name__)


# ============================================================
# Period windows [start, end)
# ============================================================
def period_window(period: BudgetPeriod, now: datetime) -> tuple[datetime, datetime]:
    period = BudgetPeriod(period)
    if period == BudgetPeriod.YEARLY:
        start = datetime(now.year, 1, 1)
        return start, datetime(now.year + 1, 1, 1)

    if period == BudgetPeriod.QUARTERLY:
        first_month = 3 * ((now.month - 1) // 3) + 1
        start = datetime(now.year, first_month, 1)
        months = 3
    else:
        start = datetime(now.year, now.month, 1)
        months = 1

    end_month = start.month + months
    end = datetime(start.year + (end_month - 1) // 12, (end_month - 1) % 12 + 1, 1)
    return start, end


class BudgetService:
    def __init__(
        self,
        session: Session,
        audit: Optional[AuditLog] = None,
        gate: Optional[AccessGate] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self._gate = gate or AccessGate(audit)
        self._clock = clock

    # ✅ Categories
    def create_category(self, principal: Principal, name: str) -> ExpenseCategory:
        self._gate.require(principal, Capability.CATEGORY_CREATE, principal.organization_id)

        category = ExpenseCategory(name=name.strip(), organization_id=principal.organization_id)
        try:
            with transaction(self.session):
                self.session.add(category)
        except IntegrityError:
            raise AlreadyExists(f"Category '{name}' already exists in this organization.")
        self.session.refresh(category)
        logger.info("Category %s created in org %s", category.id, principal.organization_id)
        return category

    def list_categories(self, principal: Principal) -> list[ExpenseCategory]:
        self._gate.require(principal, Capability.BUDGET_VIEW, principal.organization_id)
        with transaction(self.session):
            rows = self.session.exec(
                select(ExpenseCategory)
                .where(ExpenseCategory.organization_id == principal.organization_id)
                .order_by(ExpenseCategory.name)
            ).all()
        return list(rows)

    # ✅ Budgets
    def upsert_budget(
        self,
        principal: Principal,
        category_id: int,
        limit_amount: float,
        period: BudgetPeriod = BudgetPeriod.MONTHLY,
    ) -> Budget:
        self._gate.require(principal, Capability.BUDGET_MANAGE, principal.organization_id)

        with transaction(self.session):
            category = self.session.get(ExpenseCategory, category_id)
            # Categories of other tenants are reported as missing
            if not category or category.organization_id != principal.organization_id:
                raise NotFound(f"Category {category_id} not found.")

        now = self._clock()
        try:
            budget = self._save_budget(principal, category_id, limit_amount, period, now)
        except IntegrityError:
            # A concurrent request inserted this (user, category) budget first
            logger.info("Budget for user %s / category %s created concurrently; updating it", principal.user_id, category_id)
            budget = self._save_budget(principal, category_id, limit_amount, period, now)
        self.session.refresh(budget)

        logger.info("Budget %s saved for user %s (category %s)", budget.id, principal.user_id, category_id)
        return budget

    def _find_budget(self, user_id: int, category_id: int) -> Optional[Budget]:
        return self.session.exec(
            select(Budget).where(Budget.user_id == user_id, Budget.category_id == category_id)
        ).first()

    def _save_budget(self, principal: Principal, category_id: int, limit_amount: float, period: BudgetPeriod, now: datetime) -> Budget:
        with transaction(self.session):
            budget = self._find_budget(principal.user_id, category_id)
            if budget is None:
                budget = Budget(
                    user_id=principal.user_id,
                    category_id=category_id,
                    organization_id=principal.organization_id,
                    created_at=now,
                )
            budget.limit_amount = float(limit_amount)
            budget.period = BudgetPeriod(period)
            budget.updated_at = now
            self.session.add(budget)
        return budget

    def list_budgets(self, principal: Principal, now: Optional[datetime] = None) -> list[BudgetWithSpending]:
        self._gate.require(principal, Capability.BUDGET_VIEW, principal.organization_id)
        now = now or self._clock()

        statement = select(Budget).where(Budget.organization_id == principal.organization_id)
        if UserRole(principal.role) == UserRole.USER:
            statement = statement.where(Budget.user_id == principal.user_id)

        results = []
        with transaction(self.session):
            for budget in self.session.exec(statement.order_by(Budget.id)).all():
                start, end = period_window(budget.period, now)
                spent = self.session.exec(
                    select(func.coalesce(func.sum(Expense.amount), 0.0)).where(
                        Expense.organization_id == budget.organization_id,
                        Expense.user_id == budget.user_id,
                        Expense.category_id == budget.category_id,
                        Expense.date >= start,
                        Expense.date < end,
                    )
                ).one()
                spent = float(spent or 0.0)
                results.append(
                    BudgetWithSpending(
                        id=budget.id,
                        user_id=budget.user_id,
                        category_id=budget.category_id,
                        organization_id=budget.organization_id,
                        limit_amount=budget.limit_amount,
                        period=budget.period,
                        updated_at=budget.updated_at,
                        spent=spent,
                        remaining=budget.limit_amount - spent,
                        percentage=(spent / budget.limit_amount) * 100 if budget.limit_amount > 0 else 0.0,
                    )
                )
        return results
