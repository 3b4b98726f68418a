"""Per-plan quota enforcement.

``reserve`` is advisory: it answers whether one more resource fits under the
plan limit given the caller's live count. Callers must run the count and the
insert inside one transaction that holds the organization write lock
(``consume`` takes it for them through ``lock_organization``).
"""

import logging
import math
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session, select, func

from core.config import settings
from core.database import transaction
from core.exceptions import NotFound, QuotaExceeded
from models.models import (
    Customer,
    DEFAULT_SUBSCRIPTION_PLANS,
    Expense,
    Invoice,
    Organization,
    ResourceKind,
    SubscriptionPlan,
    UNLIMITED,
    User,
)
from schemas.organization_schema import SubscriptionPlanRead
from schemas.quota_schema import QuotaDecision, QuotaUsageRead
from services.audit_service import AuditLog

logger = logging.getLogger(__name__)

# Tenant-scoped table for each countable resource
RESOURCE_MODELS = {
    ResourceKind.USERS: User,
    ResourceKind.INVOICES: Invoice,
    ResourceKind.CUSTOMERS: Customer,
    ResourceKind.EXPENSES: Expense,
}


class QuotaEnforcer:
    def __init__(self, session: Session, audit: Optional[AuditLog] = None, default_plan_slug: Optional[str] = None) -> None:
        self.session = session
        self._audit = audit
        self._default_plan_slug = default_plan_slug or settings.DEFAULT_PLAN_SLUG

    # ------------------------------------------------------------
    # Plan lookup
    # ------------------------------------------------------------
    def plan_for(self, organization_id: int) -> SubscriptionPlan:
        organization = self.session.get(Organization, organization_id)
        if not organization:
            raise NotFound(f"Organization {organization_id} not found.")

        plan = None
        if organization.plan_id is not None:
            plan = self.session.get(SubscriptionPlan, organization.plan_id)
        if plan is None:
            # Organizations without a plan reference fall back to the default plan
            plan = self.session.exec(
                select(SubscriptionPlan).where(SubscriptionPlan.slug == self._default_plan_slug)
            ).first()
        if plan is None:
            raise NotFound(f"No subscription plan found for organization {organization_id}.")
        return plan

    def plan_view(self, organization_id: int) -> SubscriptionPlanRead:
        with transaction(self.session):
            return SubscriptionPlanRead.model_validate(self.plan_for(organization_id))

    # ------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------
    def reserve(self, organization_id: int, kind: ResourceKind, current_count: int) -> QuotaDecision:
        kind = ResourceKind(kind)
        limit = self.plan_for(organization_id).limit_for(kind)

        if limit == UNLIMITED:
            return QuotaDecision(allowed=True, resource_kind=kind, limit=limit, current=current_count, remaining=math.inf)
        if current_count >= limit:
            return QuotaDecision(allowed=False, resource_kind=kind, limit=limit, current=current_count, remaining=0)
        # Accounts for the pending reservation itself
        return QuotaDecision(
            allowed=True,
            resource_kind=kind,
            limit=limit,
            current=current_count,
            remaining=limit - current_count - 1,
        )

    def require(
        self,
        organization_id: int,
        kind: ResourceKind,
        current_count: int,
        principal_id: Optional[int] = None,
    ) -> QuotaDecision:
        try:
            return self.check(organization_id, kind, current_count)
        except QuotaExceeded as exc:
            self.record_denied(organization_id, exc, principal_id)
            raise

    def check(self, organization_id: int, kind: ResourceKind, current_count: int) -> QuotaDecision:
        """Like ``require`` but leaves the audit record to the caller."""
        decision = self.reserve(organization_id, kind, current_count)
        if decision.allowed:
            return decision

        logger.warning(
            "Quota exceeded: org=%s kind=%s current=%s limit=%s",
            organization_id, decision.resource_kind.value, decision.current, decision.limit,
        )
        raise QuotaExceeded(decision.resource_kind.value, decision.limit, decision.current)

    def record_denied(self, organization_id: int, exc: QuotaExceeded, principal_id: Optional[int] = None) -> None:
        if self._audit is None:
            return
        self._audit.record_denied(
            f"quota:{exc.resource_kind}",
            QuotaExceeded.code,
            principal_id=principal_id,
            organization_id=organization_id,
            detail={"limit": exc.limit, "current": exc.current},
        )

    # ------------------------------------------------------------
    # Live counts
    # ------------------------------------------------------------
    def count(self, organization_id: int, kind: ResourceKind) -> int:
        model = RESOURCE_MODELS[ResourceKind(kind)]
        return self.session.exec(
            select(func.count(model.id)).where(model.organization_id == organization_id)
        ).one()

    def lock_organization(self, organization_id: int) -> Organization:
        """Take the organization's write lock for the rest of the transaction.

        A self-assigning UPDATE locks the row on PostgreSQL. On SQLite, where
        ``SELECT ... FOR UPDATE`` is ignored, the same statement takes the
        database write lock, so a second writer waits until this one commits.
        """
        result = self.session.exec(
            update(Organization)
            .where(Organization.id == organization_id)
            .values(updated_at=Organization.updated_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound(f"Organization {organization_id} not found.")
        return self.session.get(Organization, organization_id)

    def consume(self, organization_id: int, kind: ResourceKind, record, principal_id: Optional[int] = None):
        """Count, check and insert in the caller's transaction. Caller commits.

        On a quota deny the caller's transaction is rolled back before the
        deny is recorded.
        """
        kind = ResourceKind(kind)
        try:
            self.lock_organization(organization_id)
            current = self.count(organization_id, kind)
            self.check(organization_id, kind, current)
        except QuotaExceeded as exc:
            self.session.rollback()
            self.record_denied(organization_id, exc, principal_id)
            raise

        record.organization_id = organization_id
        self.session.add(record)
        self.session.flush()
        return record

    def usage(self, organization_id: int) -> list[QuotaUsageRead]:
        rows = []
        with transaction(self.session):
            for kind in ResourceKind:
                current = self.count(organization_id, kind)
                decision = self.reserve(organization_id, kind, current)
                rows.append(
                    QuotaUsageRead(
                        resource_kind=kind,
                        limit=None if decision.unlimited else decision.limit,
                        current=current,
                        remaining=None if decision.unlimited else max(0, decision.limit - current),
                        can_add_more=decision.allowed,
                    )
                )
        return rows


# ============================================================
# Plan catalogue seeding (idempotent)
# ============================================================
def seed_subscription_plans(session: Session) -> list[SubscriptionPlan]:
    plans = []
    for data in DEFAULT_SUBSCRIPTION_PLANS:
        plan = session.exec(select(SubscriptionPlan).where(SubscriptionPlan.slug == data["slug"])).first()
        if plan is None:
            plan = SubscriptionPlan(**data)
            session.add(plan)
            logger.info("Seeded subscription plan %s", data["slug"])
        plans.append(plan)
    session.commit()
    for plan in plans:
        session.refresh(plan)
    return plans
