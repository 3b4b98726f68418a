# routes/organization.py
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from core.access import AccessGate, Capability
from core.database import run_with_retry
from core.deps import get_audit_log, get_gate, get_organization_service, get_quota_enforcer
from core.security import get_current_principal
from schemas.audit_schema import AuditEntryRead
from schemas.organization_schema import OrganizationRead, SubscriptionPlanRead
from schemas.principal_schema import Principal
from schemas.quota_schema import QuotaUsageRead
from services.audit_service import AuditLog
from services.organization_service import OrganizationService
from services.quota_service import QuotaEnforcer

router = APIRouter(prefix="/organizations", tags=["Organizations"])


# ==================================================================
#  ✅ GET MY ORGANIZATION
# ==================================================================
@router.get("/current", response_model=OrganizationRead)
def get_my_organization(
    principal: Principal = Depends(get_current_principal),
    gate: AccessGate = Depends(get_gate),
    service: OrganizationService = Depends(get_organization_service),
):
    """Get current user's organization"""
    gate.require(principal, Capability.ORG_VIEW, principal.organization_id)
    return service.get(principal.organization_id)


# ==================================================================
#  ✅ PLAN USAGE (live counts against plan limits)
# ==================================================================
@router.get("/current/usage", response_model=List[QuotaUsageRead])
def get_my_usage(
    principal: Principal = Depends(get_current_principal),
    gate: AccessGate = Depends(get_gate),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    gate.require(principal, Capability.ORG_VIEW_USAGE, principal.organization_id)
    return run_with_retry(lambda: quota.usage(principal.organization_id))


# ==================================================================
#  ✅ MY SUBSCRIPTION PLAN (limits and feature flags)
# ==================================================================
@router.get("/current/plan", response_model=SubscriptionPlanRead)
def get_my_plan(
    principal: Principal = Depends(get_current_principal),
    gate: AccessGate = Depends(get_gate),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    gate.require(principal, Capability.ORG_VIEW_USAGE, principal.organization_id)
    return run_with_retry(lambda: quota.plan_view(principal.organization_id))


# ==================================================================
#  ✅ AUDIT TRAIL (admin)
# ==================================================================
@router.get("/current/audit", response_model=List[AuditEntryRead])
def get_my_audit_trail(
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(default=100, ge=1, le=500),
    principal: Principal = Depends(get_current_principal),
    gate: AccessGate = Depends(get_gate),
    audit: AuditLog = Depends(get_audit_log),
):
    gate.require(principal, Capability.ORG_VIEW_AUDIT, principal.organization_id)
    return audit.entries(principal.organization_id, since=since, until=until, limit=limit)
