# routes/admin.py
"""Platform operator endpoints. Every route goes through the superuser gate."""

from typing import List, Optional

from fastapi import APIRouter, Depends

from core.database import run_with_retry
from core.deps import get_organization_service
from core.security import get_current_principal
from models.models import OrganizationStatus
from schemas.invitation_schema import InvitationStats
from schemas.organization_schema import OrganizationRead, OrganizationStatusUpdate
from schemas.principal_schema import Principal
from services.organization_service import OrganizationService

router = APIRouter(prefix="/admin", tags=["Platform Admin"])


# ==================================================================
#  ✅ ORGANIZATIONS
# ==================================================================
@router.get("/organizations", response_model=List[OrganizationRead])
def list_organizations(
    status: Optional[OrganizationStatus] = None,
    principal: Principal = Depends(get_current_principal),
    service: OrganizationService = Depends(get_organization_service),
):
    return service.list_organizations(principal, status=status)


@router.patch("/organizations/{organization_id}/status", response_model=OrganizationRead)
def change_organization_status(
    organization_id: int,
    payload: OrganizationStatusUpdate,
    principal: Principal = Depends(get_current_principal),
    service: OrganizationService = Depends(get_organization_service),
):
    return run_with_retry(lambda: service.change_status(principal, organization_id, payload.status))


# ==================================================================
#  ✅ INVITATIONS (cross-tenant)
# ==================================================================
@router.get("/invitations/stats", response_model=InvitationStats)
def platform_invitation_stats(
    principal: Principal = Depends(get_current_principal),
    service: OrganizationService = Depends(get_organization_service),
):
    return run_with_retry(lambda: service.invitation_stats(principal))


@router.post("/invitations/sweep")
def sweep_expired_invitations(
    principal: Principal = Depends(get_current_principal),
    service: OrganizationService = Depends(get_organization_service),
):
    """Advance every stale PENDING invitation to EXPIRED now."""
    expired = run_with_retry(lambda: service.sweep_invitations(principal))
    return {"expired": expired}
