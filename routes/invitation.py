# routes/invitation.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from core.access import AccessGate, Capability
from core.database import run_with_retry
from core.deps import get_gate, get_invitation_service
from core.security import get_current_principal, get_identity
from models.models import InvitationStatus
from schemas.invitation_schema import (
    InvitationAccept,
    InvitationCreate,
    InvitationCreated,
    InvitationPage,
    InvitationRead,
    InvitationStats,
    InvitationVerification,
)
from schemas.principal_schema import Principal
from schemas.user_schema import UserRead
from services.invitation_service import InvitationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Invitations"])


# ==================================================================
#  ✅ CREATE INVITATION (admin)
# ==================================================================
@router.post("", response_model=InvitationCreated, status_code=status.HTTP_201_CREATED)
def create_invitation(
    payload: InvitationCreate,
    principal: Principal = Depends(get_current_principal),
    service: InvitationService = Depends(get_invitation_service),
):
    """Invite an email into the caller's organization. The token is returned once."""
    return run_with_retry(
        lambda: service.create(principal.organization_id, payload.email, payload.role, invited_by=principal)
    )


# ==================================================================
#  ✅ LIST INVITATIONS (admin, own organization)
# ==================================================================
@router.get("", response_model=InvitationPage)
def list_invitations(
    status_filter: Optional[InvitationStatus] = Query(default=None, alias="status"),
    email: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_current_principal),
    gate: AccessGate = Depends(get_gate),
    service: InvitationService = Depends(get_invitation_service),
):
    gate.require(principal, Capability.INVITATION_VIEW, principal.organization_id)
    rows, total = run_with_retry(
        lambda: service.list(principal.organization_id, status=status_filter, email=email, limit=limit, offset=offset)
    )
    return InvitationPage(
        data=[InvitationRead.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(rows) < total,
    )


# ==================================================================
#  ✅ INVITATION STATS (admin, own organization)
# ==================================================================
@router.get("/stats", response_model=InvitationStats)
def invitation_stats(
    principal: Principal = Depends(get_current_principal),
    gate: AccessGate = Depends(get_gate),
    service: InvitationService = Depends(get_invitation_service),
):
    gate.require(principal, Capability.INVITATION_VIEW, principal.organization_id)
    return run_with_retry(lambda: service.stats(principal.organization_id))


# ==================================================================
#  ✅ VERIFY INVITATION TOKEN (public, before sign-up)
# ==================================================================
@router.get("/verify", response_model=InvitationVerification)
def verify_invitation(
    token: str = Query(..., min_length=1),
    service: InvitationService = Depends(get_invitation_service),
):
    return run_with_retry(lambda: service.verify(token))


# ==================================================================
#  ✅ ACCEPT INVITATION
# ==================================================================
@router.post("/accept", response_model=UserRead)
def accept_invitation(
    payload: InvitationAccept,
    external_id: str = Depends(get_identity),
    service: InvitationService = Depends(get_invitation_service),
):
    """Bind the calling identity to the inviting organization."""
    return run_with_retry(lambda: service.accept_by_token(payload.token, external_id, payload.full_name))


# ==================================================================
#  ✅ RESEND INVITATION (new token, fresh expiry)
# ==================================================================
@router.post("/{invitation_id}/resend", response_model=InvitationCreated)
def resend_invitation(
    invitation_id: int,
    principal: Principal = Depends(get_current_principal),
    service: InvitationService = Depends(get_invitation_service),
):
    return run_with_retry(lambda: service.resend(invitation_id, principal))


# ==================================================================
#  ✅ REVOKE INVITATION
# ==================================================================
@router.delete("/{invitation_id}", response_model=InvitationRead)
def revoke_invitation(
    invitation_id: int,
    principal: Principal = Depends(get_current_principal),
    service: InvitationService = Depends(get_invitation_service),
):
    return run_with_retry(lambda: service.revoke(invitation_id, principal))
