from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional
from datetime import datetime

from models.models import InvitationStatus, UserRole


# ============================================================
# Create Invitation (input)
# ============================================================
class InvitationCreate(BaseModel):
    email: EmailStr
    role: UserRole = UserRole.USER
    # organization_id is set server-side (from inviter's org)
    # token and expiry are generated server-side


# ============================================================
# Read Invitation (output, token excluded)
# ============================================================
class InvitationRead(BaseModel):
    id: int
    email: str
    role: UserRole
    status: InvitationStatus
    invited_at: datetime
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    invited_by_id: Optional[int] = None
    organization_id: int

    model_config = ConfigDict(from_attributes=True)


class InvitationCreated(InvitationRead):
    """Returned once to the inviter; the link is delivered out of band."""

    token: str


# ============================================================
# Accept Invitation
# ============================================================
class InvitationAccept(BaseModel):
    token: str = Field(..., min_length=1)
    full_name: Optional[str] = Field(default=None, max_length=100)


# ============================================================
# Statistics (read-side projection)
# ============================================================
class InvitationStats(BaseModel):
    pending: int = 0
    accepted: int = 0
    expired: int = 0
    revoked: int = 0
    total: int = 0
    recent_invitations: int = 0
    expiring_soon: int = 0


class InvitationPage(BaseModel):
    data: list[InvitationRead]
    total: int
    limit: int
    offset: int
    has_more: bool


# ============================================================
# Verify (public, before accepting)
# ============================================================
class InvitationVerification(BaseModel):
    valid: bool
    # not_found | already_used | revoked | expired
    reason: Optional[str] = None
    email: Optional[str] = None
    role: Optional[UserRole] = None
    organization_name: Optional[str] = None
    expires_at: Optional[datetime] = None
