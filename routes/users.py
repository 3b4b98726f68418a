# routes/users.py
from typing import List

from fastapi import APIRouter, Depends
from sqlmodel import Session

from models.models import User
from schemas.principal_schema import Principal
from schemas.user_schema import UserRead, UserRoleUpdate, UserStatusUpdate, UserSync
from core.database import get_session, run_with_retry
from core.deps import get_user_service
from core.exceptions import NotFound
from core.security import PrincipalResolver, get_current_principal, get_identity
from services.user_service import UserService

import logging
logger = logging.getLogger(__name__)


router = APIRouter(tags=["Users"])


# ----------------------------------------------------------------------
# ✅ Sync identity (first sign-in creates the unbound user)
# ----------------------------------------------------------------------
@router.post("/sync", response_model=UserRead)
def sync_user(
    payload: UserSync,
    external_id: str = Depends(get_identity),
    session: Session = Depends(get_session),
):
    resolver = PrincipalResolver(session)
    user = resolver.provision(external_id, payload.email, payload.full_name)
    resolver.record_login(resolver.resolve_identity(external_id))
    session.refresh(user)
    return user


# ----------------------------------------------------------------------
# ✅ Get Current User
# ----------------------------------------------------------------------
@router.get("/me", response_model=UserRead)
def get_current_user_endpoint(
    principal: Principal = Depends(get_current_principal),
    session: Session = Depends(get_session),
):
    """Return the resolved principal's user record."""
    user = session.get(User, principal.user_id)
    if not user:
        raise NotFound("User not found.")
    return user


# ----------------------------------------------------------------------
# ✅ List members of my organization
# ----------------------------------------------------------------------
@router.get("", response_model=List[UserRead])
def list_members(
    principal: Principal = Depends(get_current_principal),
    service: UserService = Depends(get_user_service),
):
    return service.list_members(principal)


# ----------------------------------------------------------------------
# ✅ Change a member's role (admin)
# ----------------------------------------------------------------------
@router.put("/{user_id}/role", response_model=UserRead)
def change_member_role(
    user_id: int,
    payload: UserRoleUpdate,
    principal: Principal = Depends(get_current_principal),
    service: UserService = Depends(get_user_service),
):
    return run_with_retry(lambda: service.change_role(principal, user_id, payload.role))


# ----------------------------------------------------------------------
# ✅ Activate / deactivate a member (admin)
# ----------------------------------------------------------------------
@router.patch("/{user_id}/status", response_model=UserRead)
def change_member_status(
    user_id: int,
    payload: UserStatusUpdate,
    principal: Principal = Depends(get_current_principal),
    service: UserService = Depends(get_user_service),
):
    return run_with_retry(lambda: service.set_active(principal, user_id, payload.is_active))
