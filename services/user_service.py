# services/user_service.py
"""Member administration inside one organization: roles and activation."""

import logging
from typing import Callable, Optional

from sqlmodel import Session, select

from core.access import AccessGate, Capability
from core.database import transaction
from core.exceptions import InvalidTransition, NotFound
from models.models import User, UserRole, utcnow
from schemas.principal_schema import Principal
from services.audit_service import AuditLog

logger = logging.getLogger(__name__)


class UserService:
    def __init__(
        self,
        session: Session,
        audit: Optional[AuditLog] = None,
        gate: Optional[AccessGate] = None,
        clock: Callable = utcnow,
    ) -> None:
        self.session = session
        self._audit = audit
        self._gate = gate or AccessGate(audit)
        self._clock = clock

    def list_members(self, principal: Principal) -> list[User]:
        self._gate.require(principal, Capability.USER_VIEW, principal.organization_id)
        with transaction(self.session):
            rows = self.session.exec(
                select(User).where(User.organization_id == principal.organization_id).order_by(User.created_at, User.id)
            ).all()
        return list(rows)

    # ==================================================================
    # Role change (admin only, never an accountant)
    # ==================================================================
    def change_role(self, principal: Principal, user_id: int, role: UserRole) -> User:
        role = UserRole(role)
        user, previous = self._update_member(
            principal,
            user_id,
            Capability.USER_MANAGE_ROLES,
            lambda user: _swap(user, "role", role),
        )
        if previous != role:
            logger.info("User %s role changed %s -> %s by user %s", user_id, previous.value, role.value, principal.user_id)
            self._record("user.role_changed", user, principal, {"from": previous.value, "to": role.value})
        return user

    # ==================================================================
    # Activate / deactivate
    # ==================================================================
    def set_active(self, principal: Principal, user_id: int, is_active: bool) -> User:
        if user_id == principal.user_id and not is_active:
            raise InvalidTransition("You cannot deactivate your own account.")

        user, previous = self._update_member(
            principal,
            user_id,
            Capability.USER_UPDATE,
            lambda user: _swap(user, "is_active", is_active),
        )
        if previous != is_active:
            action = "user.activated" if is_active else "user.deactivated"
            logger.info("User %s %s by user %s", user_id, action.split(".")[1], principal.user_id)
            self._record(action, user, principal, {})
        return user

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------
    def _update_member(self, principal: Principal, user_id: int, capability: Capability, apply):
        with transaction(self.session):
            user = self.session.get(User, user_id)
            if not user:
                raise NotFound(f"User {user_id} not found.")
            # The target's organization decides the tenant check
            self._gate.require(principal, capability, user.organization_id)
            previous = apply(user)
            self.session.add(user)
        self.session.refresh(user)
        return user, previous

    def _record(self, action: str, user: User, principal: Principal, detail: dict) -> None:
        if self._audit is None:
            return
        self._audit.record_transition(
            action,
            organization_id=user.organization_id,
            principal_id=principal.user_id,
            detail={"user_id": user.id, **detail},
        )


def _swap(user: User, field: str, value):
    previous = getattr(user, field)
    setattr(user, field, value)
    return previous
