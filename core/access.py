# core/access.py
"""Access gate: pure allow/deny decisions for a principal inside one tenant.

Rules, first match wins:
  1. target organization differs from the principal's  -> CrossTenant
  2. principal inactive                                 -> AccountInactive
  3. admin-only capability, principal not ADMIN         -> InsufficientRole
  4. ACCOUNTANT-restricted capability, ACCOUNTANT       -> RoleForbidden
  5. otherwise                                          -> Allow

Cross-tenant operations go through ``check_platform`` and the separate
``PlatformCapability`` namespace, which requires the superuser flag.
"""

import logging
from enum import Enum
from typing import Optional

from core.exceptions import AccessDenied, DenyReason
from models.models import UserRole
from schemas.access_schema import AccessDecision
from schemas.principal_schema import Principal
from services.audit_service import AuditLog

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    # User management
    USER_VIEW = "user:view"
    USER_CREATE = "user:create"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"
    USER_MANAGE_ROLES = "user:manage_roles"

    # Organization management
    ORG_VIEW = "org:view"
    ORG_UPDATE = "org:update"
    ORG_MANAGE_SETTINGS = "org:manage_settings"
    ORG_VIEW_USAGE = "org:view_usage"
    ORG_VIEW_AUDIT = "org:view_audit"

    # Invoices / customers / expenses
    INVOICE_VIEW = "invoice:view"
    INVOICE_CREATE = "invoice:create"
    INVOICE_UPDATE = "invoice:update"
    INVOICE_DELETE = "invoice:delete"
    CUSTOMER_VIEW = "customer:view"
    CUSTOMER_CREATE = "customer:create"
    CUSTOMER_UPDATE = "customer:update"
    CUSTOMER_DELETE = "customer:delete"
    EXPENSE_VIEW = "expense:view"
    EXPENSE_CREATE = "expense:create"
    EXPENSE_UPDATE = "expense:update"
    EXPENSE_DELETE = "expense:delete"

    # Budgets and categories
    BUDGET_VIEW = "budget:view"
    BUDGET_MANAGE = "budget:manage"
    CATEGORY_CREATE = "category:create"

    # Invitations
    INVITATION_VIEW = "invitation:view"
    INVITATION_CREATE = "invitation:create"
    INVITATION_REVOKE = "invitation:revoke"
    INVITATION_RESEND = "invitation:resend"

    # Reports
    REPORT_VIEW = "report:view"
    REPORT_EXPORT = "report:export"


class PlatformCapability(str, Enum):
    ORGANIZATION_LIST = "platform:organization_list"
    ORGANIZATION_STATUS_CHANGE = "platform:organization_status_change"
    INVITATION_STATS_VIEW = "platform:invitation_stats_view"
    INVITATION_SWEEP = "platform:invitation_sweep"


ADMIN_ONLY_CAPABILITIES = frozenset({
    Capability.USER_CREATE,
    Capability.USER_UPDATE,
    Capability.USER_DELETE,
    Capability.USER_MANAGE_ROLES,
    Capability.ORG_UPDATE,
    Capability.ORG_MANAGE_SETTINGS,
    Capability.ORG_VIEW_AUDIT,
    Capability.INVITATION_VIEW,
    Capability.INVITATION_CREATE,
    Capability.INVITATION_REVOKE,
    Capability.INVITATION_RESEND,
})

# Budget management, category creation and user-role changes
ACCOUNTANT_RESTRICTED_CAPABILITIES = frozenset({
    Capability.BUDGET_MANAGE,
    Capability.CATEGORY_CREATE,
    Capability.USER_MANAGE_ROLES,
})


def _role_deny_reason(role: UserRole, capability: Capability) -> Optional[DenyReason]:
    # Exhaustive over UserRole: a new role must be handled here explicitly
    if role is UserRole.ADMIN:
        return None
    if role is UserRole.USER:
        if capability in ADMIN_ONLY_CAPABILITIES:
            return DenyReason.INSUFFICIENT_ROLE
        return None
    if role is UserRole.ACCOUNTANT:
        if capability in ADMIN_ONLY_CAPABILITIES:
            return DenyReason.INSUFFICIENT_ROLE
        if capability in ACCOUNTANT_RESTRICTED_CAPABILITIES:
            return DenyReason.ROLE_FORBIDDEN
        return None
    raise ValueError(f"Unhandled role {role!r}")


class AccessGate:
    def __init__(self, audit: Optional[AuditLog] = None) -> None:
        self._audit = audit

    # ------------------------------------------------------------
    # Per-tenant gate
    # ------------------------------------------------------------
    def check(self, principal: Principal, capability: Capability, organization_id: Optional[int]) -> AccessDecision:
        capability = Capability(capability)

        if principal.organization_id is None or principal.organization_id != organization_id:
            reason = DenyReason.CROSS_TENANT
        elif not principal.is_active:
            reason = DenyReason.ACCOUNT_INACTIVE
        else:
            reason = _role_deny_reason(UserRole(principal.role), capability)

        if reason is None:
            return AccessDecision.allow()

        self._record_deny(principal, capability.value, reason, organization_id)
        return AccessDecision.deny(reason)

    def require(self, principal: Principal, capability: Capability, organization_id: Optional[int]) -> None:
        decision = self.check(principal, capability, organization_id)
        if not decision.allowed:
            raise AccessDenied(decision.reason, Capability(capability).value)

    # ------------------------------------------------------------
    # Platform (superuser) gate: the only cross-tenant path
    # ------------------------------------------------------------
    def check_platform(self, principal: Principal, capability: PlatformCapability) -> AccessDecision:
        capability = PlatformCapability(capability)

        if not principal.is_active:
            reason = DenyReason.ACCOUNT_INACTIVE
        elif not principal.is_superuser:
            reason = DenyReason.INSUFFICIENT_ROLE
        else:
            return AccessDecision.allow()

        self._record_deny(principal, capability.value, reason, principal.organization_id)
        return AccessDecision.deny(reason)

    def require_platform(self, principal: Principal, capability: PlatformCapability) -> None:
        decision = self.check_platform(principal, capability)
        if not decision.allowed:
            raise AccessDenied(decision.reason, PlatformCapability(capability).value)

    def _record_deny(self, principal: Principal, capability: str, reason: DenyReason, organization_id: Optional[int]) -> None:
        logger.warning(
            "Access denied: user=%s capability=%s target_org=%s reason=%s",
            principal.user_id, capability, organization_id, reason.value,
        )
        if self._audit is None:
            return
        try:
            self._audit.record_denied(
                capability,
                reason.value,
                principal_id=principal.user_id,
                organization_id=organization_id,
            )
        except Exception:
            logger.exception("Audit log rejected deny record for user %s", principal.user_id)
