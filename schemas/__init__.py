from .access_schema import AccessDecision
from .audit_schema import AuditEntryRead
from .budget_schema import CategoryCreate, CategoryRead, BudgetUpsert, BudgetRead, BudgetWithSpending
from .invitation_schema import InvitationCreate, InvitationRead, InvitationCreated, InvitationAccept, InvitationStats, InvitationPage, InvitationVerification
from .organization_schema import OrganizationRead, OrganizationStatusUpdate, SubscriptionPlanRead
from .principal_schema import Principal
from .quota_schema import QuotaDecision, QuotaUsageRead
from .user_schema import UserSync, UserRead, UserRoleUpdate, UserStatusUpdate

__all__ = [
    # Access
    "AccessDecision", "Principal",

    # Audit
    "AuditEntryRead",

    # Budget
    "CategoryCreate", "CategoryRead", "BudgetUpsert", "BudgetRead", "BudgetWithSpending",

    # Invitation
    "InvitationCreate", "InvitationRead", "InvitationCreated", "InvitationAccept", "InvitationStats", "InvitationPage", "InvitationVerification",

    # Organization
    "OrganizationRead", "OrganizationStatusUpdate", "SubscriptionPlanRead",

    # Quota
    "QuotaDecision", "QuotaUsageRead",

    # User
    "UserSync", "UserRead", "UserRoleUpdate", "UserStatusUpdate",
]
