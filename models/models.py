# models/models.py
from typing import Optional, List, Dict
from datetime import datetime, timezone
from enum import Enum

from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, Enum as SAEnum, Index, JSON, UniqueConstraint, text


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column in this schema is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_column(enum_cls, **kwargs) -> Column:
    # Stored as VARCHAR holding the enum *value*, loaded back as the enum member
    return Column(
        SAEnum(
            enum_cls,
            values_callable=lambda members: [m.value for m in members],
            native_enum=False,
            length=20,
        ),
        **kwargs,
    )


# ============================================================
# ENUMS
# ============================================================
class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"
    ACCOUNTANT = "accountant"


class OrganizationStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ResourceKind(str, Enum):
    USERS = "users"
    INVOICES = "invoices"
    CUSTOMERS = "customers"
    EXPENSES = "expenses"


class BudgetPeriod(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


UNLIMITED = -1

# Allowed organization status changes; DELETED is terminal
ORGANIZATION_STATUS_TRANSITIONS: Dict[OrganizationStatus, frozenset] = {
    OrganizationStatus.ACTIVE: frozenset({OrganizationStatus.SUSPENDED, OrganizationStatus.DELETED}),
    OrganizationStatus.SUSPENDED: frozenset({OrganizationStatus.ACTIVE, OrganizationStatus.DELETED}),
    OrganizationStatus.DELETED: frozenset(),
}


# ============================================================
# SUBSCRIPTION PLAN (shared, never owned by an organization)
# ============================================================
class SubscriptionPlan(SQLModel, table=True):
    __tablename__ = "subscription_plan"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=50, nullable=False)
    slug: str = Field(max_length=50, unique=True, index=True, nullable=False)
    description: Optional[str] = Field(default=None, max_length=500)
    price: float = Field(default=0.0)
    currency: str = Field(default="USD", max_length=3)

    # Limits; UNLIMITED (-1) disables the ceiling
    max_users: int = Field(default=1)
    max_invoices: int = Field(default=10)
    max_customers: int = Field(default=10)
    max_expenses: int = Field(default=50)

    features: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_active: bool = Field(default=True)
    is_public: bool = Field(default=True)
    sort_order: int = Field(default=0)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    organizations: List["Organization"] = Relationship(back_populates="plan")

    def limit_for(self, kind: ResourceKind) -> int:
        return {
            ResourceKind.USERS: self.max_users,
            ResourceKind.INVOICES: self.max_invoices,
            ResourceKind.CUSTOMERS: self.max_customers,
            ResourceKind.EXPENSES: self.max_expenses,
        }[ResourceKind(kind)]


# ============================================================
# ORGANIZATION (tenant)
# ============================================================
class Organization(SQLModel, table=True):
    __tablename__ = "organization"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    slug: str = Field(max_length=50, unique=True, index=True)
    status: OrganizationStatus = Field(
        default=OrganizationStatus.ACTIVE,
        sa_column=_enum_column(OrganizationStatus, nullable=False, index=True),
    )
    plan_id: Optional[int] = Field(default=None, foreign_key="subscription_plan.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    plan: Optional["SubscriptionPlan"] = Relationship(back_populates="organizations")
    users: List["User"] = Relationship(back_populates="organization")
    invitations: List["Invitation"] = Relationship(back_populates="organization")


# ============================================================
# USER
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"
    __table_args__ = (UniqueConstraint("organization_id", "email", name="uq_org_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    # Subject issued by the identity provider
    external_id: str = Field(max_length=255, unique=True, index=True, nullable=False)
    email: str = Field(max_length=255, index=True, nullable=False)
    full_name: Optional[str] = Field(default=None, max_length=100)

    role: UserRole = Field(
        default=UserRole.USER,
        sa_column=_enum_column(UserRole, nullable=False, index=True),
    )
    is_active: bool = Field(default=True)
    # Platform operator flag, independent of the per-organization role
    is_superuser: bool = Field(default=False)
    last_login_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    # Nullable until the user is synced into an organization
    organization_id: Optional[int] = Field(default=None, foreign_key="organization.id", index=True)
    organization: Optional["Organization"] = Relationship(back_populates="users")


# ============================================================
# INVITATION
# ============================================================
class Invitation(SQLModel, table=True):
    __tablename__ = "invitation"
    __table_args__ = (
        # At most one PENDING invitation per (organization, email)
        Index(
            "uq_invitation_pending_email",
            "organization_id",
            "email",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(max_length=255, nullable=False, index=True)
    token: str = Field(max_length=255, unique=True, nullable=False, index=True)
    role: UserRole = Field(
        default=UserRole.USER,
        sa_column=_enum_column(UserRole, nullable=False),
    )
    status: InvitationStatus = Field(
        default=InvitationStatus.PENDING,
        sa_column=_enum_column(InvitationStatus, nullable=False, index=True),
    )
    invited_at: datetime = Field(default_factory=utcnow, index=True)
    expires_at: datetime = Field(nullable=False, index=True)
    accepted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    invited_by_id: Optional[int] = Field(default=None, foreign_key="user.id")
    accepted_by_id: Optional[int] = Field(default=None, foreign_key="user.id")

    # Tenant scoping
    organization_id: int = Field(foreign_key="organization.id", index=True)
    organization: Optional["Organization"] = Relationship(back_populates="invitations")

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


# ============================================================
# COUNTABLE TENANT RESOURCES
# ============================================================
class Customer(SQLModel, table=True):
    __tablename__ = "customer"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=200)
    email: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utcnow)

    organization_id: int = Field(foreign_key="organization.id", index=True)


class Invoice(SQLModel, table=True):
    __tablename__ = "invoice"
    id: Optional[int] = Field(default=None, primary_key=True)
    number: str = Field(max_length=100, index=True)
    total: float = Field(default=0.0)
    created_at: datetime = Field(default_factory=utcnow)

    organization_id: int = Field(foreign_key="organization.id", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    customer_id: Optional[int] = Field(default=None, foreign_key="customer.id")


class Expense(SQLModel, table=True):
    __tablename__ = "expense"
    id: Optional[int] = Field(default=None, primary_key=True)
    amount: float = Field(default=0.0)
    description: Optional[str] = Field(default=None, max_length=500)
    date: datetime = Field(default_factory=utcnow, index=True)
    created_at: datetime = Field(default_factory=utcnow)

    organization_id: int = Field(foreign_key="organization.id", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    category_id: Optional[int] = Field(default=None, foreign_key="expense_category.id", index=True)


# ============================================================
# EXPENSE CATEGORY / BUDGET
# ============================================================
class ExpenseCategory(SQLModel, table=True):
    __tablename__ = "expense_category"
    __table_args__ = (UniqueConstraint("organization_id", "name", name="uq_org_category_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    created_at: datetime = Field(default_factory=utcnow)

    organization_id: int = Field(foreign_key="organization.id", index=True)
    budgets: List["Budget"] = Relationship(back_populates="category")


class Budget(SQLModel, table=True):
    __tablename__ = "budget"
    __table_args__ = (UniqueConstraint("user_id", "category_id", name="uq_budget_user_category"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    limit_amount: float = Field(gt=0)
    period: BudgetPeriod = Field(
        default=BudgetPeriod.MONTHLY,
        sa_column=_enum_column(BudgetPeriod, nullable=False),
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    organization_id: int = Field(foreign_key="organization.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    category_id: int = Field(foreign_key="expense_category.id", index=True)

    category: Optional["ExpenseCategory"] = Relationship(back_populates="budgets")


# ============================================================
# AUDIT / DECISION LOG (append-only)
# ============================================================
class AuditEntry(SQLModel, table=True):
    __tablename__ = "audit_entry"

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    organization_id: Optional[int] = Field(default=None, index=True)
    principal_id: Optional[int] = Field(default=None, index=True)
    # Capability name or transition name (e.g. "invitation.accepted")
    action: str = Field(max_length=100, index=True)
    outcome: str = Field(max_length=20)
    reason: Optional[str] = Field(default=None, max_length=100)
    detail: Optional[str] = None


# ============================================================
# DEFAULT SUBSCRIPTION PLANS (constant)
# ============================================================
DEFAULT_SUBSCRIPTION_PLANS: List[Dict] = [
    {
        "name": "Free",
        "slug": "free",
        "description": "Perfect for getting started with basic invoicing",
        "price": 0.0,
        "max_users": 1,
        "max_invoices": 10,
        "max_customers": 10,
        "max_expenses": 50,
        "features": ["basic_invoicing", "basic_expenses"],
        "sort_order": 1,
    },
    {
        "name": "Pro",
        "slug": "pro",
        "description": "For growing businesses that need more power",
        "price": 29.0,
        "max_users": 5,
        "max_invoices": 100,
        "max_customers": 100,
        "max_expenses": 500,
        "features": [
            "basic_invoicing",
            "basic_expenses",
            "advanced_reports",
            "custom_branding",
            "team_collaboration",
            "email_support",
        ],
        "sort_order": 2,
    },
    {
        "name": "Enterprise",
        "slug": "enterprise",
        "description": "Unlimited everything for large organizations",
        "price": 99.0,
        "max_users": 999999,
        "max_invoices": UNLIMITED,
        "max_customers": UNLIMITED,
        "max_expenses": UNLIMITED,
        "features": [
            "basic_invoicing",
            "basic_expenses",
            "advanced_reports",
            "custom_branding",
            "team_collaboration",
            "email_support",
            "api_access",
            "priority_support",
            "custom_integrations",
            "dedicated_account_manager",
        ],
        "sort_order": 3,
    },
]


# ============================================================
# EXPORTS
# ============================================================
__all__ = [
    "utcnow",
    "UserRole",
    "OrganizationStatus",
    "InvitationStatus",
    "ResourceKind",
    "BudgetPeriod",
    "UNLIMITED",
    "ORGANIZATION_STATUS_TRANSITIONS",
    "SubscriptionPlan",
    "Organization",
    "User",
    "Invitation",
    "Customer",
    "Invoice",
    "Expense",
    "ExpenseCategory",
    "Budget",
    "AuditEntry",
    "DEFAULT_SUBSCRIPTION_PLANS",
]
