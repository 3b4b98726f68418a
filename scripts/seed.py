# scripts/seed.py

import os
import sys
import argparse

from dotenv import load_dotenv
from sqlmodel import Session, select

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# ✅ Load environment variables
load_dotenv()

from core.database import create_db_and_tables, engine
from models.models import Organization, OrganizationStatus, SubscriptionPlan, User, UserRole, utcnow
from services.quota_service import seed_subscription_plans


def _get_or_create_org(session: Session, name: str, slug: str, plan_slug: str) -> Organization:
    org = session.exec(select(Organization).where(Organization.slug == slug)).first()
    if org:
        return org

    plan = session.exec(select(SubscriptionPlan).where(SubscriptionPlan.slug == plan_slug)).first()
    org = Organization(name=name, slug=slug, status=OrganizationStatus.ACTIVE, plan_id=plan.id if plan else None)
    session.add(org)
    session.commit()
    session.refresh(org)
    print(f"✅ Created organization {name} ({plan_slug} plan)")
    return org


def _get_or_create_user(session: Session, external_id: str, email: str, full_name: str, role: UserRole, org_id, is_superuser: bool = False):
    user = session.exec(select(User).where(User.external_id == external_id)).first()
    if user:
        return user

    user = User(
        external_id=external_id,
        email=email,
        full_name=full_name,
        role=role,
        is_active=True,
        is_superuser=is_superuser,
        organization_id=org_id,
        created_at=utcnow(),
    )
    session.add(user)
    session.commit()
    print(f"✅ Added {role.value} {email}")
    return user


def seed_dev_data():
    """Seed development database with plans, a demo organization and users."""
    print("🌱 Seeding development data...")

    with Session(engine) as session:
        seed_subscription_plans(session)
        print("✅ Subscription plans in place")

        org = _get_or_create_org(session, "Demo Organization", "demo", "pro")

        _get_or_create_user(session, "dev|admin", "admin@demo.com", "Admin User", UserRole.ADMIN, org.id)
        _get_or_create_user(session, "dev|accountant", "accountant@demo.com", "Accountant User", UserRole.ACCOUNTANT, org.id)
        _get_or_create_user(session, "dev|member", "member@demo.com", "Member User", UserRole.USER, org.id)

        # Platform operator, not bound to any tenant
        _get_or_create_user(session, "dev|operator", "operator@demo.com", "Platform Operator", UserRole.ADMIN, None, is_superuser=True)

        print("🌱 Development data seeding complete.")


def seed_staging_data():
    """Seed staging database with minimal safe data."""
    print("🌱 Seeding staging data...")

    with Session(engine) as session:
        seed_subscription_plans(session)
        org = _get_or_create_org(session, "Staging Org", "staging", "free")
        _get_or_create_user(session, "staging|admin", "staging-admin@ledgerly.dev", "Staging Admin", UserRole.ADMIN, org.id)

        print("🌱 Staging data seeding complete.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed database for dev or staging")
    parser.add_argument("--env", choices=["dev", "staging"], required=True, help="Target environment")
    args = parser.parse_args()

    create_db_and_tables()

    if args.env == "dev":
        seed_dev_data()
    elif args.env == "staging":
        seed_staging_data()
