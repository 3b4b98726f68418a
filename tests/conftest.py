"""Shared fixtures: a fresh SQLite file per test, seeded plans, a manual clock."""

from __future__ import annotations

import itertools
import os
from datetime import datetime, timedelta

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-identity-tokens")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["INVITATION_SWEEP_INTERVAL_SECONDS"] = "0"
os.environ["SQLITE_BUSY_TIMEOUT_SECONDS"] = "0.2"
os.environ["TRANSACTION_RETRY_BACKOFF_SECONDS"] = "0"

import pytest
from sqlmodel import Session

from core.access import AccessGate
from core.database import build_engine, create_db_and_tables
from models.models import Organization, OrganizationStatus, User, UserRole
from schemas.principal_schema import Principal
from services.audit_service import AuditLog
from services.invitation_service import InvitationService
from services.quota_service import QuotaEnforcer, seed_subscription_plans


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'ledgerly-test.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return lambda: Session(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2025, 3, 10, 12, 0, 0))


@pytest.fixture
def audit(session_factory, clock) -> AuditLog:
    return AuditLog(session_factory, clock)


@pytest.fixture
def gate(audit) -> AccessGate:
    return AccessGate(audit)


@pytest.fixture
def plans(session):
    return {plan.slug: plan for plan in seed_subscription_plans(session)}


@pytest.fixture
def quota(session, audit, plans) -> QuotaEnforcer:
    return QuotaEnforcer(session, audit)


@pytest.fixture
def invitations(session, audit, gate, quota, clock) -> InvitationService:
    return InvitationService(session, audit=audit, gate=gate, quota=quota, clock=clock)


_ids = itertools.count(1)


@pytest.fixture
def make_org(session, plans):
    def _make(plan: str = "free", status: OrganizationStatus = OrganizationStatus.ACTIVE) -> Organization:
        n = next(_ids)
        org = Organization(name=f"Org {n}", slug=f"org-{n}", status=status, plan_id=plans[plan].id)
        session.add(org)
        session.commit()
        session.refresh(org)
        return org

    return _make


@pytest.fixture
def make_user(session):
    def _make(
        org=None,
        role: UserRole = UserRole.ADMIN,
        email: str | None = None,
        is_active: bool = True,
        is_superuser: bool = False,
    ) -> User:
        n = next(_ids)
        user = User(
            external_id=f"idp|user-{n}",
            email=email or f"user{n}@example.com",
            role=role,
            is_active=is_active,
            is_superuser=is_superuser,
            organization_id=org.id if org is not None else None,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def principal_for(make_user):
    def _make(org=None, role: UserRole = UserRole.ADMIN, **kwargs) -> Principal:
        return Principal.from_user(make_user(org, role=role, **kwargs))

    return _make
