"""Tests for plan quota enforcement."""

from __future__ import annotations

import math

import pytest

from core.exceptions import NotFound, QuotaExceeded, TransientFailure
from models.models import Customer, Expense, ResourceKind, UNLIMITED, User, UserRole
from services.audit_service import AuditOutcome
from services.invitation_service import InvitationService
from services.quota_service import QuotaEnforcer, seed_subscription_plans


class TestReserve:
    def test_full_seat_count_is_denied(self, quota, make_org) -> None:
        org = make_org("pro")
        decision = quota.reserve(org.id, ResourceKind.USERS, 5)
        assert decision.allowed is False
        assert decision.limit == 5
        assert decision.current == 5

    def test_remaining_accounts_for_the_reservation(self, quota, make_org) -> None:
        org = make_org("pro")
        decision = quota.reserve(org.id, ResourceKind.USERS, 3)
        assert decision.allowed is True
        assert decision.remaining == 1

    @pytest.mark.parametrize("count", [10, 11, 50, 10_000])
    def test_deny_is_monotonic_in_count(self, quota, make_org, count) -> None:
        org = make_org("free")
        assert quota.reserve(org.id, ResourceKind.INVOICES, count).allowed is False

    @pytest.mark.parametrize("count", [0, 1, 500, 10**9])
    def test_unlimited_kind_is_never_denied(self, quota, make_org, count) -> None:
        org = make_org("enterprise")
        decision = quota.reserve(org.id, ResourceKind.EXPENSES, count)
        assert decision.allowed is True
        assert decision.limit == UNLIMITED
        assert math.isinf(decision.remaining)
        assert decision.unlimited is True

    def test_missing_plan_falls_back_to_default(self, session, quota, make_org) -> None:
        org = make_org("pro")
        org.plan_id = None
        session.add(org)
        session.commit()
        assert quota.plan_for(org.id).slug == "free"

    def test_unknown_organization(self, quota) -> None:
        with pytest.raises(NotFound):
            quota.reserve(9999, ResourceKind.USERS, 0)


class TestRequire:
    def test_raises_with_limit_and_current(self, quota, make_org) -> None:
        org = make_org("pro")
        with pytest.raises(QuotaExceeded) as excinfo:
            quota.require(org.id, ResourceKind.USERS, 5)
        assert excinfo.value.limit == 5
        assert excinfo.value.current == 5
        assert excinfo.value.resource_kind == "users"

    def test_deny_is_audited(self, quota, audit, make_org) -> None:
        org = make_org("free")
        with pytest.raises(QuotaExceeded):
            quota.require(org.id, ResourceKind.CUSTOMERS, 10, principal_id=42)

        [entry] = audit.entries(org.id)
        assert entry.action == "quota:customers"
        assert entry.outcome == AuditOutcome.DENIED
        assert entry.reason == "QuotaExceeded"
        assert entry.principal_id == 42


class TestConsume:
    def test_inserts_exactly_up_to_the_limit(self, session, quota, make_org) -> None:
        org = make_org("free")
        for i in range(10):
            quota.consume(org.id, ResourceKind.CUSTOMERS, Customer(name=f"Customer {i}"))
            session.commit()

        with pytest.raises(QuotaExceeded):
            quota.consume(org.id, ResourceKind.CUSTOMERS, Customer(name="One too many"))
        session.rollback()

        assert quota.count(org.id, ResourceKind.CUSTOMERS) == 10

    def test_counts_are_per_organization(self, session, quota, make_org) -> None:
        first, second = make_org("free"), make_org("free")
        quota.consume(first.id, ResourceKind.EXPENSES, Expense(amount=12.5))
        session.commit()

        assert quota.count(first.id, ResourceKind.EXPENSES) == 1
        assert quota.count(second.id, ResourceKind.EXPENSES) == 0

    def test_denied_consume_is_rolled_back_and_audited(self, session, quota, audit, make_org) -> None:
        org = make_org("free")
        for i in range(10):
            quota.consume(org.id, ResourceKind.CUSTOMERS, Customer(name=f"Customer {i}"))
        session.commit()

        with pytest.raises(QuotaExceeded):
            quota.consume(org.id, ResourceKind.CUSTOMERS, Customer(name="One too many"), principal_id=7)

        [entry] = audit.entries(org.id)
        assert entry.action == "quota:customers"
        assert entry.principal_id == 7


class TestSeatLock:
    """Two writers race for the last seat; the organization lock orders them."""

    def test_competing_accept_waits_for_the_lock_holder(
        self, session_factory, audit, clock, quota, invitations, make_org, make_user
    ) -> None:
        org = make_org("pro")
        for _ in range(4):
            make_user(org, role=UserRole.USER)
        invitations.create(org.id, "first@x.com")
        second = invitations.create(org.id, "second@x.com")
        org_id, second_id = org.id, second.id

        with session_factory() as holder_session, session_factory() as competitor_session:
            holder = QuotaEnforcer(holder_session, audit)
            holder.lock_organization(org_id)
            assert holder.count(org_id, ResourceKind.USERS) == 4

            competitor = InvitationService(competitor_session, audit=audit, clock=clock)
            # The holder still has the lock, so the competitor cannot count yet
            with pytest.raises(TransientFailure):
                competitor.accept(second_id, "idp|second")

            holder.consume(org_id, ResourceKind.USERS, User(external_id="idp|first", email="first@x.com"))
            holder_session.commit()

            with pytest.raises(QuotaExceeded):
                competitor.accept(second_id, "idp|second")

        assert quota.count(org_id, ResourceKind.USERS) == 5

    def test_lock_on_unknown_organization(self, quota) -> None:
        with pytest.raises(NotFound):
            quota.lock_organization(424242)


class TestUsage:
    def test_reports_every_kind(self, quota, make_org, make_user) -> None:
        org = make_org("free")
        make_user(org)
        usage = {row.resource_kind: row for row in quota.usage(org.id)}

        assert set(usage) == set(ResourceKind)
        assert usage[ResourceKind.USERS].current == 1
        assert usage[ResourceKind.USERS].remaining == 0
        assert usage[ResourceKind.USERS].can_add_more is False
        assert usage[ResourceKind.INVOICES].can_add_more is True

    def test_unlimited_is_reported_as_none(self, quota, make_org) -> None:
        org = make_org("enterprise")
        usage = {row.resource_kind: row for row in quota.usage(org.id)}
        assert usage[ResourceKind.INVOICES].limit is None
        assert usage[ResourceKind.INVOICES].remaining is None


class TestPlanSeeding:
    def test_seeding_is_idempotent(self, session, plans) -> None:
        again = seed_subscription_plans(session)
        assert sorted(p.id for p in again) == sorted(p.id for p in plans.values())

    def test_default_enterprise_limits(self, plans) -> None:
        enterprise = plans["enterprise"]
        assert enterprise.limit_for(ResourceKind.USERS) == 999999
        assert enterprise.limit_for(ResourceKind.CUSTOMERS) == UNLIMITED
        assert "api_access" in enterprise.features

    def test_plan_view_carries_limits_and_features(self, quota, make_org) -> None:
        view = quota.plan_view(make_org("enterprise").id)
        assert view.slug == "enterprise"
        assert view.max_customers == UNLIMITED
        assert "api_access" in view.features
