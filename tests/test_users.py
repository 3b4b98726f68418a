"""Tests for member role changes and activation."""

from __future__ import annotations

import pytest

from core.access import Capability
from core.exceptions import AccessDenied, DenyReason, InvalidTransition, NotFound
from core.security import PrincipalResolver
from models.models import UserRole
from services.user_service import UserService


@pytest.fixture
def users(session, audit, gate, clock) -> UserService:
    return UserService(session, audit=audit, gate=gate, clock=clock)


class TestChangeRole:
    def test_admin_promotes_member(self, users, audit, make_org, make_user, principal_for) -> None:
        org = make_org("pro")
        admin = principal_for(org)
        member = make_user(org, role=UserRole.USER)

        updated = users.change_role(admin, member.id, UserRole.ACCOUNTANT)

        assert updated.role == UserRole.ACCOUNTANT
        [entry] = audit.entries(org.id)
        assert entry.action == "user.role_changed"
        assert entry.principal_id == admin.user_id

    def test_accountant_cannot_change_roles(self, users, make_org, make_user, principal_for) -> None:
        org = make_org("pro")
        member = make_user(org, role=UserRole.USER)
        with pytest.raises(AccessDenied) as excinfo:
            users.change_role(principal_for(org, role=UserRole.ACCOUNTANT), member.id, UserRole.ADMIN)
        assert excinfo.value.code == "InsufficientRole"

    def test_admin_of_another_organization_is_cross_tenant(self, users, make_org, make_user, principal_for) -> None:
        member = make_user(make_org("pro"), role=UserRole.USER)
        with pytest.raises(AccessDenied) as excinfo:
            users.change_role(principal_for(make_org("pro")), member.id, UserRole.ADMIN)
        assert excinfo.value.code == "CrossTenant"

    def test_unknown_user(self, users, make_org, principal_for) -> None:
        with pytest.raises(NotFound):
            users.change_role(principal_for(make_org("pro")), 424242, UserRole.USER)

    def test_same_role_is_not_audited(self, users, audit, make_org, make_user, principal_for) -> None:
        org = make_org("pro")
        member = make_user(org, role=UserRole.USER)
        users.change_role(principal_for(org), member.id, UserRole.USER)
        assert audit.entries(org.id) == []


class TestSetActive:
    def test_deactivated_member_is_denied_everything(self, session, users, gate, make_org, make_user, principal_for) -> None:
        org = make_org("pro")
        member = make_user(org, role=UserRole.USER)

        users.set_active(principal_for(org), member.id, False)

        principal = PrincipalResolver(session).resolve_identity(member.external_id)
        assert principal.is_active is False
        decision = gate.check(principal, Capability.ORG_VIEW, org.id)
        assert decision.allowed is False
        assert decision.reason == DenyReason.ACCOUNT_INACTIVE

    def test_reactivation(self, users, audit, make_org, make_user, principal_for) -> None:
        org = make_org("pro")
        admin = principal_for(org)
        member = make_user(org, role=UserRole.USER, is_active=False)

        assert users.set_active(admin, member.id, True).is_active is True
        assert [e.action for e in audit.entries(org.id)] == ["user.activated"]

    def test_admin_cannot_deactivate_self(self, users, make_org, principal_for) -> None:
        admin = principal_for(make_org("pro"))
        with pytest.raises(InvalidTransition):
            users.set_active(admin, admin.user_id, False)

    def test_member_cannot_deactivate_others(self, users, make_org, make_user, principal_for) -> None:
        org = make_org("pro")
        other = make_user(org, role=UserRole.USER)
        with pytest.raises(AccessDenied) as excinfo:
            users.set_active(principal_for(org, role=UserRole.USER), other.id, False)
        assert excinfo.value.code == "InsufficientRole"


class TestListMembers:
    def test_lists_own_organization_only(self, users, make_org, make_user, principal_for) -> None:
        org = make_org("pro")
        member = principal_for(org, role=UserRole.USER)
        colleague = make_user(org, role=UserRole.ACCOUNTANT)
        make_user(make_org("pro"))

        ids = [u.id for u in users.list_members(member)]
        assert ids == [member.user_id, colleague.id]
