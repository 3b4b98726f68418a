"""HTTP translation: status codes and error bodies for the core's outcomes."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import exc as sa_exc
from sqlmodel import Session

from core.database import get_session
from core.deps import get_audit_log, get_invitation_service
from core.security import create_identity_token
from main import app
from models.models import UserRole
from services.invitation_service import InvitationService


@pytest.fixture
def client(engine, audit, plans):
    def _session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[get_audit_log] = lambda: audit
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(user) -> dict:
    return {"Authorization": f"Bearer {create_identity_token(user.external_id)}"}


class LockedSession(Session):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.calls = 0

    def exec(self, *args, **kwargs):
        self.calls += 1
        raise sa_exc.OperationalError("SELECT 1", {}, Exception("database is locked"))


class TestIdentityRoutes:
    def test_health(self, client) -> None:
        assert client.get("/health").json()["status"] == "ok"

    def test_missing_token_is_401(self, client) -> None:
        response = client.get("/users/me")
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthenticated"

    def test_unprovisioned_identity_redirects_to_setup(self, client) -> None:
        headers = {"Authorization": f"Bearer {create_identity_token('idp|fresh')}"}
        response = client.get("/users/me", headers=headers)
        assert response.status_code == 403
        assert response.json()["error"] == "AccountNotProvisioned"
        assert response.json()["redirect"] == "/setup"

    def test_sync_then_me(self, client) -> None:
        headers = {"Authorization": f"Bearer {create_identity_token('idp|fresh')}"}
        synced = client.post("/users/sync", json={"email": "Fresh@Example.com", "full_name": "Fresh"}, headers=headers)
        assert synced.status_code == 200
        assert synced.json()["organization_id"] is None

        me = client.get("/users/me", headers=headers)
        assert me.status_code == 200
        assert me.json()["email"] == "fresh@example.com"


class TestInvitationRoutes:
    def test_invite_accept_flow(self, client, make_org, make_user) -> None:
        org = make_org("pro")
        admin = make_user(org)

        created = client.post("/invitations", json={"email": "joiner@example.com", "role": "user"}, headers=_auth(admin))
        assert created.status_code == 201
        token = created.json()["token"]

        duplicate = client.post("/invitations", json={"email": "joiner@example.com"}, headers=_auth(admin))
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "DuplicatePending"

        joiner_headers = {"Authorization": f"Bearer {create_identity_token('idp|joiner')}"}
        accepted = client.post("/invitations/accept", json={"token": token}, headers=joiner_headers)
        assert accepted.status_code == 200
        assert accepted.json()["organization_id"] == org.id
        assert accepted.json()["role"] == "user"

        again = client.post("/invitations/accept", json={"token": token}, headers=joiner_headers)
        assert again.status_code == 409
        assert again.json()["error"] == "InvitationNotPending"

    def test_member_cannot_invite(self, client, make_org, make_user) -> None:
        org = make_org("pro")
        member = make_user(org, role=UserRole.USER)
        response = client.post("/invitations", json={"email": "x@example.com"}, headers=_auth(member))
        assert response.status_code == 403
        assert response.json()["error"] == "InsufficientRole"

    def test_quota_exceeded_is_reported(self, client, make_org, make_user) -> None:
        org = make_org("free")
        admin = make_user(org)
        created = client.post("/invitations", json={"email": "second@example.com"}, headers=_auth(admin))

        joiner_headers = {"Authorization": f"Bearer {create_identity_token('idp|second')}"}
        response = client.post("/invitations/accept", json={"token": created.json()["token"]}, headers=joiner_headers)
        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "QuotaExceeded"
        assert body["limit"] == 1
        assert body["current"] == 1

    def test_list_stats_and_revoke(self, client, make_org, make_user) -> None:
        org = make_org("pro")
        admin = make_user(org)
        created = client.post("/invitations", json={"email": "a@example.com"}, headers=_auth(admin)).json()

        page = client.get("/invitations", params={"status": "pending"}, headers=_auth(admin)).json()
        assert page["total"] == 1
        assert "token" not in page["data"][0]

        revoked = client.delete(f"/invitations/{created['id']}", headers=_auth(admin))
        assert revoked.status_code == 200
        assert revoked.json()["status"] == "revoked"

        stats = client.get("/invitations/stats", headers=_auth(admin)).json()
        assert stats["revoked"] == 1
        assert stats["pending"] == 0

    def test_unknown_invitation_is_404(self, client, make_org, make_user) -> None:
        admin = make_user(make_org("pro"))
        response = client.delete("/invitations/99999", headers=_auth(admin))
        assert response.status_code == 404


class TestOrganizationRoutes:
    def test_current_and_usage(self, client, make_org, make_user) -> None:
        org = make_org("free")
        member = make_user(org, role=UserRole.USER)

        assert client.get("/organizations/current", headers=_auth(member)).json()["id"] == org.id
        usage = {row["resource_kind"]: row for row in client.get("/organizations/current/usage", headers=_auth(member)).json()}
        assert usage["users"]["can_add_more"] is False

    def test_audit_trail_is_admin_only(self, client, make_org, make_user) -> None:
        org = make_org("pro")
        admin = make_user(org)
        member = make_user(org, role=UserRole.USER)

        denied = client.get("/organizations/current/audit", headers=_auth(member))
        assert denied.status_code == 403

        entries = client.get("/organizations/current/audit", headers=_auth(admin)).json()
        assert entries[0]["action"] == "org:view_audit"
        assert entries[0]["reason"] == "InsufficientRole"

    def test_platform_routes_need_superuser(self, client, make_org, make_user) -> None:
        org = make_org("pro")
        admin = make_user(org)
        operator = make_user(None, is_superuser=True)

        assert client.get("/admin/organizations", headers=_auth(admin)).status_code == 403
        assert len(client.get("/admin/organizations", headers=_auth(operator)).json()) == 1

        deleted = client.patch(f"/admin/organizations/{org.id}/status", json={"status": "deleted"}, headers=_auth(operator))
        assert deleted.json()["status"] == "deleted"
        revived = client.patch(f"/admin/organizations/{org.id}/status", json={"status": "active"}, headers=_auth(operator))
        assert revived.status_code == 409
        assert revived.json()["error"] == "InvalidTransition"

        assert client.post("/admin/invitations/sweep", headers=_auth(operator)).json() == {"expired": 0}


class TestBudgetRoutes:
    def test_accountant_budget_update_is_forbidden(self, client, make_org, make_user) -> None:
        org = make_org("pro")
        admin = make_user(org)
        accountant = make_user(org, role=UserRole.ACCOUNTANT)
        category = client.post("/budgets/categories", json={"name": "Travel"}, headers=_auth(admin)).json()

        response = client.put(
            "/budgets",
            json={"category_id": category["id"], "limit_amount": 100, "period": "monthly"},
            headers=_auth(accountant),
        )
        assert response.status_code == 403
        assert response.json()["error"] == "RoleForbidden"

        saved = client.put("/budgets", json={"category_id": category["id"], "limit_amount": 100}, headers=_auth(admin))
        assert saved.status_code == 200
        assert client.get("/budgets", headers=_auth(accountant)).json()[0]["spent"] == 0


class TestStoreFailureRoutes:
    def test_store_failure_is_retried_then_503(self, client, engine, make_org, make_user) -> None:
        admin = make_user(make_org("pro"))
        failing = LockedSession(engine)
        app.dependency_overrides[get_invitation_service] = lambda: InvitationService(failing, sweep_on_read=False)

        response = client.get("/invitations/stats", headers=_auth(admin))

        assert response.status_code == 503
        assert response.json()["error"] == "TransientFailure"
        assert failing.calls == 3
        failing.close()


class TestVerifyRoute:
    def test_verify_is_public(self, client, make_org, make_user) -> None:
        admin = make_user(make_org("pro"))
        token = client.post("/invitations", json={"email": "joiner@example.com"}, headers=_auth(admin)).json()["token"]

        valid = client.get("/invitations/verify", params={"token": token}).json()
        assert valid["valid"] is True
        assert valid["email"] == "joiner@example.com"

        unknown = client.get("/invitations/verify", params={"token": "nope"}).json()
        assert unknown == {
            "valid": False,
            "reason": "not_found",
            "email": None,
            "role": None,
            "organization_name": None,
            "expires_at": None,
        }


class TestUserAdminRoutes:
    def test_role_and_status_changes(self, client, make_org, make_user) -> None:
        org = make_org("pro")
        admin = make_user(org)
        accountant = make_user(org, role=UserRole.ACCOUNTANT)
        member = make_user(org, role=UserRole.USER)

        forbidden = client.put(f"/users/{member.id}/role", json={"role": "admin"}, headers=_auth(accountant))
        assert forbidden.status_code == 403
        assert forbidden.json()["error"] == "InsufficientRole"

        promoted = client.put(f"/users/{member.id}/role", json={"role": "accountant"}, headers=_auth(admin))
        assert promoted.status_code == 200
        assert promoted.json()["role"] == "accountant"

        deactivated = client.patch(f"/users/{member.id}/status", json={"is_active": False}, headers=_auth(admin))
        assert deactivated.json()["is_active"] is False
        assert client.get("/organizations/current", headers=_auth(member)).json()["error"] == "AccountInactive"

        own = client.patch(f"/users/{admin.id}/status", json={"is_active": False}, headers=_auth(admin))
        assert own.status_code == 409
        assert own.json()["error"] == "InvalidTransition"

        members = client.get("/users", headers=_auth(admin)).json()
        assert {m["id"] for m in members} == {admin.id, accountant.id, member.id}

    def test_plan_view(self, client, make_org, make_user) -> None:
        member = make_user(make_org("pro"), role=UserRole.USER)
        plan = client.get("/organizations/current/plan", headers=_auth(member)).json()
        assert plan["slug"] == "pro"
        assert plan["max_users"] == 5
