# core/deps.py
"""FastAPI wiring: every request gets explicitly constructed services."""

from fastapi import Depends
from sqlmodel import Session

from core.access import AccessGate
from core.database import get_session, session_factory
from services.audit_service import AuditLog
from services.budget_service import BudgetService
from services.invitation_service import InvitationService
from services.organization_service import OrganizationService
from services.quota_service import QuotaEnforcer
from services.user_service import UserService


def get_audit_log() -> AuditLog:
    return AuditLog(session_factory)


def get_gate(audit: AuditLog = Depends(get_audit_log)) -> AccessGate:
    return AccessGate(audit)


def get_quota_enforcer(
    session: Session = Depends(get_session),
    audit: AuditLog = Depends(get_audit_log),
) -> QuotaEnforcer:
    return QuotaEnforcer(session, audit)


def get_invitation_service(
    session: Session = Depends(get_session),
    audit: AuditLog = Depends(get_audit_log),
    gate: AccessGate = Depends(get_gate),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
) -> InvitationService:
    return InvitationService(session, audit=audit, gate=gate, quota=quota)


def get_organization_service(
    session: Session = Depends(get_session),
    audit: AuditLog = Depends(get_audit_log),
    gate: AccessGate = Depends(get_gate),
) -> OrganizationService:
    return OrganizationService(session, audit=audit, gate=gate)


def get_budget_service(
    session: Session = Depends(get_session),
    gate: AccessGate = Depends(get_gate),
) -> BudgetService:
    return BudgetService(session, gate=gate)


def get_user_service(
    session: Session = Depends(get_session),
    audit: AuditLog = Depends(get_audit_log),
    gate: AccessGate = Depends(get_gate),
) -> UserService:
    return UserService(session, audit=audit, gate=gate)
