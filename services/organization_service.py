"""Platform (cross-tenant) operations on organizations.

Only reachable through the superuser gate.
"""

import logging
from typing import Callable, Optional

from sqlmodel import Session, select

from core.access import AccessGate, PlatformCapability
from core.database import transaction
from core.exceptions import InvalidTransition, NotFound
from models.models import ORGANIZATION_STATUS_TRANSITIONS, Organization, OrganizationStatus, utcnow
from schemas.invitation_schema import InvitationStats
from schemas.principal_schema import Principal
from services.audit_service import AuditLog
from services.invitation_service import InvitationService

logger = logging.getLogger(__name__)


class OrganizationService:
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

    def get(self, organization_id: int) -> Organization:
        with transaction(self.session):
            organization = self.session.get(Organization, organization_id)
            if not organization:
                raise NotFound(f"Organization {organization_id} not found.")
        return organization

    def list_organizations(self, principal: Principal, status: Optional[OrganizationStatus] = None) -> list[Organization]:
        self._gate.require_platform(principal, PlatformCapability.ORGANIZATION_LIST)

        statement = select(Organization)
        if status is not None:
            statement = statement.where(Organization.status == OrganizationStatus(status))
        with transaction(self.session):
            rows = self.session.exec(statement.order_by(Organization.created_at.desc(), Organization.id.desc())).all()
        return list(rows)

    def change_status(self, principal: Principal, organization_id: int, status: OrganizationStatus) -> Organization:
        self._gate.require_platform(principal, PlatformCapability.ORGANIZATION_STATUS_CHANGE)

        status = OrganizationStatus(status)
        organization = self.get(organization_id)
        current = OrganizationStatus(organization.status)
        if current == status:
            return organization
        if status not in ORGANIZATION_STATUS_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Cannot change organization status from {current.value} to {status.value}.",
                {"from": current.value, "to": status.value},
            )

        with transaction(self.session):
            organization.status = status
            organization.updated_at = self._clock()
            self.session.add(organization)
        self.session.refresh(organization)

        logger.info(
            "Organization %s status changed %s -> %s by user %s",
            organization_id, current.value, status.value, principal.user_id,
        )
        if self._audit is not None:
            self._audit.record_transition(
                "organization.status_changed",
                organization_id=organization_id,
                principal_id=principal.user_id,
                detail={"from": current.value, "to": status.value},
            )
        return organization

    def invitation_stats(self, principal: Principal) -> InvitationStats:
        self._gate.require_platform(principal, PlatformCapability.INVITATION_STATS_VIEW)
        return InvitationService(self.session, audit=self._audit, gate=self._gate, clock=self._clock).stats()

    def sweep_invitations(self, principal: Principal) -> int:
        self._gate.require_platform(principal, PlatformCapability.INVITATION_SWEEP)
        return InvitationService(self.session, audit=self._audit, gate=self._gate, clock=self._clock).sweep_expired()
