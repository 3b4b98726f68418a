# services/invitation_service.py
"""Invitation state machine.

    PENDING ──accept──▶ ACCEPTED
       │ ├───revoke──▶ REVOKED
       │ └───sweep───▶ EXPIRED

ACCEPTED, EXPIRED and REVOKED are terminal. Every transition is a
compare-and-set on the row (``WHERE status = 'pending'``), so an accept racing
a sweep on the same invitation can never both succeed.
"""

import asyncio
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, func

from core.access import AccessGate, Capability
from core.config import settings
from core.database import run_with_retry, session_factory as default_session_factory, transaction
from core.exceptions import (
    DuplicatePending,
    InvitationExpired,
    InvitationNotPending,
    MembershipConflict,
    NotFound,
    QuotaExceeded,
)
from models.models import Invitation, InvitationStatus, Organization, ResourceKind, User, UserRole, utcnow
from schemas.invitation_schema import InvitationStats, InvitationVerification
from schemas.principal_schema import Principal
from services.audit_service import AuditLog
from services.quota_service import QuotaEnforcer

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def generate_invitation_token() -> str:
    """URL-safe random token for invitation links."""
    return secrets.token_urlsafe(32)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class InvitationService:
    def __init__(
        self,
        session: Session,
        audit: Optional[AuditLog] = None,
        gate: Optional[AccessGate] = None,
        quota: Optional[QuotaEnforcer] = None,
        clock: Callable[[], datetime] = utcnow,
        valid_days: Optional[int] = None,
        sweep_on_read: Optional[bool] = None,
    ) -> None:
        self.session = session
        self._audit = audit
        self._gate = gate or AccessGate(audit)
        self._quota = quota or QuotaEnforcer(session, audit)
        self._clock = clock
        self._valid_days = valid_days or settings.INVITATION_VALID_DAYS
        self._sweep_on_read = settings.SWEEP_ON_STATS_READ if sweep_on_read is None else sweep_on_read

    # ==================================================================
    # Create
    # ==================================================================
    def create(
        self,
        organization_id: int,
        email: str,
        role: UserRole = UserRole.USER,
        invited_by: Optional[Principal] = None,
    ) -> Invitation:
        email = _normalize_email(email)
        role = UserRole(role)

        if invited_by is not None:
            self._gate.require(invited_by, Capability.INVITATION_CREATE, organization_id)

        with transaction(self.session):
            if not self.session.get(Organization, organization_id):
                raise NotFound(f"Organization {organization_id} not found.")

        now = self._clock()
        # A PENDING row past its expiry does not block a new invitation
        self._expire_stale(now, organization_id=organization_id, email=email)

        with transaction(self.session):
            existing_member = self.session.exec(
                select(User).where(User.organization_id == organization_id, func.lower(User.email) == email)
            ).first()
            if existing_member:
                raise MembershipConflict("A user with this email already exists in your organization.")

            pending = self.session.exec(
                select(Invitation).where(
                    Invitation.organization_id == organization_id,
                    Invitation.email == email,
                    Invitation.status == InvitationStatus.PENDING,
                )
            ).first()
            if pending:
                raise DuplicatePending("A pending invitation already exists for this email.")

        invitation = Invitation(
            organization_id=organization_id,
            email=email,
            role=role,
            status=InvitationStatus.PENDING,
            token=generate_invitation_token(),
            invited_at=now,
            expires_at=now + timedelta(days=self._valid_days),
            invited_by_id=invited_by.user_id if invited_by else None,
        )
        try:
            with transaction(self.session):
                self.session.add(invitation)
        except IntegrityError:
            # Partial unique index: a concurrent request created the pending row first
            raise DuplicatePending("A pending invitation already exists for this email.")
        self.session.refresh(invitation)

        logger.info("Invitation %s created for %s in org %s", invitation.id, email, organization_id)
        self._record_transition("invitation.created", invitation, invited_by.user_id if invited_by else None)
        return invitation

    # ==================================================================
    # Accept
    # ==================================================================
    def accept(self, invitation_id: int, accepting_identity: str, full_name: Optional[str] = None) -> User:
        return self._accept(
            select(Invitation).where(Invitation.id == invitation_id),
            f"Invitation {invitation_id} not found.",
            accepting_identity,
            full_name,
        )

    def accept_by_token(self, token: str, accepting_identity: str, full_name: Optional[str] = None) -> User:
        return self._accept(
            select(Invitation).where(Invitation.token == token),
            "Invitation not found.",
            accepting_identity,
            full_name,
        )

    def _accept(self, lookup, missing: str, accepting_identity: str, full_name: Optional[str]) -> User:
        now = self._clock()

        with transaction(self.session):
            invitation = self.session.exec(lookup).first()
            if not invitation:
                raise NotFound(missing)
            invitation_id = invitation.id
            organization_id = invitation.organization_id
            email = invitation.email
            role = UserRole(invitation.role)
            if invitation.status != InvitationStatus.PENDING:
                raise InvitationNotPending(InvitationStatus(invitation.status).value)
            stale = invitation.is_expired(now)

        if stale:
            self._expire(invitation_id, organization_id, now)
            raise InvitationExpired("This invitation has expired. Please request a new one.")

        user_id = None
        try:
            with transaction(self.session):
                # Seat check and the insert happen under the organization write lock
                self._quota.lock_organization(organization_id)

                user = self.session.exec(select(User).where(User.external_id == accepting_identity)).first()
                user_id = user.id if user else None
                if user is not None and user.organization_id is not None:
                    raise MembershipConflict("This account already belongs to an organization.")

                email_taken = self.session.exec(
                    select(User).where(
                        User.organization_id == organization_id,
                        func.lower(User.email) == email,
                    )
                ).first()
                if email_taken:
                    raise MembershipConflict("A user with this email already exists in this organization.")

                seats = self._quota.count(organization_id, ResourceKind.USERS)
                self._quota.check(organization_id, ResourceKind.USERS, seats)

                if user is None:
                    user = User(external_id=accepting_identity, email=email, created_at=now)
                user.organization_id = organization_id
                user.role = role
                user.is_active = True
                if full_name and not user.full_name:
                    user.full_name = full_name
                self.session.add(user)
                self.session.flush()

                accepted = self._compare_and_set(
                    invitation_id,
                    InvitationStatus.ACCEPTED,
                    Invitation.expires_at > now,
                    accepted_at=now,
                    accepted_by_id=user.id,
                )
                if not accepted:
                    raise self._lost_race(invitation_id)
        except QuotaExceeded as exc:
            # Recorded once the rollback has released the write lock
            self._quota.record_denied(organization_id, exc, principal_id=user_id)
            raise

        self.session.refresh(user)
        logger.info("Invitation %s accepted by user %s (org %s)", invitation_id, user.id, organization_id)
        self._record(
            "invitation.accepted",
            organization_id,
            user.id,
            {"invitation_id": invitation_id, "role": role.value},
        )
        return user

    # ==================================================================
    # Verify (public read before accepting)
    # ==================================================================
    def verify(self, token: str) -> InvitationVerification:
        """Report whether ``token`` can still be accepted.

        Reasons for an invalid token: ``not_found``, ``already_used``,
        ``revoked`` and ``expired``. A PENDING row found past its expiry is
        moved to EXPIRED on the way out.
        """
        now = self._clock()
        with transaction(self.session):
            row = self.session.exec(
                select(Invitation, Organization.name)
                .join(Organization, Organization.id == Invitation.organization_id)
                .where(Invitation.token == token)
            ).first()
            if row is None:
                return InvitationVerification(valid=False, reason="not_found")

            invitation, organization_name = row
            status = InvitationStatus(invitation.status)
            stale = status == InvitationStatus.PENDING and invitation.is_expired(now)
            verification = InvitationVerification(
                valid=True,
                email=invitation.email,
                role=invitation.role,
                organization_name=organization_name,
                expires_at=invitation.expires_at,
            )
            invitation_id, organization_id = invitation.id, invitation.organization_id

        if status == InvitationStatus.ACCEPTED:
            return InvitationVerification(valid=False, reason="already_used")
        if status == InvitationStatus.REVOKED:
            return InvitationVerification(valid=False, reason="revoked")
        if status == InvitationStatus.EXPIRED:
            return InvitationVerification(valid=False, reason="expired")
        if stale:
            self._expire(invitation_id, organization_id, now)
            return InvitationVerification(valid=False, reason="expired")
        return verification

    # ==================================================================
    # Revoke
    # ==================================================================
    def revoke(self, invitation_id: int, by_principal: Principal) -> Invitation:
        invitation = self._get_pending_for_admin(invitation_id, by_principal, Capability.INVITATION_REVOKE)
        now = self._clock()

        with transaction(self.session):
            revoked = self._compare_and_set(invitation_id, InvitationStatus.REVOKED, revoked_at=now)
        if not revoked:
            raise InvitationNotPending(self._current_status(invitation_id))

        self.session.refresh(invitation)
        logger.info("Invitation %s revoked by user %s", invitation_id, by_principal.user_id)
        self._record_transition("invitation.revoked", invitation, by_principal.user_id)
        return invitation

    # ==================================================================
    # Resend (new token, fresh expiry; never reopens a terminal row)
    # ==================================================================
    def resend(self, invitation_id: int, by_principal: Principal) -> Invitation:
        invitation = self._get_pending_for_admin(invitation_id, by_principal, Capability.INVITATION_RESEND)
        now = self._clock()

        with transaction(self.session):
            result = self.session.exec(
                update(Invitation)
                .where(Invitation.id == invitation_id, Invitation.status == InvitationStatus.PENDING)
                .values(
                    token=generate_invitation_token(),
                    invited_at=now,
                    expires_at=now + timedelta(days=self._valid_days),
                )
            )
            renewed = result.rowcount == 1
        if not renewed:
            raise InvitationNotPending(self._current_status(invitation_id))

        self.session.refresh(invitation)
        logger.info("Invitation %s resent by user %s", invitation_id, by_principal.user_id)
        self._record_transition("invitation.resent", invitation, by_principal.user_id)
        return invitation

    # ==================================================================
    # Sweep
    # ==================================================================
    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Move every PENDING invitation with ``expires_at < now`` to EXPIRED.

        Idempotent: a second run at the same or a later ``now`` only touches
        rows that became stale in between.
        """
        now = now or self._clock()
        expired = self._expire_stale(now)
        if expired:
            logger.info("Invitation sweep expired %s invitation(s)", expired)
        return expired

    # ==================================================================
    # Read side
    # ==================================================================
    def stats(self, organization_id: Optional[int] = None, now: Optional[datetime] = None) -> InvitationStats:
        now = now or self._clock()
        if self._sweep_on_read:
            self._expire_stale(now, organization_id=organization_id)

        def scoped(statement):
            if organization_id is not None:
                statement = statement.where(Invitation.organization_id == organization_id)
            return statement

        with transaction(self.session):
            counts = {
                InvitationStatus(status): count
                for status, count in self.session.exec(
                    scoped(select(Invitation.status, func.count(Invitation.id))).group_by(Invitation.status)
                ).all()
            }

            recent = self.session.exec(
                scoped(select(func.count(Invitation.id))).where(
                    Invitation.invited_at >= now - timedelta(days=settings.INVITATION_RECENT_DAYS)
                )
            ).one()

            expiring_soon = self.session.exec(
                scoped(select(func.count(Invitation.id))).where(
                    Invitation.status == InvitationStatus.PENDING,
                    Invitation.expires_at >= now,
                    Invitation.expires_at <= now + timedelta(days=settings.INVITATION_EXPIRING_SOON_DAYS),
                )
            ).one()

        return InvitationStats(
            pending=counts.get(InvitationStatus.PENDING, 0),
            accepted=counts.get(InvitationStatus.ACCEPTED, 0),
            expired=counts.get(InvitationStatus.EXPIRED, 0),
            revoked=counts.get(InvitationStatus.REVOKED, 0),
            total=sum(counts.values()),
            recent_invitations=recent,
            expiring_soon=expiring_soon,
        )

    def list(
        self,
        organization_id: int,
        status: Optional[InvitationStatus] = None,
        email: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Invitation], int]:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        statement = select(Invitation).where(Invitation.organization_id == organization_id)
        if status is not None:
            statement = statement.where(Invitation.status == InvitationStatus(status))
        if email:
            statement = statement.where(Invitation.email.contains(_normalize_email(email)))

        with transaction(self.session):
            total = self.session.exec(select(func.count()).select_from(statement.subquery())).one()
            rows = self.session.exec(
                statement.order_by(Invitation.invited_at.desc(), Invitation.id.desc()).offset(offset).limit(limit)
            ).all()
        return list(rows), total

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------
    def _compare_and_set(self, invitation_id: int, new_status: InvitationStatus, *conditions, **values) -> bool:
        result = self.session.exec(
            update(Invitation)
            .where(
                Invitation.id == invitation_id,
                Invitation.status == InvitationStatus.PENDING,
                *conditions,
            )
            .values(status=new_status, **values)
        )
        return result.rowcount == 1

    def _current_status(self, invitation_id: int) -> str:
        status = self.session.exec(select(Invitation.status).where(Invitation.id == invitation_id)).first()
        return InvitationStatus(status).value if status is not None else "missing"

    def _lost_race(self, invitation_id: int) -> Exception:
        status = self._current_status(invitation_id)
        if status == InvitationStatus.PENDING.value:
            return InvitationExpired("This invitation has expired. Please request a new one.")
        return InvitationNotPending(status)

    def _get_pending_for_admin(self, invitation_id: int, principal: Principal, capability: Capability) -> Invitation:
        now = self._clock()
        with transaction(self.session):
            invitation = self.session.get(Invitation, invitation_id)
            if not invitation:
                raise NotFound(f"Invitation {invitation_id} not found.")
            organization_id = invitation.organization_id

            self._gate.require(principal, capability, organization_id)

            if invitation.status != InvitationStatus.PENDING:
                raise InvitationNotPending(InvitationStatus(invitation.status).value)
            stale = invitation.is_expired(now)

        if stale:
            self._expire(invitation_id, organization_id, now)
            raise InvitationNotPending(InvitationStatus.EXPIRED.value)
        return invitation

    def _expire(self, invitation_id: int, organization_id: int, now: datetime) -> bool:
        with transaction(self.session):
            expired = self._compare_and_set(invitation_id, InvitationStatus.EXPIRED)
        if expired:
            self._record("invitation.expired", organization_id, None, {"invitation_id": invitation_id})
        return expired

    def _expire_stale(
        self,
        now: datetime,
        organization_id: Optional[int] = None,
        email: Optional[str] = None,
    ) -> int:
        statement = select(Invitation.id, Invitation.organization_id).where(
            Invitation.status == InvitationStatus.PENDING,
            Invitation.expires_at < now,
        )
        if organization_id is not None:
            statement = statement.where(Invitation.organization_id == organization_id)
        if email is not None:
            statement = statement.where(Invitation.email == email)

        with transaction(self.session):
            candidates = self.session.exec(statement).all()

        expired = 0
        for invitation_id, invitation_org_id in candidates:
            # Rows taken by a concurrent accept/revoke are skipped by the CAS
            if self._expire(invitation_id, invitation_org_id, now):
                expired += 1
        return expired

    def _record_transition(self, transition: str, invitation: Invitation, principal_id: Optional[int]) -> None:
        self._record(
            transition,
            invitation.organization_id,
            principal_id,
            {"invitation_id": invitation.id, "email": invitation.email},
        )

    def _record(self, transition: str, organization_id: Optional[int], principal_id: Optional[int], detail: dict) -> None:
        if self._audit is None:
            return
        self._audit.record_transition(
            transition,
            organization_id=organization_id,
            principal_id=principal_id,
            detail=detail,
        )


# ============================================================
# Scheduled sweep (out-of-band)
# ============================================================
def run_scheduled_sweep(
    session_factory: Callable[[], Session] = default_session_factory,
    audit: Optional[AuditLog] = None,
) -> int:
    audit = audit or AuditLog(session_factory)

    def _sweep() -> int:
        with session_factory() as session:
            return InvitationService(session, audit=audit).sweep_expired()

    return run_with_retry(_sweep)


async def invitation_sweep_loop(
    interval_seconds: int = settings.INVITATION_SWEEP_INTERVAL_SECONDS,
    session_factory: Callable[[], Session] = default_session_factory,
):
    """Background loop advancing stale PENDING invitations to EXPIRED."""
    logger.info("Invitation sweeper started (interval %ss)", interval_seconds)
    audit = AuditLog(session_factory)

    while True:
        try:
            await asyncio.to_thread(run_scheduled_sweep, session_factory, audit)
        except Exception:
            logger.exception("Invitation sweep failed; will retry next interval")

        await asyncio.sleep(interval_seconds)
