"""Append-only audit / decision log.

Records every deny decision and every invitation transition. Entries are
written in their own session so a failing write never touches the caller's
transaction, and never fails the originating request.
"""

import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from sqlmodel import Session, select

from models.models import AuditEntry, utcnow

logger = logging.getLogger(__name__)


class AuditOutcome:
    DENIED = "denied"
    TRANSITION = "transition"


class AuditLog:
    def __init__(self, session_factory: Callable[[], Session], clock: Callable[[], datetime] = utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def record(
        self,
        action: str,
        outcome: str,
        *,
        principal_id: Optional[int] = None,
        organization_id: Optional[int] = None,
        reason: Optional[str] = None,
        detail: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditEntry]:
        """Append one entry. Returns None if the store rejected the write."""
        entry = AuditEntry(
            created_at=self._clock(),
            organization_id=organization_id,
            principal_id=principal_id,
            action=action,
            outcome=outcome,
            reason=reason,
            detail=json.dumps(detail, default=str) if detail else None,
        )
        try:
            with self._session_factory() as session:
                session.add(entry)
                session.commit()
                session.refresh(entry)
            return entry
        except Exception:
            logger.exception("Failed to write audit entry %s/%s (principal=%s)", action, outcome, principal_id)
            return None

    def record_denied(
        self,
        capability: str,
        reason: str,
        *,
        principal_id: Optional[int] = None,
        organization_id: Optional[int] = None,
        detail: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditEntry]:
        return self.record(
            capability,
            AuditOutcome.DENIED,
            principal_id=principal_id,
            organization_id=organization_id,
            reason=reason,
            detail=detail,
        )

    def record_transition(
        self,
        transition: str,
        *,
        organization_id: Optional[int],
        principal_id: Optional[int] = None,
        detail: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditEntry]:
        return self.record(
            transition,
            AuditOutcome.TRANSITION,
            principal_id=principal_id,
            organization_id=organization_id,
            detail=detail,
        )

    def entries(
        self,
        organization_id: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        """Newest first, filtered by organization and/or time range."""
        statement = select(AuditEntry)
        if organization_id is not None:
            statement = statement.where(AuditEntry.organization_id == organization_id)
        if since is not None:
            statement = statement.where(AuditEntry.created_at >= since)
        if until is not None:
            statement = statement.where(AuditEntry.created_at <= until)
        statement = statement.order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc()).limit(limit)

        with self._session_factory() as session:
            rows = session.exec(statement).all()
            for row in rows:
                session.expunge(row)
            return list(rows)
