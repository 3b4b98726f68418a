"""Error taxonomy for the tenancy core.

Every error is recoverable at the call boundary. The transport layer turns
them into responses (see ``main.py``); only ``TransientFailure`` may be
retried automatically.
"""

from enum import Enum
from typing import Any, Optional


class DenyReason(str, Enum):
    CROSS_TENANT = "CrossTenant"
    ACCOUNT_INACTIVE = "AccountInactive"
    INSUFFICIENT_ROLE = "InsufficientRole"
    ROLE_FORBIDDEN = "RoleForbidden"


class LedgerlyError(Exception):
    """Base exception for all tenancy-core errors."""

    code: str = "Error"
    retryable: bool = False

    def __init__(self, message: str = "", context: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context: dict[str, Any] = context or {}


# ── Identity ─────────────────────────────────────────────────────

class Unauthenticated(LedgerlyError):
    """The identity token does not map to a known identity."""

    code = "Unauthenticated"


class AccountNotProvisioned(LedgerlyError):
    """Identity is valid upstream but has no internal user record yet."""

    code = "AccountNotProvisioned"

    def __init__(self, external_id: str) -> None:
        super().__init__(
            f"No account is provisioned for identity '{external_id}'.",
            {"external_id": external_id},
        )
        self.external_id = external_id


# ── Authorization ────────────────────────────────────────────────

class AccessDenied(LedgerlyError):
    """The access gate returned Deny; ``code`` is the deny reason."""

    def __init__(self, reason: DenyReason, capability: str = "", message: str = "") -> None:
        self.reason = reason
        self.code = reason.value
        super().__init__(
            message or f"Access denied for '{capability}': {reason.value}",
            {"reason": reason.value, "capability": capability},
        )


class QuotaExceeded(LedgerlyError):
    code = "QuotaExceeded"

    def __init__(self, resource_kind: str, limit: int, current: int) -> None:
        super().__init__(
            f"Plan limit reached for {resource_kind} ({current}/{limit}).",
            {"resource_kind": resource_kind, "limit": limit, "current": current},
        )
        self.resource_kind = resource_kind
        self.limit = limit
        self.current = current


# ── Invitations ──────────────────────────────────────────────────

class DuplicatePending(LedgerlyError):
    code = "DuplicatePending"


class InvitationExpired(LedgerlyError):
    code = "InvitationExpired"


class InvitationNotPending(LedgerlyError):
    code = "InvitationNotPending"

    def __init__(self, status: str, message: str = "") -> None:
        super().__init__(
            message or f"Invitation is no longer pending (status: {status}).",
            {"status": status},
        )
        self.status = status


class MembershipConflict(LedgerlyError):
    """The user is already a member of this or another organization."""

    code = "MembershipConflict"


# ── Organizations / store ────────────────────────────────────────

class InvalidTransition(LedgerlyError):
    code = "InvalidTransition"


class NotFound(LedgerlyError):
    code = "NotFound"


class TransientFailure(LedgerlyError):
    """Store contention or timeout. Safe to retry."""

    code = "TransientFailure"
    retryable = True


class AlreadyExists(LedgerlyError):
    """A uniquely named tenant record already exists."""

    code = "AlreadyExists"
