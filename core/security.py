# core/security.py
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.config import settings
from core.database import get_session
from core.exceptions import AccountNotProvisioned, MembershipConflict, Unauthenticated
from models.models import User, UserRole, utcnow
from schemas.principal_schema import Principal

logger = logging.getLogger(__name__)


# ========================================
# 🔑 Identity token helpers
# ========================================
def create_identity_token(
    external_id: str,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[Dict[str, Any]] = None,
    secret_key: Optional[str] = None,
    algorithm: Optional[str] = None,
) -> str:
    """Issue a signed identity token (development and tests; production tokens come from the identity provider)."""
    to_encode: Dict[str, Any] = {"sub": external_id}
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.IDENTITY_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret_key or settings.SECRET_KEY, algorithm=algorithm or settings.ALGORITHM)


def decode_identity_token(token: str, secret_key: Optional[str] = None, algorithm: Optional[str] = None) -> str:
    """Return the verified external identity (``sub``) or raise ``Unauthenticated``."""
    try:
        payload = jwt.decode(
            token,
            secret_key or settings.SECRET_KEY,
            algorithms=[algorithm or settings.ALGORITHM],
        )
    except JWTError:
        raise Unauthenticated("Invalid or expired identity token.")

    external_id = payload.get("sub")
    if not external_id:
        raise Unauthenticated("Identity token carries no subject.")
    return str(external_id)


# ========================================
# 👤 Principal Resolver
# ========================================
class PrincipalResolver:
    """Maps an identity token to the internal user record."""

    def __init__(self, session: Session, secret_key: Optional[str] = None, algorithm: Optional[str] = None) -> None:
        self.session = session
        self._secret_key = secret_key or settings.SECRET_KEY
        self._algorithm = algorithm or settings.ALGORITHM

    def resolve(self, token: Optional[str]) -> Principal:
        if not token:
            raise Unauthenticated("Missing identity token.")
        external_id = decode_identity_token(token, self._secret_key, self._algorithm)
        return self.resolve_identity(external_id)

    def resolve_identity(self, external_id: str) -> Principal:
        """Resolve an already verified identity. Inactive users resolve, flagged."""
        user = self.session.exec(select(User).where(User.external_id == external_id)).first()
        if not user:
            raise AccountNotProvisioned(external_id)
        if not user.is_active:
            logger.info("Resolved inactive principal user_id=%s", user.id)
        return Principal.from_user(user)

    def provision(self, external_id: str, email: str, full_name: Optional[str] = None) -> User:
        """Create the unbound "setup state" user for a new identity (idempotent)."""
        user = self.session.exec(select(User).where(User.external_id == external_id)).first()
        if user:
            return user

        user = User(
            external_id=external_id,
            email=email.strip().lower(),
            full_name=full_name,
            role=UserRole.USER,
            organization_id=None,
            is_active=True,
            created_at=utcnow(),
        )
        try:
            self.session.add(user)
            self.session.commit()
            self.session.refresh(user)
        except IntegrityError:
            self.session.rollback()
            # Lost a race against another provisioning request
            user = self.session.exec(select(User).where(User.external_id == external_id)).first()
            if not user:
                raise MembershipConflict("Could not provision this identity.")
        logger.info("Provisioned user %s for identity %s", user.id, external_id)
        return user

    def record_login(self, principal: Principal) -> None:
        user = self.session.get(User, principal.user_id)
        if user:
            user.last_login_at = utcnow()
            self.session.add(user)
            self.session.commit()


# ========================================
# 🔐 FastAPI dependencies
# ========================================
bearer_scheme = HTTPBearer(auto_error=False)


def get_identity(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
    """Verified external identity from the ``Authorization: Bearer`` header."""
    if credentials is None:
        raise Unauthenticated("Missing identity token.")
    return decode_identity_token(credentials.credentials)


def get_current_principal(
    external_id: str = Depends(get_identity),
    session: Session = Depends(get_session),
) -> Principal:
    return PrincipalResolver(session).resolve_identity(external_id)
