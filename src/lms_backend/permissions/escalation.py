"""
Admin escalation: trading the escalation password for a short-lived admin token.

Sessions are persisted so they can be revoked. ``expires_at`` is the
inactivity deadline and moves forward on use, never past
``absolute_expires_at``. A user holds at most one active session; escalating
again revokes the previous one.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import uuid4

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session

from lms_backend.api.exceptions import (
    ForbiddenException,
    NotFoundException,
    UnauthorizedException,
)
from lms_backend.interface.escalation import AdminSessionGet, EscalationResult
from lms_backend.model.auth import GlobalAdmin, User
from lms_backend.model.base import as_utc, utcnow
from lms_backend.model.constants import GLOBAL_ADMIN, MASTER_DEPARTMENT_ID
from lms_backend.model.escalation import SESSION_EXPIRED, SESSION_REVOKED, AdminEscalationSession
from lms_backend.permissions import audit
from lms_backend.permissions.access_rights import resolve_access_rights
from lms_backend.permissions.cache import PermissionCache, permission_cache
from lms_backend.permissions.credentials import BcryptCredentialVerifier, EscalationCredentialVerifier
from lms_backend.permissions.roles import get_roles_for_department
from lms_backend.settings import settings

logger = logging.getLogger(__name__)

ADMIN_TOKEN_TYPE = "admin"
INVALID_ESCALATION_PASSWORD = "InvalidEscalationPassword"

PASSWORD_REQUIREMENTS = [
    "At least 8 characters long",
    "Contains at least one uppercase letter",
    "Contains at least one lowercase letter",
    "Contains at least one number",
    "Different from login password",
]


def validate_escalation_password_strength(password: str) -> bool:
    if password is None or len(password) < 8:
        return False
    return (
        re.search(r"[A-Z]", password) is not None
        and re.search(r"[a-z]", password) is not None
        and re.search(r"[0-9]", password) is not None
    )


def session_info(session: AdminEscalationSession, now: Optional[datetime] = None) -> AdminSessionGet:
    return AdminSessionGet(
        user_id=session.user_id,
        status=session.status(now),
        issued_at=as_utc(session.issued_at),
        expires_at=as_utc(session.expires_at),
        absolute_expires_at=as_utc(session.absolute_expires_at),
        roles=list(session.roles or []),
        access_rights=list(session.access_rights or []),
    )


class EscalationService:

    def __init__(
        self,
        verifier: Optional[EscalationCredentialVerifier] = None,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        max_lifetime_seconds: Optional[int] = None,
        cache: Optional[PermissionCache] = None,
    ):
        self.verifier = verifier or BcryptCredentialVerifier()
        self.secret = secret or settings.ADMIN_TOKEN_SECRET
        self.algorithm = algorithm or settings.ADMIN_TOKEN_ALGORITHM
        self.max_lifetime_seconds = (
            max_lifetime_seconds if max_lifetime_seconds is not None else settings.ADMIN_SESSION_MAX_LIFETIME
        )
        self.cache = cache or permission_cache

    def hash_escalation_password(self, password: str) -> str:
        return self.verifier.hash(password)

    @staticmethod
    def _timeout_seconds(record: Optional[GlobalAdmin]) -> int:
        if record is not None and record.session_timeout:
            return int(record.session_timeout) * 60
        return settings.ADMIN_SESSION_TIMEOUT

    def _extend(self, session: AdminEscalationSession, record: Optional[GlobalAdmin], now: datetime):
        session.last_activity_at = now
        session.expires_at = min(
            now + timedelta(seconds=self._timeout_seconds(record)),
            as_utc(session.absolute_expires_at),
        )

    def _deny(self, db: Session, user_id: str, reason: str):
        audit.record_audit_event(
            db, audit.ESCALATION_DENIED, actor_id=user_id, target_user_id=user_id,
            details={"reason": reason}, commit=True,
        )
        logger.warning(f"Escalation denied for user {user_id}: {reason}")

    def _active_sessions(self, db: Session, user_id: str, now: datetime) -> List[AdminEscalationSession]:
        sessions = (
            db.query(AdminEscalationSession)
            .filter(
                AdminEscalationSession.user_id == user_id,
                AdminEscalationSession.revoked.is_(False),
            )
            .order_by(AdminEscalationSession.issued_at.desc())
            .all()
        )
        return [s for s in sessions if s.is_active(now)]

    async def escalate(self, db: Session, user_id: str, escalation_password: str) -> EscalationResult:
        user = db.get(User, user_id)
        if user is None or not user.is_active or not user.has_category(GLOBAL_ADMIN):
            self._deny(db, user_id, "not a global administrator")
            raise ForbiddenException("User is not a global administrator")

        record = db.get(GlobalAdmin, user_id)
        if record is None or not record.is_active:
            self._deny(db, user_id, "global administrator record inactive")
            raise ForbiddenException("Global administrator account is inactive")

        if not self.verifier.verify(escalation_password, record.escalation_password):
            self._deny(db, user_id, "invalid escalation password")
            raise UnauthorizedException(INVALID_ESCALATION_PASSWORD)

        roles = get_roles_for_department(db, user_id, MASTER_DEPARTMENT_ID, GLOBAL_ADMIN)
        if not roles:
            self._deny(db, user_id, "no active admin roles")
            raise ForbiddenException("Global administrator has no active roles")

        access_rights = resolve_access_rights(db, roles)

        now = utcnow()
        timeout = self._timeout_seconds(record)
        absolute_expires_at = now + timedelta(seconds=self.max_lifetime_seconds)
        expires_at = min(now + timedelta(seconds=timeout), absolute_expires_at)

        # Single active session per user
        for previous in self._active_sessions(db, user_id, now):
            previous.revoked = True
            previous.revoked_at = now

        token_id = uuid4().hex
        db.add(AdminEscalationSession(
            user_id=user_id,
            token_id=token_id,
            issued_at=now,
            last_activity_at=now,
            expires_at=expires_at,
            absolute_expires_at=absolute_expires_at,
            roles=roles,
            access_rights=access_rights,
        ))
        record.last_escalation = now
        audit.record_audit_event(
            db, audit.ESCALATION_GRANTED, actor_id=user_id, target_user_id=user_id,
            department_id=MASTER_DEPARTMENT_ID, details={"roles": roles},
        )
        db.commit()

        admin_token = jwt.encode(
            {
                "sub": user_id,
                "jti": token_id,
                "type": ADMIN_TOKEN_TYPE,
                "roles": roles,
                "iat": int(now.timestamp()),
                "exp": int(absolute_expires_at.timestamp()),
            },
            self.secret,
            algorithm=self.algorithm,
        )

        await self.cache.invalidate_user(user_id)
        logger.info(f"Admin escalation granted for user {user_id}, roles: {', '.join(roles)}")

        return EscalationResult(
            admin_token=admin_token,
            expires_in=int((expires_at - now).total_seconds()),
            expires_at=expires_at,
            roles=roles,
            access_rights=access_rights,
        )

    async def deescalate(self, db: Session, user_id: str) -> bool:
        """Revoke the user's admin session. Returns False when there was none."""
        now = utcnow()
        sessions = (
            db.query(AdminEscalationSession)
            .filter(
                AdminEscalationSession.user_id == user_id,
                AdminEscalationSession.revoked.is_(False),
            )
            .all()
        )
        if not sessions:
            return False

        for session in sessions:
            session.revoked = True
            session.revoked_at = now
        audit.record_audit_event(db, audit.ESCALATION_REVOKED, actor_id=user_id, target_user_id=user_id)
        db.commit()

        await self.cache.invalidate_user(user_id)
        logger.info(f"Admin session revoked for user {user_id}")
        return True

    def decode_admin_token(self, token: str) -> dict:
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise UnauthorizedException("Admin token has expired")
        except JWTError as e:
            logger.warning(f"Admin token rejected: {e}")
            raise UnauthorizedException("Invalid admin token")

        if claims.get("type") != ADMIN_TOKEN_TYPE:
            raise UnauthorizedException("Invalid admin token type")
        if not claims.get("sub") or not claims.get("jti"):
            raise UnauthorizedException("Invalid admin token")
        return claims

    def validate_admin_token(self, db: Session, token: str, user_id: Optional[str] = None,
                             touch: bool = True) -> AdminEscalationSession:
        """
        Check an admin token against its persisted session.

        ``user_id`` is the identity-token user; the admin token must belong to
        the same user. With ``touch`` the inactivity deadline is extended.
        """
        claims = self.decode_admin_token(token)
        subject = claims["sub"]
        if user_id is not None and subject != user_id:
            raise UnauthorizedException("Admin token does not belong to the authenticated user")

        session = (
            db.query(AdminEscalationSession)
            .filter(AdminEscalationSession.token_id == claims["jti"])
            .first()
        )
        if session is None or session.user_id != subject:
            raise UnauthorizedException("Admin session not found")

        now = utcnow()
        status = session.status(now)
        if status == SESSION_REVOKED:
            raise UnauthorizedException("Admin session has been revoked")
        if status == SESSION_EXPIRED:
            raise UnauthorizedException("Admin session has expired")

        record = db.get(GlobalAdmin, subject)
        if record is None or not record.is_active:
            raise UnauthorizedException("Global administrator account is inactive")

        if touch:
            self._extend(session, record, now)
            db.commit()
        return session

    def require_admin_credentials(self, db: Session, identity_user_id: Optional[str],
                                  admin_token: Optional[str]) -> AdminEscalationSession:
        if not identity_user_id:
            raise UnauthorizedException("Authentication required")
        if not admin_token:
            raise UnauthorizedException("Admin token required")
        return self.validate_admin_token(db, admin_token, user_id=identity_user_id)

    def get_active_session(self, db: Session, user_id: str) -> Optional[AdminEscalationSession]:
        sessions = self._active_sessions(db, user_id, utcnow())
        return sessions[0] if sessions else None

    def refresh_session(self, db: Session, user_id: str) -> AdminSessionGet:
        session = self.get_active_session(db, user_id)
        if session is None:
            raise NotFoundException("No active admin session to refresh")

        now = utcnow()
        self._extend(session, db.get(GlobalAdmin, user_id), now)
        db.commit()
        logger.info(f"Admin session refreshed for user {user_id}")
        return session_info(session, now)

    def cleanup_expired_sessions(self, db: Session) -> int:
        """Delete sessions that are revoked or past their deadline."""
        now = utcnow()
        stale = [s for s in db.query(AdminEscalationSession).all() if not s.is_active(now)]
        for session in stale:
            db.delete(session)
        db.commit()
        logger.info(f"Removed {len(stale)} stale admin sessions")
        return len(stale)


escalation_service = EscalationService()
