"""
Tests for admin escalation sessions and admin tokens.
"""

from datetime import timedelta

import pytest
from jose import jwt

from lms_backend.api.exceptions import ForbiddenException, NotFoundException, UnauthorizedException
from lms_backend.model.audit import AuditLog
from lms_backend.model.auth import GlobalAdmin
from lms_backend.model.base import as_utc, utcnow
from lms_backend.model.constants import GLOBAL_ADMIN, MASTER_DEPARTMENT_ID
from lms_backend.model.escalation import SESSION_ACTIVE, SESSION_REVOKED, AdminEscalationSession
from lms_backend.model.membership import DepartmentMembership
from lms_backend.permissions.audit import ESCALATION_DENIED, ESCALATION_GRANTED
from lms_backend.permissions.cache import USER_VERSION_KEY
from lms_backend.permissions.escalation import (
    ADMIN_TOKEN_TYPE,
    INVALID_ESCALATION_PASSWORD,
    escalation_service,
    validate_escalation_password_strength,
)
from lms_backend.settings import settings
from lms_backend.tests.fixtures import ESCALATION_PASSWORD


def _session(db, token_id) -> AdminEscalationSession:
    return db.query(AdminEscalationSession).filter(AdminEscalationSession.token_id == token_id).one()


@pytest.mark.unit
class TestPasswordStrength:

    @pytest.mark.parametrize("password,expected", [
        ("Escalate2Admin", True),
        ("Sh0rt", False),
        ("alllowercase1", False),
        ("ALLUPPERCASE1", False),
        ("NoDigitsHere", False),
        (None, False),
    ])
    def test_validate_escalation_password_strength(self, password, expected):
        assert validate_escalation_password_strength(password) is expected


class TestEscalate:

    @pytest.mark.asyncio
    async def test_escalation_issues_admin_token(self, db, make_global_admin, mock_cache):
        admin = make_global_admin(roles=("system-admin", "theme-admin"))

        result = await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)

        assert result.roles == ["system-admin", "theme-admin"]
        assert "*" in result.access_rights
        assert result.expires_in == 15 * 60

        claims = jwt.decode(result.admin_token, settings.ADMIN_TOKEN_SECRET,
                            algorithms=[settings.ADMIN_TOKEN_ALGORITHM])
        assert claims["sub"] == admin.id
        assert claims["type"] == ADMIN_TOKEN_TYPE
        assert claims["roles"] == ["system-admin", "theme-admin"]

        session = _session(db, claims["jti"])
        assert session.status() == SESSION_ACTIVE
        assert claims["exp"] == int(as_utc(session.absolute_expires_at).timestamp())
        assert db.get(GlobalAdmin, admin.id).last_escalation is not None
        assert db.query(AuditLog).filter(AuditLog.action == ESCALATION_GRANTED).count() == 1
        assert mock_cache._data[USER_VERSION_KEY.format(user_id=admin.id)] == 1

    @pytest.mark.asyncio
    async def test_session_timeout_follows_record(self, db, make_global_admin):
        admin = make_global_admin(session_timeout=5)
        result = await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)
        assert result.expires_in == 5 * 60

    @pytest.mark.asyncio
    async def test_wrong_password(self, db, make_global_admin):
        admin = make_global_admin()

        with pytest.raises(UnauthorizedException) as exc_info:
            await escalation_service.escalate(db, admin.id, "Wrong-Passw0rd")

        assert exc_info.value.detail == INVALID_ESCALATION_PASSWORD
        assert db.query(AdminEscalationSession).count() == 0
        assert db.query(AuditLog).filter(AuditLog.action == ESCALATION_DENIED).count() == 1

    @pytest.mark.asyncio
    async def test_user_without_global_admin_category(self, db, seeded, make_user):
        user = make_user(categories=("staff",))
        with pytest.raises(ForbiddenException):
            await escalation_service.escalate(db, user.id, ESCALATION_PASSWORD)

    @pytest.mark.asyncio
    async def test_inactive_record_is_forbidden_before_password_check(self, db, make_global_admin):
        admin = make_global_admin()
        db.get(GlobalAdmin, admin.id).is_active = False
        db.commit()

        with pytest.raises(ForbiddenException):
            await escalation_service.escalate(db, admin.id, "Wrong-Passw0rd")

    @pytest.mark.asyncio
    async def test_admin_without_roles(self, db, make_global_admin):
        admin = make_global_admin()
        membership = (
            db.query(DepartmentMembership)
            .filter(DepartmentMembership.user_id == admin.id, DepartmentMembership.user_category == GLOBAL_ADMIN)
            .one()
        )
        membership.is_active = False
        membership.is_primary = False
        db.commit()

        with pytest.raises(ForbiddenException):
            await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)

    @pytest.mark.asyncio
    async def test_new_escalation_revokes_previous_session(self, db, make_global_admin):
        admin = make_global_admin()
        first = await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)
        second = await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)

        with pytest.raises(UnauthorizedException):
            escalation_service.validate_admin_token(db, first.admin_token, user_id=admin.id)
        assert escalation_service.validate_admin_token(db, second.admin_token, user_id=admin.id)

        statuses = sorted(s.status() for s in db.query(AdminEscalationSession).all())
        assert statuses == [SESSION_ACTIVE, SESSION_REVOKED]


class TestAdminToken:

    @pytest.mark.asyncio
    async def test_token_of_another_user_is_rejected(self, db, make_global_admin):
        admin = make_global_admin()
        result = await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)

        with pytest.raises(UnauthorizedException):
            escalation_service.validate_admin_token(db, result.admin_token, user_id="someone-else")

    @pytest.mark.asyncio
    async def test_activity_extends_deadline_up_to_absolute_expiry(self, db, make_global_admin):
        admin = make_global_admin()
        result = await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)
        claims = escalation_service.decode_admin_token(result.admin_token)

        session = _session(db, claims["jti"])
        now = utcnow()
        session.expires_at = now + timedelta(seconds=30)
        session.absolute_expires_at = now + timedelta(seconds=60)
        db.commit()

        session = escalation_service.validate_admin_token(db, result.admin_token)
        assert as_utc(session.expires_at) == as_utc(session.absolute_expires_at)

    @pytest.mark.asyncio
    async def test_expired_session_is_rejected(self, db, make_global_admin):
        admin = make_global_admin()
        result = await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)
        claims = escalation_service.decode_admin_token(result.admin_token)

        session = _session(db, claims["jti"])
        session.expires_at = utcnow() - timedelta(seconds=1)
        db.commit()

        with pytest.raises(UnauthorizedException):
            escalation_service.validate_admin_token(db, result.admin_token)

    @pytest.mark.asyncio
    async def test_deactivated_admin_loses_session(self, db, make_global_admin):
        admin = make_global_admin()
        result = await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)
        db.get(GlobalAdmin, admin.id).is_active = False
        db.commit()

        with pytest.raises(UnauthorizedException):
            escalation_service.validate_admin_token(db, result.admin_token)

    def test_identity_token_is_not_an_admin_token(self):
        token = jwt.encode({"sub": "user-1", "jti": "x", "type": "access"},
                           settings.ADMIN_TOKEN_SECRET, algorithm=settings.ADMIN_TOKEN_ALGORITHM)
        with pytest.raises(UnauthorizedException):
            escalation_service.decode_admin_token(token)

    def test_expired_token(self):
        past = int((utcnow() - timedelta(minutes=1)).timestamp())
        token = jwt.encode({"sub": "user-1", "jti": "x", "type": ADMIN_TOKEN_TYPE, "exp": past},
                           settings.ADMIN_TOKEN_SECRET, algorithm=settings.ADMIN_TOKEN_ALGORITHM)
        with pytest.raises(UnauthorizedException):
            escalation_service.decode_admin_token(token)

    def test_token_with_wrong_signature(self):
        token = jwt.encode({"sub": "user-1", "jti": "x", "type": ADMIN_TOKEN_TYPE}, "not-the-secret")
        with pytest.raises(UnauthorizedException):
            escalation_service.decode_admin_token(token)

    def test_unknown_session(self, db, seeded):
        token = jwt.encode({"sub": "user-1", "jti": "missing", "type": ADMIN_TOKEN_TYPE},
                           settings.ADMIN_TOKEN_SECRET, algorithm=settings.ADMIN_TOKEN_ALGORITHM)
        with pytest.raises(UnauthorizedException):
            escalation_service.validate_admin_token(db, token)

    def test_admin_credentials_are_required(self, db):
        with pytest.raises(UnauthorizedException):
            escalation_service.require_admin_credentials(db, None, "token")
        with pytest.raises(UnauthorizedException):
            escalation_service.require_admin_credentials(db, "user-1", None)


class TestSessionLifecycle:

    @pytest.mark.asyncio
    async def test_deescalate_is_idempotent(self, db, make_global_admin):
        admin = make_global_admin()
        result = await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)

        assert await escalation_service.deescalate(db, admin.id) is True
        assert await escalation_service.deescalate(db, admin.id) is False

        with pytest.raises(UnauthorizedException):
            escalation_service.validate_admin_token(db, result.admin_token)
        assert escalation_service.get_active_session(db, admin.id) is None

    @pytest.mark.asyncio
    async def test_refresh_session(self, db, make_global_admin):
        admin = make_global_admin()
        await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)

        info = escalation_service.refresh_session(db, admin.id)
        assert info.status == SESSION_ACTIVE
        assert info.roles == ["system-admin"]
        assert info.expires_at <= info.absolute_expires_at

    def test_refresh_without_session(self, db, make_global_admin):
        admin = make_global_admin()
        with pytest.raises(NotFoundException):
            escalation_service.refresh_session(db, admin.id)

    @pytest.mark.asyncio
    async def test_cleanup_removes_stale_sessions(self, db, make_global_admin):
        admin = make_global_admin()
        await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)
        await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)

        assert escalation_service.cleanup_expired_sessions(db) == 1
        assert db.query(AdminEscalationSession).count() == 1
        assert escalation_service.get_active_session(db, admin.id) is not None

    @pytest.mark.asyncio
    async def test_session_roles_stay_in_master_department(self, db, make_global_admin):
        admin = make_global_admin()
        result = await escalation_service.escalate(db, admin.id, ESCALATION_PASSWORD)
        entry = db.query(AuditLog).filter(AuditLog.action == ESCALATION_GRANTED).one()

        assert entry.department_id == MASTER_DEPARTMENT_ID
        assert entry.details == {"roles": result.roles}
