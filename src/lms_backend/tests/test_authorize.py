"""
Tests for the authorization decision point.
"""

import pytest

from lms_backend.api.exceptions import ForbiddenException
from lms_backend.interface.authorization import ResourceContext
from lms_backend.model.constants import GLOBAL_ADMIN, LEARNER, MASTER_DEPARTMENT_ID, STAFF
from lms_backend.permissions.authorize import authorize, ensure_authorized, parse_scope
from lms_backend.permissions.principal import Principal


def principal_for(user, **kwargs) -> Principal:
    return Principal(user_id=user.id, user_categories=list(user.user_categories), **kwargs)


@pytest.fixture
def instructor(org, make_user, make_membership):
    user = make_user(categories=(STAFF,))
    make_membership(user, org["ENG"], STAFF, ["instructor"])
    return user


@pytest.fixture
def learner(org, make_user, make_membership):
    user = make_user(categories=(LEARNER,))
    make_membership(user, org["CS"], LEARNER, ["course-taker"])
    return user


@pytest.mark.unit
class TestParseScope:

    @pytest.mark.parametrize("scope,expected", [
        (None, None),
        ("", None),
        ("*", None),
        ("dept:abc", "abc"),
        ("dept:", None),
        ("abc", "abc"),
    ])
    def test_parse_scope(self, scope, expected):
        assert parse_scope(scope) == expected


class TestAuthorize:

    @pytest.mark.asyncio
    async def test_global_right_from_escalation(self, db, org, make_global_admin):
        admin = make_global_admin()
        principal = principal_for(admin).with_escalation("token", ["system-admin"], ["*"])

        result = await authorize(db, principal, "billing:invoices:manage", scope=f"dept:{org['CS'].id}")

        assert result.allowed
        assert result.reason == "global_right"
        assert result.granted_by.right == "*"
        assert result.granted_by.scope == "*"
        assert result.granted_by.source.role == "system-admin"
        assert result.granted_by.source.department_id == MASTER_DEPARTMENT_ID

    @pytest.mark.asyncio
    async def test_department_right(self, db, org, instructor):
        result = await authorize(db, principal_for(instructor), "content:classes:read", scope=f"dept:{org['ENG'].id}")

        assert result.allowed
        assert result.reason == "department_right"
        assert result.granted_by.scope == f"dept:{org['ENG'].id}"
        assert result.granted_by.source.role == "instructor"
        assert result.granted_by.source.department_id == org["ENG"].id

    @pytest.mark.asyncio
    async def test_hierarchy_right(self, db, org, instructor):
        result = await authorize(db, principal_for(instructor), "content:classes:read", scope=org["AI"].id)

        assert result.allowed
        assert result.reason == "hierarchy_right"
        assert result.granted_by.source.department_id == org["ENG"].id

    @pytest.mark.asyncio
    async def test_resource_department_is_checked(self, db, org, instructor):
        resource = ResourceContext(type="class", id="class-1", department_id=org["CS"].id)
        result = await authorize(db, principal_for(instructor), "content:classes:read", resource=resource)

        assert result.allowed
        assert result.reason == "hierarchy_right"

    @pytest.mark.asyncio
    async def test_denied_outside_membership(self, db, org, instructor):
        result = await authorize(db, principal_for(instructor), "content:classes:read", scope=org["ART"].id)

        assert not result.allowed
        assert result.reason == "denied"
        assert result.granted_by is None

    @pytest.mark.asyncio
    async def test_route_level_check_uses_memberships(self, db, org, instructor):
        result = await authorize(db, principal_for(instructor), "content:classes:read")

        assert result.allowed
        assert result.reason == "department_right"
        assert result.granted_by.scope == f"dept:{org['ENG'].id}"
        assert result.granted_by.source.role == "instructor"
        assert result.granted_by.source.department_id == org["ENG"].id

    @pytest.mark.asyncio
    async def test_route_level_check_finds_second_membership(self, db, org, instructor, make_membership):
        make_membership(instructor, org["ART"], STAFF, ["department-admin"])

        result = await authorize(db, principal_for(instructor), "settings:department:manage", scope="*")

        assert result.reason == "department_right"
        assert result.granted_by.source.department_id == org["ART"].id

    @pytest.mark.asyncio
    async def test_route_level_check_denies_unheld_right(self, db, org, instructor, make_user):
        result = await authorize(db, principal_for(instructor), "settings:department:manage")
        assert result.reason == "denied"

        outsider = make_user(categories=(STAFF,))
        result = await authorize(db, principal_for(outsider), "content:classes:read")
        assert result.reason == "denied"

    @pytest.mark.asyncio
    async def test_route_level_check_ignores_global_admin_membership(self, db, org, make_global_admin):
        admin = make_global_admin()
        result = await authorize(db, principal_for(admin), "system:roles:manage")
        assert result.reason == "denied"

    @pytest.mark.asyncio
    async def test_anonymous_principal_is_denied(self, db, org):
        result = await authorize(db, Principal(), "content:courses:read", scope=org["UNI"].id)
        assert result.reason == "denied"

    @pytest.mark.asyncio
    async def test_global_admin_rights_need_escalation(self, db, org, make_global_admin):
        admin = make_global_admin()

        for scope in (MASTER_DEPARTMENT_ID, org["UNI"].id):
            result = await authorize(db, principal_for(admin), "system:roles:manage", scope=scope)
            assert result.reason == "denied"

    @pytest.mark.asyncio
    async def test_resource_action_own_variant(self, db, org, instructor):
        resource = ResourceContext(type="class", id="class-1", department_id=org["CS"].id,
                                   created_by=instructor.id)
        result = await authorize(db, principal_for(instructor), "content:classes:manage", resource=resource)

        assert result.allowed
        assert result.reason == "own_resource"
        assert result.granted_by.right == "content:classes:manage-own"
        assert result.granted_by.scope == "own"

    @pytest.mark.asyncio
    async def test_domain_own_variant(self, db, org, learner):
        resource = ResourceContext(type="enrollment", id="enrollment-1", created_by=learner.id)
        result = await authorize(db, principal_for(learner), "enrollment:records:read", resource=resource)

        assert result.allowed
        assert result.reason == "own_resource"
        assert result.granted_by.right == "enrollment:own:read"
        assert result.granted_by.source.role == "course-taker"

    @pytest.mark.asyncio
    async def test_ownership_requires_creator(self, db, org, instructor, learner):
        resource = ResourceContext(type="class", id="class-1", department_id=org["CS"].id,
                                   created_by=learner.id)
        result = await authorize(db, principal_for(instructor), "content:classes:manage", resource=resource)
        assert result.reason == "denied"

    @pytest.mark.asyncio
    async def test_department_rights_are_cached(self, db, org, instructor, mock_cache):
        principal = principal_for(instructor)
        await authorize(db, principal, "content:classes:read", scope=org["CS"].id)
        mock_cache.clear_log()

        await authorize(db, principal, "content:classes:read", scope=org["CS"].id)
        assert not any(call[0] == "set" for call in mock_cache.call_log)


class TestEnsureAuthorized:

    @pytest.mark.asyncio
    async def test_allowed_returns_result(self, db, org, instructor):
        result = await ensure_authorized(db, principal_for(instructor), "content:classes:read", scope=org["ENG"].id)
        assert result.allowed

    @pytest.mark.asyncio
    async def test_denied_raises_forbidden(self, db, org, instructor):
        with pytest.raises(ForbiddenException):
            await ensure_authorized(db, principal_for(instructor), "settings:department:manage", scope=org["ENG"].id)
