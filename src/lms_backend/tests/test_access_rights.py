"""
Tests for access-right resolution, wildcard matching and validation.
"""

import pytest

from lms_backend.api.exceptions import BadRequestException
from lms_backend.model.role import RoleDefinition
from lms_backend.permissions.access_rights import (
    RoleRegistry,
    expand_wildcards,
    find_matching_right,
    has_access_right,
    has_all_access_rights,
    has_any_access_right,
    matches_access_right,
    own_scoped_variants,
    resolve_access_rights,
    role_registry,
    validate_access_right,
)


@pytest.mark.unit
class TestWildcardMatching:

    @pytest.mark.parametrize("held,required,expected", [
        ("content:courses:read", "content:courses:read", True),
        ("content:courses:read", "content:courses:manage", False),
        ("*", "billing:invoices:manage", True),
        ("content:*", "content:lessons:read", True),
        ("content:courses:*", "content:courses:manage", True),
        ("content:courses:*", "content:lessons:read", False),
        ("content:*", "contents:lessons:read", False),
        ("system:*", "content:courses:read", False),
        ("system:*", "system:admins:manage", True),
        ("content:*", "content:", False),
        ("content:*", "content:x", False),
        ("content:courses:*", "content:courses:", False),
        ("content:*", "content:courses:read:extra", False),
    ])
    def test_matches_access_right(self, held, required, expected):
        assert matches_access_right(held, required) is expected

    def test_any_and_all(self):
        held = ["content:courses:read", "billing:*"]

        assert has_access_right(held, "billing:invoices:manage")
        assert has_any_access_right(held, ["system:admins:manage", "content:courses:read"])
        assert not has_any_access_right(held, ["system:admins:manage"])
        assert has_all_access_rights(held, ["content:courses:read", "billing:payments:read"])
        assert not has_all_access_rights(held, ["content:courses:read", "content:courses:manage"])

    def test_find_matching_right_returns_held_pattern(self):
        assert find_matching_right(["learner:*", "content:*"], "content:exams:attempt") == "content:*"
        assert find_matching_right([], "content:exams:attempt") is None

    def test_own_scoped_variants(self):
        assert own_scoped_variants("content:classes:manage") == [
            "content:classes:manage-own",
            "content:own:manage",
        ]
        assert own_scoped_variants("*") == []


@pytest.mark.unit
class TestValidation:

    @pytest.mark.parametrize("right", [
        "*",
        "content:*",
        "content:courses:*",
        "grades:own-classes:manage",
        "reports:department-progress:read",
    ])
    def test_valid_rights(self, right):
        assert validate_access_right(right) == right

    @pytest.mark.parametrize("right", [
        "",
        "content",
        "Content:courses:read",
        "content:*:read",
        "content:courses:read:extra",
        "content::read",
    ])
    def test_invalid_rights(self, right):
        with pytest.raises(BadRequestException):
            validate_access_right(right)


class TestRoleRegistry:

    def test_resolved_rights_are_sorted_union(self, db, seeded):
        rights = resolve_access_rights(db, ["course-taker", "auditor"])

        assert rights == sorted(rights)
        assert len(rights) == len(set(rights))
        assert "content:exams:attempt" in rights
        assert "learner:profile:read" in rights

    def test_unknown_role_grants_nothing(self, db, seeded):
        assert resolve_access_rights(db, ["visitor"]) == []

    def test_system_admin_holds_wildcard(self, db, seeded):
        assert resolve_access_rights(db, ["system-admin"]) == ["*"]

    def test_registry_serves_snapshot_until_invalidated(self, db, seeded):
        assert "content:courses:read" in role_registry.rights_for(db, "auditor")

        definition = db.query(RoleDefinition).filter(RoleDefinition.name == "auditor").one()
        definition.access_rights = ["learner:profile:read"]
        db.commit()
        assert "content:courses:read" in role_registry.rights_for(db, "auditor")

        role_registry.invalidate()
        assert role_registry.rights_for(db, "auditor") == ["learner:profile:read"]

    def test_registry_reloads_when_epoch_moves(self, db, seeded):
        registry = RoleRegistry(ttl_seconds=3600)
        registry.sync_epoch(0)
        assert "content:courses:read" in registry.rights_for(db, "auditor")

        definition = db.query(RoleDefinition).filter(RoleDefinition.name == "auditor").one()
        definition.access_rights = ["learner:profile:read"]
        db.commit()

        registry.sync_epoch(0)
        assert "content:courses:read" in registry.rights_for(db, "auditor")

        registry.sync_epoch(1)
        assert registry.rights_for(db, "auditor") == ["learner:profile:read"]

    def test_registry_reloads_after_ttl(self, db, seeded):
        registry = RoleRegistry(ttl_seconds=0)
        registry.rights_for(db, "auditor")

        definition = db.query(RoleDefinition).filter(RoleDefinition.name == "auditor").one()
        definition.access_rights = ["learner:profile:read"]
        db.commit()
        assert registry.rights_for(db, "auditor") == ["learner:profile:read"]

    def test_inactive_role_grants_nothing(self, db, seeded):
        definition = db.query(RoleDefinition).filter(RoleDefinition.name == "auditor").one()
        definition.is_active = False
        db.commit()
        assert resolve_access_rights(db, ["auditor"]) == []


class TestWildcardExpansion:

    def test_expand_domain_wildcard(self, db, seeded):
        rights = expand_wildcards(db, ["billing:*", "content:courses:read"])

        assert "billing:invoices:manage" in rights
        assert "billing:department:read" in rights
        assert "content:courses:read" in rights
        assert all(not right.endswith("*") for right in rights)

    def test_expand_universal_wildcard(self, db, seeded):
        rights = expand_wildcards(db, ["*"])
        assert "system:admins:manage" in rights
        assert "content:courses:manage" in rights
