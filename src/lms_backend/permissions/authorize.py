import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from lms_backend.api.exceptions import ForbiddenException
from lms_backend.interface.authorization import (
    AuthorizeResult,
    DepartmentRights,
    Permission,
    PermissionSource,
    ResourceContext,
)
from lms_backend.model.constants import GLOBAL_ADMIN, MASTER_DEPARTMENT_ID
from lms_backend.permissions.access_rights import (
    find_matching_right,
    own_scoped_variants,
    role_registry,
)
from lms_backend.permissions.cache import PermissionCache, permission_cache
from lms_backend.permissions.principal import Principal
from lms_backend.permissions.roles import get_all_memberships

logger = logging.getLogger(__name__)

DEPARTMENT_SCOPE_PREFIX = "dept:"


def parse_scope(scope: Optional[str]) -> Optional[str]:
    """``"dept:<id>"`` or a bare department id; ``"*"`` and empty mean no department."""
    if not scope or scope == "*":
        return None
    if scope.startswith(DEPARTMENT_SCOPE_PREFIX):
        return scope[len(DEPARTMENT_SCOPE_PREFIX):] or None
    return scope


def _granting_role(db: Session, roles: List[str], required: List[str]) -> Optional[str]:
    for role in roles:
        if any(find_matching_right(role_registry.rights_for(db, role), right) for right in required):
            return role
    return None


def _denied() -> AuthorizeResult:
    return AuthorizeResult(allowed=False, reason="denied")


def _department_grant(db: Session, rights: DepartmentRights, dept_id: str, held: str, required_right: str,
                      reason: Optional[str] = None) -> AuthorizeResult:
    role = _granting_role(db, rights.roles, [required_right]) or (rights.roles[0] if rights.roles else "")
    source = rights.role_sources.get(role, rights.source_department_id)
    return AuthorizeResult(
        allowed=True,
        reason=reason or ("department_right" if source == dept_id else "hierarchy_right"),
        granted_by=Permission(
            right=held,
            scope=f"{DEPARTMENT_SCOPE_PREFIX}{dept_id}",
            source=PermissionSource(role=role, department_id=source),
        ),
    )


async def authorize(
    db: Session,
    principal: Principal,
    required_right: str,
    *,
    scope: Optional[str] = None,
    resource: Optional[ResourceContext] = None,
    cache: Optional[PermissionCache] = None,
) -> AuthorizeResult:
    """
    Decide whether ``principal`` may exercise ``required_right``.

    Checked in order: escalated global rights, the scope department, the
    resource's department, then ownership of the resource. A route-level
    check (no scope, no resource) falls back to every department the user
    is a direct member of. The first match wins; nothing matching yields
    ``reason="denied"``.
    """
    cache = cache or permission_cache

    held = find_matching_right(principal.global_rights, required_right)
    if held is not None:
        role = _granting_role(db, principal.admin_roles, [required_right])
        return AuthorizeResult(
            allowed=True,
            reason="global_right",
            granted_by=Permission(
                right=held,
                scope="*",
                source=PermissionSource(role=role or GLOBAL_ADMIN, department_id=MASTER_DEPARTMENT_ID),
            ),
        )

    if principal.user_id is None:
        return _denied()

    department_ids = []
    for dept_id in (parse_scope(scope), resource.department_id if resource else None):
        if dept_id and dept_id not in department_ids:
            department_ids.append(dept_id)

    resolved = {}
    for dept_id in department_ids:
        rights = await cache.get_department_rights(db, principal.user_id, principal.user_categories, dept_id)
        resolved[dept_id] = rights
        held = find_matching_right(rights.rights, required_right)
        if held is not None:
            return _department_grant(db, rights, dept_id, held, required_right)

    if resource is not None and resource.created_by and resource.created_by == principal.user_id:
        candidates = [required_right] + own_scoped_variants(required_right)

        held_roles = []
        if resource.department_id and resource.department_id in resolved:
            rights = resolved[resource.department_id]
            held_roles.extend((role, rights.role_sources.get(role)) for role in rights.roles)
        for membership in get_all_memberships(db, principal.user_id):
            if membership.user_category == GLOBAL_ADMIN:
                continue
            held_roles.extend((role, membership.department_id) for role in membership.roles)

        for role, department_id in held_roles:
            role_rights = role_registry.rights_for(db, role)
            for candidate in candidates:
                held = find_matching_right(role_rights, candidate)
                if held is not None:
                    return AuthorizeResult(
                        allowed=True,
                        reason="own_resource",
                        granted_by=Permission(
                            right=held,
                            scope="own",
                            source=PermissionSource(role=role, department_id=department_id),
                        ),
                    )

    if not department_ids and resource is None:
        member_of = list(dict.fromkeys(
            m.department_id for m in get_all_memberships(db, principal.user_id) if m.user_category != GLOBAL_ADMIN
        ))
        permissions = await cache.get_user_permissions(db, principal.user_id, principal.user_categories, member_of)
        for dept_id in member_of:
            rights = permissions.department_rights.get(dept_id)
            held = find_matching_right(rights.rights, required_right) if rights else None
            if held is not None:
                return _department_grant(db, rights, dept_id, held, required_right, reason="department_right")

    logger.debug(f"Denied {required_right} for {principal.user_id} (scope={scope})")
    return _denied()


async def ensure_authorized(
    db: Session,
    principal: Principal,
    required_right: str,
    *,
    scope: Optional[str] = None,
    resource: Optional[ResourceContext] = None,
    cache: Optional[PermissionCache] = None,
) -> AuthorizeResult:
    """``authorize`` for route guards: a denial becomes a 403."""
    result = await authorize(db, principal, required_right, scope=scope, resource=resource, cache=cache)
    if not result.allowed:
        raise ForbiddenException(f"Missing access right {required_right}")
    return result
