"""
Department-scoped access control for the LMS backend.

Main components:
- hierarchy: department tree traversal and structural writes
- roles: role resolution with cascading and explicit-membership blocking
- access_rights: role definitions, wildcard matching and validation
- authorize: the single authorization decision point
- escalation: admin escalation sessions and admin tokens
- cache: versioned per-user permission cache
- management: role assignment and global administrator administration
- auth: FastAPI dependencies building the Principal
"""

from .principal import Principal

from .access_rights import (
    RoleRegistry,
    role_registry,
    resolve_access_rights,
    matches_access_right,
    has_access_right,
    has_any_access_right,
    has_all_access_rights,
    expand_wildcards,
    validate_access_right,
)

from .hierarchy import (
    DepartmentNode,
    DepartmentTree,
    get_department_and_subdepartments,
    get_parent_departments,
    get_root_department,
    is_top_level_member,
    has_hierarchical_access,
    get_department_ids_for_query,
    create_department,
    move_department,
)

from .roles import (
    get_roles_for_department,
    resolve_roles_with_source,
    get_visible_departments,
    get_all_memberships,
    get_cascaded_child_departments,
    has_role,
    get_primary_department,
)

from .cache import (
    PermissionCache,
    permission_cache,
)

from .authorize import authorize, ensure_authorized

from .escalation import (
    EscalationService,
    escalation_service,
    validate_escalation_password_strength,
)

from .management import (
    assign_role,
    remove_role,
    update_membership,
    create_global_admin,
    remove_global_admin,
    update_global_admin_roles,
    update_role_access_rights,
)

from .auth import (
    get_current_principal,
    get_escalated_principal,
    require_escalation,
)

__all__ = [
    "Principal",

    # Access rights
    "RoleRegistry",
    "role_registry",
    "resolve_access_rights",
    "matches_access_right",
    "has_access_right",
    "has_any_access_right",
    "has_all_access_rights",
    "expand_wildcards",
    "validate_access_right",

    # Hierarchy
    "DepartmentNode",
    "DepartmentTree",
    "get_department_and_subdepartments",
    "get_parent_departments",
    "get_root_department",
    "is_top_level_member",
    "has_hierarchical_access",
    "get_department_ids_for_query",
    "create_department",
    "move_department",

    # Role resolution
    "get_roles_for_department",
    "resolve_roles_with_source",
    "get_visible_departments",
    "get_all_memberships",
    "get_cascaded_child_departments",
    "has_role",
    "get_primary_department",

    # Caching
    "PermissionCache",
    "permission_cache",

    "authorize",
    "ensure_authorized",

    # Escalation
    "EscalationService",
    "escalation_service",
    "validate_escalation_password_strength",

    # Administration
    "assign_role",
    "remove_role",
    "update_membership",
    "create_global_admin",
    "remove_global_admin",
    "update_global_admin_roles",
    "update_role_access_rights",

    # FastAPI dependencies
    "get_current_principal",
    "get_escalated_principal",
    "require_escalation",
]
