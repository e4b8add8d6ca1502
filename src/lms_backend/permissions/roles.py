"""
Role resolution: which roles does a user hold in a given department?

A direct membership in the department always decides the answer. Without one,
roles cascade down from the nearest ancestor membership unless a department
on the way requires explicit membership. Global-admin roles exist only in the
master department and never cascade.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from lms_backend.interface.departments import DepartmentWithRoles, MembershipSummary
from lms_backend.model.auth import GlobalAdmin, User
from lms_backend.model.base import as_utc, utcnow
from lms_backend.model.constants import GLOBAL_ADMIN, MASTER_DEPARTMENT_ID, USER_CATEGORIES
from lms_backend.model.department import Department
from lms_backend.model.membership import DepartmentMembership

logger = logging.getLogger(__name__)


def _unique(values) -> List[str]:
    return list(dict.fromkeys(values))


def _active_user(db: Session, user_id: str) -> Optional[User]:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


def _active_global_admin(db: Session, user_id: str) -> Optional[GlobalAdmin]:
    record = db.get(GlobalAdmin, user_id)
    if record is None or not record.is_active:
        return None
    return record


def _effective_memberships(db: Session, user_id: str, user_category: Optional[str] = None,
                           department_id: Optional[str] = None,
                           now: Optional[datetime] = None) -> List[DepartmentMembership]:
    query = db.query(DepartmentMembership).filter(
        DepartmentMembership.user_id == user_id,
        DepartmentMembership.is_active.is_(True),
    )
    if user_category is not None:
        query = query.filter(DepartmentMembership.user_category == user_category)
    if department_id is not None:
        query = query.filter(DepartmentMembership.department_id == department_id)

    now = now or utcnow()
    memberships = query.order_by(DepartmentMembership.joined_at).all()
    return [m for m in memberships if m.is_effective(now)]


def direct_membership(db: Session, user_id: str, department_id: str, user_category: str,
                      now: Optional[datetime] = None) -> Optional[DepartmentMembership]:
    memberships = _effective_memberships(db, user_id, user_category, department_id, now)
    return memberships[0] if memberships else None


def resolve_roles_with_source(db: Session, user_id: str, department_id: str, user_category: str,
                              now: Optional[datetime] = None) -> Tuple[List[str], Optional[str]]:
    """
    Resolve roles and the department that supplied them.

    Returns ``([], None)`` whenever nothing applies; missing users, records or
    departments never raise.
    """
    if user_category not in USER_CATEGORIES:
        return [], None

    if _active_user(db, user_id) is None:
        return [], None

    if user_category == GLOBAL_ADMIN:
        if department_id != MASTER_DEPARTMENT_ID or _active_global_admin(db, user_id) is None:
            return [], None
        membership = direct_membership(db, user_id, MASTER_DEPARTMENT_ID, GLOBAL_ADMIN, now)
        if membership is None:
            return [], None
        return _unique(membership.roles or []), MASTER_DEPARTMENT_ID

    visited = set()
    current = db.get(Department, department_id)
    while current is not None and current.is_active and current.id not in visited:
        visited.add(current.id)

        membership = direct_membership(db, user_id, current.id, user_category, now)
        if membership is not None:
            return _unique(membership.roles or []), current.id

        if current.parent_id is None:
            break

        parent = db.get(Department, current.parent_id)
        if parent is None or parent.require_explicit_membership:
            break
        current = parent

    return [], None


def get_roles_for_department(db: Session, user_id: str, department_id: str, user_category: str) -> List[str]:
    roles, _ = resolve_roles_with_source(db, user_id, department_id, user_category)
    return roles


def get_visible_departments(db: Session, user_id: str, user_category: str) -> List[DepartmentWithRoles]:
    """
    Departments a user can see for one category.

    Direct memberships come back at level 0. Their active, visible children
    are nested at level 1 with the cascaded roles, unless the parent requires
    explicit membership. A department never appears twice.
    """
    if user_category not in USER_CATEGORIES or _active_user(db, user_id) is None:
        return []

    if user_category == GLOBAL_ADMIN:
        if _active_global_admin(db, user_id) is None:
            return []
        result = []
        for membership in _effective_memberships(db, user_id, GLOBAL_ADMIN):
            department = membership.department
            if department is None or not department.is_active or department.id != MASTER_DEPARTMENT_ID:
                continue
            result.append(DepartmentWithRoles(
                id=department.id,
                name=department.name,
                code=department.code,
                roles=_unique(membership.roles or []),
                is_primary=True,
                level=0,
            ))
        return result

    memberships = [
        m for m in _effective_memberships(db, user_id, user_category)
        if m.department is not None and m.department.is_active and m.department.is_visible
    ]
    # Direct memberships win over cascaded entries for the same department
    processed = {m.department_id for m in memberships}

    result = []
    emitted = set()
    for membership in memberships:
        department = membership.department
        if department.id in emitted:
            continue
        emitted.add(department.id)

        entry = DepartmentWithRoles(
            id=department.id,
            name=department.name,
            code=department.code,
            roles=_unique(membership.roles or []),
            is_primary=bool(membership.is_primary),
            level=0,
            parent_id=department.parent_id,
        )

        if not department.require_explicit_membership:
            for child in sorted(department.children, key=lambda d: d.name):
                if not child.is_active or not child.is_visible or child.id in processed:
                    continue
                processed.add(child.id)
                entry.children.append(DepartmentWithRoles(
                    id=child.id,
                    name=child.name,
                    code=child.code,
                    roles=list(entry.roles),
                    is_primary=False,
                    level=1,
                    parent_id=department.id,
                ))

        result.append(entry)

    return result


def get_all_memberships(db: Session, user_id: str) -> List[MembershipSummary]:
    """Active memberships across learner, staff and global-admin categories."""
    if _active_user(db, user_id) is None:
        return []

    global_admin_active = _active_global_admin(db, user_id) is not None

    summaries = []
    for membership in _effective_memberships(db, user_id):
        if membership.user_category == GLOBAL_ADMIN and not global_admin_active:
            continue
        department = membership.department
        if department is None:
            continue
        summaries.append(MembershipSummary(
            user_category=membership.user_category,
            membership_id=membership.id,
            department_id=department.id,
            department_name=department.name,
            department_code=department.code,
            roles=_unique(membership.roles or []),
            is_primary=True if membership.user_category == GLOBAL_ADMIN else bool(membership.is_primary),
            joined_at=as_utc(membership.joined_at),
            is_active=membership.is_active,
        ))

    summaries.sort(key=lambda s: (USER_CATEGORIES.index(s.user_category), s.joined_at))
    return summaries


def get_cascaded_child_departments(db: Session, user_id: str, parent_department_id: str,
                                   user_category: str) -> List[DepartmentWithRoles]:
    """Immediate children that inherit the user's roles from ``parent_department_id``."""
    if user_category == GLOBAL_ADMIN:
        return []

    parent_roles = get_roles_for_department(db, user_id, parent_department_id, user_category)
    if not parent_roles:
        return []

    parent = db.get(Department, parent_department_id)
    if parent is None or not parent.is_active or parent.require_explicit_membership:
        return []

    return [
        DepartmentWithRoles(
            id=child.id,
            name=child.name,
            code=child.code,
            roles=list(parent_roles),
            is_primary=False,
            level=1,
            parent_id=parent.id,
        )
        for child in sorted(parent.children, key=lambda d: d.name)
        if child.is_active and child.is_visible
    ]


def has_role(db: Session, user_id: str, department_id: str, role_name: str,
             user_category: Optional[str] = None) -> bool:
    categories = [user_category] if user_category else USER_CATEGORIES
    return any(
        role_name in get_roles_for_department(db, user_id, department_id, category)
        for category in categories
    )


def get_primary_department(db: Session, user_id: str, user_category: str) -> Optional[DepartmentWithRoles]:
    if _active_user(db, user_id) is None:
        return None

    if user_category == GLOBAL_ADMIN:
        if _active_global_admin(db, user_id) is None:
            return None
        candidates = _effective_memberships(db, user_id, GLOBAL_ADMIN)
    else:
        candidates = [m for m in _effective_memberships(db, user_id, user_category) if m.is_primary]

    for membership in candidates:
        department = membership.department
        if department is None:
            continue
        return DepartmentWithRoles(
            id=department.id,
            name=department.name,
            code=department.code,
            roles=_unique(membership.roles or []),
            is_primary=True,
            level=0,
            parent_id=department.parent_id,
        )
    return None
