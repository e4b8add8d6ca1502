"""
Role administration: granting, revoking and editing memberships, global
administrators and role definitions.

Every write checks its structural guards (last department-admin, last
system-admin, primary membership) before touching any row, audits the change
in the same transaction and invalidates the affected permission cache entries
after commit.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from lms_backend.api.exceptions import (
    BadRequestException,
    ConflictException,
    NotFoundException,
)
from lms_backend.model.auth import GlobalAdmin, User
from lms_backend.model.base import as_utc, utcnow
from lms_backend.model.constants import (
    DEPARTMENT_ADMIN_ROLE,
    GLOBAL_ADMIN,
    LEARNER,
    MASTER_DEPARTMENT_ID,
    STAFF,
    SYSTEM_ADMIN_ROLE,
)
from lms_backend.model.department import Department
from lms_backend.model.escalation import AdminEscalationSession
from lms_backend.model.membership import DepartmentMembership
from lms_backend.model.role import RoleDefinition
from lms_backend.permissions import audit
from lms_backend.permissions.access_rights import role_registry, validate_access_right
from lms_backend.permissions.cache import PermissionCache, permission_cache
from lms_backend.permissions.escalation import (
    PASSWORD_REQUIREMENTS,
    escalation_service,
    validate_escalation_password_strength,
)

logger = logging.getLogger(__name__)

CONCURRENT_MODIFICATION = "Membership was modified concurrently"

# Right needed to administer memberships of each category
MANAGE_RIGHTS = {
    LEARNER: "learner:department:manage",
    STAFF: "staff:department:manage",
    GLOBAL_ADMIN: "system:admins:manage",
}


def _cache(cache: Optional[PermissionCache]) -> PermissionCache:
    return cache or permission_cache


def _commit(db: Session, conflict_message: str = CONCURRENT_MODIFICATION):
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConflictException(conflict_message)
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Membership write rejected: {e.orig}")
        raise ConflictException("Write violates a membership constraint")


def get_role_definition(db: Session, role_name: str) -> RoleDefinition:
    definition = (
        db.query(RoleDefinition)
        .filter(RoleDefinition.name == role_name, RoleDefinition.is_active.is_(True))
        .first()
    )
    if definition is None:
        raise BadRequestException(f"Unknown role: {role_name}")
    return definition


def _validate_roles(db: Session, roles: Iterable[str], user_category: str) -> List[str]:
    roles = list(dict.fromkeys(roles))
    if not roles:
        raise BadRequestException("A membership needs at least one role")
    for role_name in roles:
        if get_role_definition(db, role_name).user_category != user_category:
            raise BadRequestException(f"Role {role_name} is not valid for category {user_category}")
    return roles


def _get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundException(f"User {user_id} not found")
    return user


def _get_membership(db: Session, user_id: str, membership_id: str,
                    expected_version: Optional[int] = None) -> DepartmentMembership:
    membership = db.get(DepartmentMembership, membership_id)
    if membership is None or membership.user_id != user_id:
        raise NotFoundException(f"Membership {membership_id} not found")
    if expected_version is not None and membership.version != expected_version:
        raise ConflictException(CONCURRENT_MODIFICATION)
    return membership


def _holders(db: Session, department_id: str, user_category: str, role_name: str,
             exclude_id: Optional[str] = None) -> List[DepartmentMembership]:
    now = utcnow()
    memberships = (
        db.query(DepartmentMembership)
        .filter(
            DepartmentMembership.department_id == department_id,
            DepartmentMembership.user_category == user_category,
            DepartmentMembership.is_active.is_(True),
        )
        .all()
    )
    return [
        m for m in memberships
        if m.id != exclude_id and m.is_effective(now) and role_name in (m.roles or [])
    ]


def _guard_last_admins(db: Session, membership: DepartmentMembership, remaining_roles: List[str],
                       remains_effective: bool = True):
    """Reject a change that would leave a department without its last admin."""
    held = membership.roles or []
    if not membership.is_effective():
        return

    def dropping(role: str) -> bool:
        return role in held and (not remains_effective or role not in remaining_roles)

    if membership.user_category == STAFF and dropping(DEPARTMENT_ADMIN_ROLE):
        if not _holders(db, membership.department_id, STAFF, DEPARTMENT_ADMIN_ROLE, exclude_id=membership.id):
            raise ConflictException("Cannot remove the last department-admin of a department")

    if membership.user_category == GLOBAL_ADMIN and dropping(SYSTEM_ADMIN_ROLE):
        others = _holders(db, MASTER_DEPARTMENT_ID, GLOBAL_ADMIN, SYSTEM_ADMIN_ROLE, exclude_id=membership.id)
        active_records = [db.get(GlobalAdmin, m.user_id) for m in others]
        if not any(record is not None and record.is_active for record in active_records):
            raise ConflictException("Cannot remove the last system-admin")


def _clear_primary(db: Session, user_id: str, user_category: str, keep_id: Optional[str] = None):
    others = (
        db.query(DepartmentMembership)
        .filter(
            DepartmentMembership.user_id == user_id,
            DepartmentMembership.user_category == user_category,
            DepartmentMembership.is_primary.is_(True),
        )
        .all()
    )
    changed = False
    for other in others:
        if other.id != keep_id:
            other.is_primary = False
            changed = True
    if changed:
        # The partial unique index is checked per statement
        db.flush()


def _deactivate(membership: DepartmentMembership, now: datetime):
    membership.is_active = False
    membership.is_primary = False
    membership.deactivated_at = now


def _revoke_sessions(db: Session, user_id: str, now: datetime):
    sessions = (
        db.query(AdminEscalationSession)
        .filter(AdminEscalationSession.user_id == user_id, AdminEscalationSession.revoked.is_(False))
        .all()
    )
    for session in sessions:
        session.revoked = True
        session.revoked_at = now


async def assign_role(
    db: Session,
    user_id: str,
    department_id: str,
    role_name: str,
    is_primary: bool = False,
    expires_at: Optional[datetime] = None,
    actor_id: Optional[str] = None,
    cache: Optional[PermissionCache] = None,
) -> DepartmentMembership:
    """
    Grant ``role_name`` in a department, adding it to the user's existing
    membership there or creating a new one.
    """
    definition = get_role_definition(db, role_name)
    category = definition.user_category
    user = _get_user(db, user_id)

    if not user.has_category(category):
        raise BadRequestException(f"User {user_id} does not have the {category} category")

    department = db.get(Department, department_id)
    if department is None:
        raise NotFoundException(f"Department {department_id} not found")
    if not department.is_active:
        raise BadRequestException(f"Department {department_id} is inactive")

    if category == GLOBAL_ADMIN:
        if department_id != MASTER_DEPARTMENT_ID:
            raise BadRequestException("Global-admin roles can only be held in the master department")
        record = db.get(GlobalAdmin, user_id)
        if record is None or not record.is_active:
            raise BadRequestException(f"User {user_id} is not an active global administrator")

    now = utcnow()
    existing = [
        m for m in (
            db.query(DepartmentMembership)
            .filter(
                DepartmentMembership.user_id == user_id,
                DepartmentMembership.department_id == department_id,
                DepartmentMembership.user_category == category,
                DepartmentMembership.is_active.is_(True),
            )
            .all()
        )
        if m.is_effective(now)
    ]

    if is_primary:
        _clear_primary(db, user_id, category, keep_id=existing[0].id if existing else None)

    if existing:
        membership = existing[0]
        if role_name not in (membership.roles or []):
            membership.roles = list(membership.roles or []) + [role_name]
        if is_primary:
            membership.is_primary = True
        if expires_at is not None:
            membership.expires_at = expires_at
        membership.updated_by = actor_id
    else:
        membership = DepartmentMembership(
            user_id=user_id,
            user_category=category,
            department_id=department_id,
            roles=[role_name],
            is_primary=is_primary,
            joined_at=now,
            expires_at=expires_at,
            created_by=actor_id,
            updated_by=actor_id,
        )
        db.add(membership)

    audit.record_audit_event(
        db, audit.ROLE_ASSIGNED, actor_id=actor_id, target_user_id=user_id,
        department_id=department_id, details={"role": role_name, "user_category": category},
    )
    _commit(db)
    db.refresh(membership)

    logger.info(f"Assigned {role_name} to user {user_id} in department {department_id}")
    await _cache(cache).invalidate_user(user_id)
    return membership


async def remove_role(
    db: Session,
    user_id: str,
    membership_id: str,
    role_name: Optional[str] = None,
    expected_version: Optional[int] = None,
    actor_id: Optional[str] = None,
    cache: Optional[PermissionCache] = None,
) -> DepartmentMembership:
    """
    Remove one role, or the whole membership when ``role_name`` is omitted.
    A membership left without roles is deactivated, never deleted.
    """
    membership = _get_membership(db, user_id, membership_id, expected_version)
    if not membership.is_active:
        raise NotFoundException(f"Membership {membership_id} is not active")

    held = list(membership.roles or [])
    if role_name is not None and role_name not in held:
        raise NotFoundException(f"Role {role_name} not held in membership {membership_id}")

    remaining = [] if role_name is None else [r for r in held if r != role_name]
    _guard_last_admins(db, membership, remaining, remains_effective=bool(remaining))

    now = utcnow()
    if remaining:
        membership.roles = remaining
    else:
        _deactivate(membership, now)
    membership.updated_by = actor_id

    if membership.user_category == GLOBAL_ADMIN:
        _revoke_sessions(db, user_id, now)

    audit.record_audit_event(
        db, audit.ROLE_REMOVED, actor_id=actor_id, target_user_id=user_id,
        department_id=membership.department_id,
        details={"roles": held if role_name is None else [role_name], "deactivated": not remaining},
    )
    _commit(db)
    db.refresh(membership)

    logger.info(f"Removed {role_name or 'all roles'} from membership {membership_id} of user {user_id}")
    await _cache(cache).invalidate_user(user_id)
    return membership


async def update_membership(
    db: Session,
    user_id: str,
    membership_id: str,
    roles: Optional[List[str]] = None,
    is_primary: Optional[bool] = None,
    expires_at: Optional[datetime] = None,
    is_active: Optional[bool] = None,
    expected_version: Optional[int] = None,
    actor_id: Optional[str] = None,
    cache: Optional[PermissionCache] = None,
) -> DepartmentMembership:
    membership = _get_membership(db, user_id, membership_id, expected_version)
    now = utcnow()

    new_roles = _validate_roles(db, roles, membership.user_category) if roles is not None else list(membership.roles or [])
    new_active = membership.is_active if is_active is None else is_active
    new_expiry = as_utc(expires_at) if expires_at is not None else as_utc(membership.expires_at)
    remains_effective = new_active and (new_expiry is None or new_expiry > now)

    _guard_last_admins(db, membership, new_roles, remains_effective=remains_effective)

    if is_primary and new_active:
        _clear_primary(db, user_id, membership.user_category, keep_id=membership.id)

    changes = {}
    if roles is not None:
        changes["roles"] = new_roles
        membership.roles = new_roles
    if expires_at is not None:
        changes["expires_at"] = new_expiry.isoformat()
        membership.expires_at = expires_at
    if is_primary is not None:
        changes["is_primary"] = is_primary
        membership.is_primary = is_primary and new_active
    if is_active is not None and is_active != membership.is_active:
        changes["is_active"] = is_active
        if is_active:
            membership.is_active = True
            membership.deactivated_at = None
        else:
            _deactivate(membership, now)
    membership.updated_by = actor_id

    if membership.user_category == GLOBAL_ADMIN and changes:
        _revoke_sessions(db, user_id, now)

    audit.record_audit_event(
        db, audit.MEMBERSHIP_UPDATED, actor_id=actor_id, target_user_id=user_id,
        department_id=membership.department_id, details=changes,
    )
    _commit(db)
    db.refresh(membership)

    logger.info(f"Updated membership {membership_id} of user {user_id}: {sorted(changes)}")
    await _cache(cache).invalidate_user(user_id)
    return membership


async def create_global_admin(
    db: Session,
    user_id: str,
    escalation_password: str,
    roles: List[str],
    session_timeout: int = 15,
    actor_id: Optional[str] = None,
    cache: Optional[PermissionCache] = None,
) -> GlobalAdmin:
    user = _get_user(db, user_id)

    record = db.get(GlobalAdmin, user_id)
    if record is not None and record.is_active:
        raise ConflictException(f"User {user_id} is already a global administrator")

    if not validate_escalation_password_strength(escalation_password):
        raise BadRequestException("Escalation password too weak: " + "; ".join(PASSWORD_REQUIREMENTS))

    roles = _validate_roles(db, roles, GLOBAL_ADMIN)

    if db.get(Department, MASTER_DEPARTMENT_ID) is None:
        raise NotFoundException("Master department does not exist")

    password_hash = escalation_service.hash_escalation_password(escalation_password)
    if record is None:
        record = GlobalAdmin(id=user_id, created_by=actor_id, escalation_password=password_hash)
        db.add(record)
    else:
        record.escalation_password = password_hash
        record.is_active = True
    record.session_timeout = session_timeout

    if not user.has_category(GLOBAL_ADMIN):
        user.user_categories = list(user.user_categories or []) + [GLOBAL_ADMIN]

    now = utcnow()
    _clear_primary(db, user_id, GLOBAL_ADMIN)
    for stale in (
        db.query(DepartmentMembership)
        .filter(
            DepartmentMembership.user_id == user_id,
            DepartmentMembership.user_category == GLOBAL_ADMIN,
            DepartmentMembership.is_active.is_(True),
        )
        .all()
    ):
        _deactivate(stale, now)
    db.flush()

    db.add(DepartmentMembership(
        user_id=user_id,
        user_category=GLOBAL_ADMIN,
        department_id=MASTER_DEPARTMENT_ID,
        roles=roles,
        is_primary=True,
        joined_at=now,
        created_by=actor_id,
        updated_by=actor_id,
    ))
    audit.record_audit_event(
        db, audit.GLOBAL_ADMIN_CREATED, actor_id=actor_id, target_user_id=user_id,
        department_id=MASTER_DEPARTMENT_ID, details={"roles": roles},
    )
    _commit(db)
    db.refresh(record)

    logger.info(f"Created global administrator {user_id} with roles {roles}")
    await _cache(cache).invalidate_user(user_id)
    return record


def _master_membership(db: Session, user_id: str) -> Optional[DepartmentMembership]:
    now = utcnow()
    memberships = (
        db.query(DepartmentMembership)
        .filter(
            DepartmentMembership.user_id == user_id,
            DepartmentMembership.user_category == GLOBAL_ADMIN,
            DepartmentMembership.department_id == MASTER_DEPARTMENT_ID,
            DepartmentMembership.is_active.is_(True),
        )
        .all()
    )
    return next((m for m in memberships if m.is_effective(now)), None)


async def remove_global_admin(
    db: Session,
    user_id: str,
    actor_id: Optional[str] = None,
    cache: Optional[PermissionCache] = None,
) -> GlobalAdmin:
    record = db.get(GlobalAdmin, user_id)
    if record is None or not record.is_active:
        raise NotFoundException(f"Global administrator {user_id} not found")

    membership = _master_membership(db, user_id)
    if membership is not None:
        _guard_last_admins(db, membership, [], remains_effective=False)

    now = utcnow()
    record.is_active = False
    if membership is not None:
        _deactivate(membership, now)
        membership.updated_by = actor_id
    _revoke_sessions(db, user_id, now)

    user = db.get(User, user_id)
    if user is not None and user.has_category(GLOBAL_ADMIN):
        user.user_categories = [c for c in user.user_categories if c != GLOBAL_ADMIN]

    audit.record_audit_event(
        db, audit.GLOBAL_ADMIN_REMOVED, actor_id=actor_id, target_user_id=user_id,
        department_id=MASTER_DEPARTMENT_ID,
    )
    _commit(db)

    logger.info(f"Removed global administrator {user_id}")
    await _cache(cache).invalidate_user(user_id)
    return record


async def update_global_admin_roles(
    db: Session,
    user_id: str,
    roles: List[str],
    actor_id: Optional[str] = None,
    cache: Optional[PermissionCache] = None,
) -> DepartmentMembership:
    """Replace a global administrator's roles; open admin sessions are revoked."""
    record = db.get(GlobalAdmin, user_id)
    if record is None or not record.is_active:
        raise NotFoundException(f"Global administrator {user_id} not found")

    membership = _master_membership(db, user_id)
    if membership is None:
        raise NotFoundException(f"Global administrator {user_id} has no master department membership")

    return await update_membership(
        db, user_id, membership.id, roles=roles, actor_id=actor_id, cache=cache,
    )


async def update_role_access_rights(
    db: Session,
    role_name: str,
    access_rights: List[str],
    actor_id: Optional[str] = None,
    cache: Optional[PermissionCache] = None,
) -> RoleDefinition:
    rights = sorted({validate_access_right(right) for right in access_rights})

    definition = db.query(RoleDefinition).filter(RoleDefinition.name == role_name).first()
    if definition is None:
        raise NotFoundException(f"Role {role_name} not found")

    previous = list(definition.access_rights or [])
    definition.access_rights = rights
    audit.record_audit_event(
        db, audit.ROLE_RIGHTS_UPDATED, actor_id=actor_id,
        details={"role": role_name, "before": previous, "after": rights},
    )
    _commit(db, "Role definition was modified concurrently")
    db.refresh(definition)

    role_registry.invalidate()
    await _cache(cache).invalidate_all()
    logger.info(f"Updated access rights of role {role_name}")
    return definition
