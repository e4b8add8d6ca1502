"""
Built-in role definitions, the access-right catalogue and the master department.

The seeding functions are idempotent: existing rows are updated in place.
"""

import logging
from typing import Dict, List, Tuple

from sqlalchemy.orm import Session

from lms_backend.model.constants import (
    GLOBAL_ADMIN,
    LEARNER,
    MASTER_DEPARTMENT_CODE,
    MASTER_DEPARTMENT_ID,
    MASTER_DEPARTMENT_NAME,
    ROLES_BY_CATEGORY,
    STAFF,
)
from lms_backend.model.department import Department
from lms_backend.model.role import AccessRight, RoleDefinition

logger = logging.getLogger(__name__)

ROLE_DEFINITIONS: List[Dict] = [
    # Learner roles
    {
        "name": "course-taker",
        "user_category": LEARNER,
        "display_name": "Course Taker",
        "description": "Standard learner who enrolls in and completes courses",
        "access_rights": [
            "content:courses:read",
            "content:lessons:read",
            "content:exams:attempt",
            "enrollment:own:read",
            "enrollment:own:update",
            "learner:profile:read",
            "learner:profile:update",
            "learner:progress:read",
            "learner:certificates:read",
            "learner:certificates:download",
        ],
        "is_default": True,
        "sort_order": 1,
    },
    {
        "name": "auditor",
        "user_category": LEARNER,
        "display_name": "Auditor",
        "description": "View-only access, cannot earn credit or complete exams",
        "access_rights": [
            "content:courses:read",
            "content:lessons:read",
            "learner:profile:read",
        ],
        "sort_order": 2,
    },
    {
        "name": "learner-supervisor",
        "user_category": LEARNER,
        "display_name": "Learner Supervisor",
        "description": "Elevated permissions for TAs, peer mentors, and learning assistants",
        "access_rights": [
            "content:courses:read",
            "content:lessons:read",
            "content:exams:attempt",
            "enrollment:own:read",
            "enrollment:department:read",
            "learner:profile:read",
            "learner:department:read",
            "reports:department-progress:read",
        ],
        "sort_order": 3,
    },
    # Staff roles
    {
        "name": "instructor",
        "user_category": STAFF,
        "display_name": "Instructor",
        "description": "Teaches classes, grades student work, and manages course delivery",
        "access_rights": [
            "content:courses:read",
            "content:lessons:read",
            "content:classes:read",
            "content:classes:manage-own",
            "enrollment:department:read",
            "learner:department:read",
            "reports:class:read",
            "reports:class:export",
            "grades:department:read",
            "grades:own-classes:manage",
        ],
        "sort_order": 1,
    },
    {
        "name": "content-admin",
        "user_category": STAFF,
        "display_name": "Content Administrator",
        "description": "Creates and manages courses, programs, and educational content",
        "access_rights": [
            "content:courses:manage",
            "content:programs:manage",
            "content:lessons:manage",
            "content:exams:manage",
            "content:scorm:manage",
            "reports:content:read",
            "analytics:courses:read",
            "analytics:courses:export",
        ],
        "sort_order": 2,
    },
    {
        "name": "department-admin",
        "user_category": STAFF,
        "display_name": "Department Administrator",
        "description": "Manages department operations, staff, learners, and settings",
        "access_rights": [
            "content:courses:read",
            "content:classes:manage",
            "staff:department:manage",
            "learner:department:manage",
            "enrollment:department:manage",
            "reports:department:read",
            "reports:department:export",
            "settings:department:manage",
            "analytics:courses:read",
            "analytics:courses:export",
        ],
        "sort_order": 3,
    },
    {
        "name": "billing-admin",
        "user_category": STAFF,
        "display_name": "Billing Administrator",
        "description": "Department-level billing and financial operations",
        "access_rights": [
            "billing:department:read",
            "billing:department:manage",
            "billing:invoices:manage",
            "billing:payments:read",
            "reports:billing-department:read",
        ],
        "sort_order": 4,
    },
    # Global-admin roles
    {
        "name": "system-admin",
        "user_category": GLOBAL_ADMIN,
        "display_name": "System Administrator",
        "description": "Full system access",
        "access_rights": ["*"],
        "sort_order": 1,
    },
    {
        "name": "enrollment-admin",
        "user_category": GLOBAL_ADMIN,
        "display_name": "Enrollment Administrator",
        "description": "Manages enrollment system, policies, and bulk operations globally",
        "access_rights": [
            "enrollment:system:manage",
            "enrollment:bulk:manage",
            "enrollment:policies:manage",
            "reports:enrollment:read",
        ],
        "sort_order": 2,
    },
    {
        "name": "course-admin",
        "user_category": GLOBAL_ADMIN,
        "display_name": "Course Administrator",
        "description": "Manages course system, templates, and categories globally",
        "access_rights": [
            "content:system:manage",
            "content:templates:manage",
            "content:categories:manage",
            "reports:content-system:read",
        ],
        "sort_order": 3,
    },
    {
        "name": "theme-admin",
        "user_category": GLOBAL_ADMIN,
        "display_name": "Theme Administrator",
        "description": "Manages themes, branding, UI customization, and email templates",
        "access_rights": [
            "system:themes:manage",
            "system:branding:manage",
            "system:emails:manage",
        ],
        "sort_order": 4,
    },
    {
        "name": "financial-admin",
        "user_category": GLOBAL_ADMIN,
        "display_name": "Financial Administrator",
        "description": "System-wide financial operations, billing policies, and financial reporting",
        "access_rights": [
            "billing:system:manage",
            "billing:policies:manage",
            "billing:reports:read",
            "billing:refunds:manage",
            "reports:financial:read",
            "reports:financial:export",
        ],
        "sort_order": 5,
    },
]

# Rights checked by the API itself that no built-in role lists explicitly
ADMINISTRATIVE_RIGHTS = [
    "system:admins:manage",
    "system:departments:manage",
    "system:roles:manage",
    "system:users:read",
]

SENSITIVE_DOMAINS = ("system", "billing", "audit")


def validate_role_definitions():
    defined = [definition["name"] for definition in ROLE_DEFINITIONS]
    expected = [role for roles in ROLES_BY_CATEGORY.values() for role in roles]

    if len(defined) != len(set(defined)):
        raise ValueError("Duplicate role definitions")
    missing = set(expected) - set(defined)
    if missing:
        raise ValueError(f"Missing role definitions: {', '.join(sorted(missing))}")
    extra = set(defined) - set(expected)
    if extra:
        raise ValueError(f"Unexpected role definitions: {', '.join(sorted(extra))}")


def catalogue_rights() -> List[str]:
    rights = set(ADMINISTRATIVE_RIGHTS)
    for definition in ROLE_DEFINITIONS:
        rights.update(right for right in definition["access_rights"] if not right.endswith("*"))
    return sorted(rights)


def seed_role_definitions(db: Session) -> Tuple[int, int]:
    """Upsert the built-in roles. Returns ``(created, updated)``."""
    validate_role_definitions()

    created = updated = 0
    for data in ROLE_DEFINITIONS:
        definition = db.query(RoleDefinition).filter(RoleDefinition.name == data["name"]).first()
        if definition is None:
            db.add(RoleDefinition(**data))
            created += 1
            continue

        for key, value in data.items():
            setattr(definition, key, value)
        definition.is_active = True
        updated += 1

    db.commit()
    logger.info(f"Role definitions seeded: {created} created, {updated} updated")
    return created, updated


def seed_access_rights(db: Session) -> int:
    created = 0
    for name in catalogue_rights():
        if db.query(AccessRight.id).filter(AccessRight.name == name).first() is not None:
            continue
        domain, resource, action = name.split(":")
        db.add(AccessRight(
            name=name,
            domain=domain,
            resource=resource,
            action=action,
            is_sensitive=domain in SENSITIVE_DOMAINS,
        ))
        created += 1

    db.commit()
    logger.info(f"Access right catalogue seeded: {created} created")
    return created


def seed_master_department(db: Session) -> Department:
    department = db.get(Department, MASTER_DEPARTMENT_ID)
    if department is None:
        department = Department(
            id=MASTER_DEPARTMENT_ID,
            name=MASTER_DEPARTMENT_NAME,
            code=MASTER_DEPARTMENT_CODE,
            description="Holds every global administrator membership",
            is_system=True,
            is_visible=False,
            require_explicit_membership=True,
        )
        db.add(department)
        db.commit()
        logger.info("Created master department")
    return department
