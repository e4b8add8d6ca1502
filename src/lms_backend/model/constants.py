"""
Role system constants shared by the models, the resolution engine and the seeders.
"""

LEARNER = "learner"
STAFF = "staff"
GLOBAL_ADMIN = "global-admin"

USER_CATEGORIES = (LEARNER, STAFF, GLOBAL_ADMIN)

LEARNER_ROLES = ("course-taker", "auditor", "learner-supervisor")
STAFF_ROLES = ("instructor", "department-admin", "content-admin", "billing-admin")
GLOBAL_ADMIN_ROLES = ("system-admin", "enrollment-admin", "course-admin", "theme-admin", "financial-admin")

ROLES_BY_CATEGORY = {
    LEARNER: LEARNER_ROLES,
    STAFF: STAFF_ROLES,
    GLOBAL_ADMIN: GLOBAL_ADMIN_ROLES,
}

DEPARTMENT_ADMIN_ROLE = "department-admin"
SYSTEM_ADMIN_ROLE = "system-admin"

# Protected system department holding every global-admin membership
MASTER_DEPARTMENT_ID = "00000000-0000-0000-0000-000000000001"
MASTER_DEPARTMENT_NAME = "System Administration"
MASTER_DEPARTMENT_CODE = "MASTER"
