from .base import Base, metadata
from .auth import User, GlobalAdmin
from .department import Department
from .membership import DepartmentMembership
from .role import RoleDefinition, AccessRight
from .escalation import AdminEscalationSession
from .audit import AuditLog

# Import all models to ensure relationships are properly set up
from . import auth, department, membership, role, escalation, audit

__all__ = [
    'Base',
    'metadata',
    # Identity
    'User',
    'GlobalAdmin',
    # Organization
    'Department',
    'DepartmentMembership',
    # Role/Permission models
    'RoleDefinition',
    'AccessRight',
    # Escalation
    'AdminEscalationSession',
    # Audit
    'AuditLog',
]
