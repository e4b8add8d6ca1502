import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from lms_backend.model.audit import AuditLog

logger = logging.getLogger(__name__)

ROLE_ASSIGNED = "role.assigned"
ROLE_REMOVED = "role.removed"
MEMBERSHIP_UPDATED = "membership.updated"
ROLE_RIGHTS_UPDATED = "role.access_rights_updated"
GLOBAL_ADMIN_CREATED = "global_admin.created"
GLOBAL_ADMIN_REMOVED = "global_admin.removed"
ESCALATION_GRANTED = "escalation.granted"
ESCALATION_DENIED = "escalation.denied"
ESCALATION_REVOKED = "escalation.revoked"
DEPARTMENT_MOVED = "department.moved"


def record_audit_event(
    db: Session,
    action: str,
    actor_id: Optional[str] = None,
    target_user_id: Optional[str] = None,
    department_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    commit: bool = False,
) -> AuditLog:
    """
    Add an audit row to the current transaction.

    Callers normally commit it together with the change being audited; pass
    ``commit=True`` for events that are not part of a larger write.
    """
    entry = AuditLog(
        action=action,
        actor_id=actor_id,
        target_user_id=target_user_id,
        department_id=department_id,
        details=details or {},
    )
    db.add(entry)
    if commit:
        db.commit()
    logger.info(f"Audit {action}: actor={actor_id} target={target_user_id} department={department_id}")
    return entry
