from sqlalchemy import Column, DateTime, Index, String, func

from .base import Base, JSONType, new_id


class AuditLog(Base):
    __tablename__ = 'audit_log'
    __table_args__ = (
        Index('audit_log_target_user_idx', 'target_user_id'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    created_at = Column(DateTime(True), nullable=False, server_default=func.now())
    action = Column(String(64), nullable=False)
    actor_id = Column(String(36))
    target_user_id = Column(String(36))
    department_id = Column(String(36))
    details = Column(JSONType)
