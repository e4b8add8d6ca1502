from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import relationship

from .base import Base, JSONType, as_utc, new_id, utcnow

SESSION_ACTIVE = "active"
SESSION_EXPIRED = "expired"
SESSION_REVOKED = "revoked"


class AdminEscalationSession(Base):
    __tablename__ = 'admin_escalation_session'
    __table_args__ = (
        Index('admin_escalation_session_user_idx', 'user_id', 'revoked'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    # jti of the admin token; the token itself is never stored
    token_id = Column(String(64), nullable=False, unique=True)
    issued_at = Column(DateTime(True), nullable=False, default=utcnow)
    last_activity_at = Column(DateTime(True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(True), nullable=False)
    absolute_expires_at = Column(DateTime(True), nullable=False)
    roles = Column(JSONType, nullable=False, default=list)
    access_rights = Column(JSONType, nullable=False, default=list)
    revoked = Column(Boolean, nullable=False, server_default=text("false"), default=False)
    revoked_at = Column(DateTime(True))

    user = relationship('User')

    def status(self, now: Optional[datetime] = None) -> str:
        if self.revoked:
            return SESSION_REVOKED
        now = now or utcnow()
        if as_utc(self.expires_at) <= now or as_utc(self.absolute_expires_at) <= now:
            return SESSION_EXPIRED
        return SESSION_ACTIVE

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return self.status(now) == SESSION_ACTIVE
