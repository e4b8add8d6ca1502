from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger, Boolean, CheckConstraint, Column, DateTime,
    Enum, ForeignKey, Index, String, func, text
)
from sqlalchemy.orm import relationship

from .base import Base, JSONType, as_utc, new_id, utcnow
from .constants import USER_CATEGORIES


class DepartmentMembership(Base):
    """
    One (user, category, department) role assignment.

    Learner, staff and global-admin memberships share this table and are told
    apart by ``user_category``. Rows are deactivated, never deleted.
    """
    __tablename__ = 'department_membership'
    __table_args__ = (
        CheckConstraint("user_category IN ('learner', 'staff', 'global-admin')", name='ck_membership_user_category'),
        Index('department_membership_user_idx', 'user_id', 'user_category'),
        Index('department_membership_department_idx', 'department_id'),
        Index(
            'department_membership_primary_key', 'user_id', 'user_category',
            unique=True,
            postgresql_where=text("is_primary AND is_active"),
            sqlite_where=text("is_primary AND is_active"),
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    version = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(True), nullable=False, server_default=func.now(), onupdate=func.now())
    created_by = Column(String(36))
    updated_by = Column(String(36))
    user_id = Column(ForeignKey('user.id', ondelete='CASCADE', onupdate='RESTRICT'), nullable=False)
    user_category = Column(Enum(*USER_CATEGORIES, name='user_category', native_enum=False), nullable=False)
    department_id = Column(ForeignKey('department.id', ondelete='RESTRICT'), nullable=False)
    roles = Column(JSONType, nullable=False, default=list)
    is_primary = Column(Boolean, nullable=False, server_default=text("false"), default=False)
    joined_at = Column(DateTime(True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(True))
    is_active = Column(Boolean, nullable=False, server_default=text("true"), default=True)
    deactivated_at = Column(DateTime(True))

    __mapper_args__ = {"version_id_col": version}

    user = relationship('User', foreign_keys=[user_id], back_populates='memberships')
    department = relationship('Department', back_populates='memberships')

    def is_effective(self, now: Optional[datetime] = None) -> bool:
        """Active and not past its expiry."""
        if not self.is_active:
            return False
        expires_at = as_utc(self.expires_at)
        if expires_at is None:
            return True
        return expires_at > (now or utcnow())
