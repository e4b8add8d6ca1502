from sqlalchemy import (
    BigInteger, Boolean, CheckConstraint, Column, DateTime,
    ForeignKey, Index, String, func, text
)
from sqlalchemy.orm import relationship

from .base import Base, JSONType, new_id


class Department(Base):
    __tablename__ = 'department'
    __table_args__ = (
        CheckConstraint('parent_id IS NULL OR parent_id <> id', name='ck_department_not_own_parent'),
        Index('department_parent_id_idx', 'parent_id'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    version = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(True), nullable=False, server_default=func.now(), onupdate=func.now())
    created_by = Column(String(36))
    updated_by = Column(String(36))
    properties = Column(JSONType)
    name = Column(String(100), nullable=False)
    code = Column(String(20), nullable=False, unique=True)
    description = Column(String(500))
    parent_id = Column(ForeignKey('department.id', ondelete='RESTRICT'))
    is_active = Column(Boolean, nullable=False, server_default=text("true"), default=True)
    is_visible = Column(Boolean, nullable=False, server_default=text("true"), default=True)
    is_system = Column(Boolean, nullable=False, server_default=text("false"), default=False)
    require_explicit_membership = Column(Boolean, nullable=False, server_default=text("false"), default=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    parent = relationship('Department', remote_side=[id], back_populates='children')
    children = relationship('Department', back_populates='parent', uselist=True, lazy='select')
    memberships = relationship('DepartmentMembership', back_populates='department', uselist=True, lazy='select')
