from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, func, text
)
from sqlalchemy.orm import relationship

from .base import Base, JSONType, new_id


class User(Base):
    __tablename__ = 'user'

    id = Column(String(36), primary_key=True, default=new_id)
    version = Column(BigInteger, server_default=text("0"), default=0)
    created_at = Column(DateTime(True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(True), nullable=False, server_default=func.now(), onupdate=func.now())
    properties = Column(JSONType)
    username = Column(String(255), unique=True)
    email = Column(String(320), unique=True)
    given_name = Column(String(255))
    family_name = Column(String(255))
    # Subset of learner / staff / global-admin
    user_categories = Column(JSONType, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, server_default=text("true"), default=True)

    # Relationships
    memberships = relationship("DepartmentMembership", foreign_keys="DepartmentMembership.user_id", back_populates="user", uselist=True, lazy="select")
    global_admin = relationship("GlobalAdmin", back_populates="user", uselist=False, lazy="select")

    def has_category(self, category: str) -> bool:
        return category in (self.user_categories or [])


class GlobalAdmin(Base):
    __tablename__ = 'global_admin'

    id = Column(ForeignKey('user.id', ondelete='CASCADE'), primary_key=True)
    version = Column(BigInteger, server_default=text("0"), default=0)
    created_at = Column(DateTime(True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(True), nullable=False, server_default=func.now(), onupdate=func.now())
    created_by = Column(String(36))
    # Hash of the escalation password, never the login password
    escalation_password = Column(String(255), nullable=False)
    session_timeout = Column(Integer, nullable=False, server_default=text("15"), default=15)
    is_active = Column(Boolean, nullable=False, server_default=text("true"), default=True)
    last_escalation = Column(DateTime(True))

    user = relationship('User', back_populates='global_admin')
