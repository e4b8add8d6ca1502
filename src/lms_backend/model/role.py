from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, Enum, Integer, String, func, text
)

from .base import Base, JSONType, new_id
from .constants import USER_CATEGORIES


class RoleDefinition(Base):
    __tablename__ = 'role_definition'

    id = Column(String(36), primary_key=True, default=new_id)
    version = Column(BigInteger, server_default=text("0"), default=0)
    created_at = Column(DateTime(True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(True), nullable=False, server_default=func.now(), onupdate=func.now())
    name = Column(String(64), nullable=False, unique=True)
    user_category = Column(Enum(*USER_CATEGORIES, name='role_user_category', native_enum=False), nullable=False)
    display_name = Column(String(255), nullable=False)
    description = Column(String(4096), server_default=text("''"), default="")
    access_rights = Column(JSONType, nullable=False, default=list)
    is_default = Column(Boolean, nullable=False, server_default=text("false"), default=False)
    sort_order = Column(Integer, nullable=False, server_default=text("0"), default=0)
    is_active = Column(Boolean, nullable=False, server_default=text("true"), default=True)


class AccessRight(Base):
    """Catalogue of known rights; wildcard expansion matches against it."""
    __tablename__ = 'access_right'

    id = Column(String(36), primary_key=True, default=new_id)
    created_at = Column(DateTime(True), nullable=False, server_default=func.now())
    name = Column(String(255), nullable=False, unique=True)
    domain = Column(String(64), nullable=False)
    resource = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False)
    description = Column(String(4096))
    is_sensitive = Column(Boolean, nullable=False, server_default=text("false"), default=False)
    is_active = Column(Boolean, nullable=False, server_default=text("true"), default=True)
