from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class RoleAssign(BaseModel):
    department_id: str = Field(description="Department the role applies to")
    role_name: str = Field(description="Role to grant, e.g. instructor")
    is_primary: bool = False
    expires_at: Optional[datetime] = None


class MembershipUpdate(BaseModel):
    roles: Optional[List[str]] = Field(None, description="Replaces the membership's role set")
    is_primary: Optional[bool] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None
    expected_version: Optional[int] = Field(None, description="Optimistic concurrency check")


class MembershipGet(BaseModel):
    id: str
    user_id: str
    user_category: str
    department_id: str
    roles: List[str]
    is_primary: bool
    joined_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool
    version: int

    model_config = ConfigDict(from_attributes=True)
