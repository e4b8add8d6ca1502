from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class DepartmentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100, description="Department name")
    code: str = Field(min_length=1, max_length=20, description="Unique department code")
    description: Optional[str] = Field(None, max_length=500)
    parent_id: Optional[str] = Field(None, description="Parent department, empty for a root")
    is_visible: bool = True
    require_explicit_membership: bool = Field(
        False, description="Block role cascading from this department to its children"
    )

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()


class DepartmentMove(BaseModel):
    parent_id: Optional[str] = Field(None, description="New parent, empty to make it a root")
    expected_version: Optional[int] = Field(None, description="Reject the move if the department changed meanwhile")


class DepartmentGet(BaseModel):
    id: str
    name: str
    code: str
    description: Optional[str] = None
    parent_id: Optional[str] = None
    is_active: bool
    is_visible: bool
    is_system: bool
    require_explicit_membership: bool
    version: int

    model_config = ConfigDict(from_attributes=True)


class DepartmentWithRoles(BaseModel):
    id: str
    name: str
    code: str
    roles: List[str] = Field(default_factory=list)
    is_primary: bool = False
    level: int = Field(0, description="0 = direct membership, 1 = cascaded from the parent")
    parent_id: Optional[str] = None
    children: List["DepartmentWithRoles"] = Field(default_factory=list)


class SubdepartmentList(BaseModel):
    department_id: str
    department_ids: List[str]


class MembershipSummary(BaseModel):
    user_category: str
    membership_id: str
    department_id: str
    department_name: str
    department_code: str
    roles: List[str]
    is_primary: bool
    joined_at: datetime
    is_active: bool
