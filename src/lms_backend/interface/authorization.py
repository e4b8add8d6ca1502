from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

AuthorizeReason = Literal["global_right", "department_right", "hierarchy_right", "own_resource", "denied"]


class ResourceContext(BaseModel):
    type: str = Field(description="Resource type, e.g. course")
    id: str
    department_id: Optional[str] = Field(None, description="Department owning the resource")
    created_by: Optional[str] = None


class PermissionSource(BaseModel):
    role: str
    department_id: Optional[str] = None


class Permission(BaseModel):
    right: str = Field(description="The held right that matched, possibly a wildcard")
    scope: str = Field(description="'*', 'dept:<id>' or 'own'")
    source: PermissionSource


class AuthorizeResult(BaseModel):
    allowed: bool
    reason: AuthorizeReason
    granted_by: Optional[Permission] = None


class AuthorizeRequest(BaseModel):
    right: str
    scope: Optional[str] = None
    resource: Optional[ResourceContext] = None


class DepartmentRights(BaseModel):
    roles: List[str] = Field(default_factory=list)
    rights: List[str] = Field(default_factory=list)
    source_department_id: Optional[str] = Field(None, description="Department the roles were resolved from")
    role_sources: Dict[str, str] = Field(default_factory=dict, description="Role name to the department that supplied it")


class UserPermissions(BaseModel):
    """Per-user permission cache entry."""
    user_id: str
    version: int = 0
    epoch: int = 0
    global_rights: List[str] = Field(default_factory=list, description="Empty when cached; filled from the admin token per request")
    department_rights: Dict[str, DepartmentRights] = Field(default_factory=dict)
    computed_at: datetime
