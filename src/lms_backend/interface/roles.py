from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class RoleDefinitionGet(BaseModel):
    name: str = Field(description="Role identifier")
    user_category: str = Field(description="Category the role belongs to")
    display_name: str
    description: Optional[str] = None
    access_rights: List[str] = Field(default_factory=list)
    is_default: bool = False
    sort_order: int = 0
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class RoleAccessRightsUpdate(BaseModel):
    access_rights: List[str] = Field(description="Full replacement of the role's rights")
