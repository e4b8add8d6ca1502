from typing import List, Optional
from pydantic import BaseModel, Field, model_validator

from lms_backend.api.exceptions import NotFoundException
from lms_backend.model.constants import USER_CATEGORIES


class Principal(BaseModel):
    """
    Authenticated caller as seen by the authorization layer.

    ``global_rights`` is only populated while the caller holds a validated
    admin token; a plain identity token never carries global rights.
    """

    user_id: Optional[str] = None
    user_categories: List[str] = Field(default_factory=list)

    # Escalation snapshot, filled from the admin session
    admin_roles: List[str] = Field(default_factory=list)
    global_rights: List[str] = Field(default_factory=list)
    admin_token_id: Optional[str] = None

    @model_validator(mode='after')
    def drop_unknown_categories(self):
        self.user_categories = [c for c in self.user_categories if c in USER_CATEGORIES]
        return self

    @property
    def is_escalated(self) -> bool:
        return self.admin_token_id is not None

    def has_category(self, category: str) -> bool:
        return category in self.user_categories

    def get_user_id(self) -> Optional[str]:
        return self.user_id

    def get_user_id_or_throw(self) -> str:
        if self.user_id is None:
            raise NotFoundException("User ID not found")
        return self.user_id

    def with_escalation(self, token_id: str, roles: List[str], rights: List[str]) -> "Principal":
        return self.model_copy(update={
            "admin_token_id": token_id,
            "admin_roles": list(roles),
            "global_rights": list(rights),
        })
