from datetime import datetime
from typing import List
from pydantic import BaseModel, Field


class EscalateRequest(BaseModel):
    escalation_password: str = Field(min_length=1, description="Escalation credential, distinct from the login password")


class EscalationResult(BaseModel):
    admin_token: str
    expires_in: int = Field(description="Seconds until the session times out without activity")
    expires_at: datetime
    roles: List[str]
    access_rights: List[str]


class AdminSessionGet(BaseModel):
    user_id: str
    status: str
    issued_at: datetime
    expires_at: datetime
    absolute_expires_at: datetime
    roles: List[str]
    access_rights: List[str]
