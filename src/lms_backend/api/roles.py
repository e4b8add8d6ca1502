from typing import Annotated, List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lms_backend.database import get_db
from lms_backend.interface.roles import RoleAccessRightsUpdate, RoleDefinitionGet
from lms_backend.model.constants import USER_CATEGORIES
from lms_backend.model.role import RoleDefinition
from lms_backend.permissions.auth import get_current_principal, require_escalation
from lms_backend.permissions.authorize import ensure_authorized
from lms_backend.permissions.management import update_role_access_rights
from lms_backend.permissions.principal import Principal

ROLE_MANAGE_RIGHT = "system:roles:manage"

role_router = APIRouter()


@role_router.get("", response_model=List[RoleDefinitionGet])
def list_roles(
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Session = Depends(get_db)
):
    definitions = db.query(RoleDefinition).filter(RoleDefinition.is_active.is_(True)).all()
    definitions.sort(key=lambda d: (USER_CATEGORIES.index(d.user_category), d.sort_order, d.name))
    return [RoleDefinitionGet.model_validate(d) for d in definitions]


@role_router.put("/{role_name}/access-rights", response_model=RoleDefinitionGet)
async def put_role_access_rights(
    principal: Annotated[Principal, Depends(require_escalation)],
    role_name: str,
    payload: RoleAccessRightsUpdate,
    db: Session = Depends(get_db)
):
    await ensure_authorized(db, principal, ROLE_MANAGE_RIGHT)
    definition = await update_role_access_rights(
        db, role_name, payload.access_rights, actor_id=principal.user_id
    )
    return RoleDefinitionGet.model_validate(definition)
