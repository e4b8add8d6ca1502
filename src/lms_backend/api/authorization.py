from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lms_backend.database import get_db
from lms_backend.interface.authorization import AuthorizeRequest, AuthorizeResult, UserPermissions
from lms_backend.interface.departments import DepartmentWithRoles
from lms_backend.model.constants import GLOBAL_ADMIN
from lms_backend.permissions.auth import get_escalated_principal
from lms_backend.permissions.authorize import authorize
from lms_backend.permissions.cache import permission_cache
from lms_backend.permissions.principal import Principal
from lms_backend.permissions.roles import get_all_memberships, get_visible_departments

authorization_router = APIRouter()


@authorization_router.post("/authorize", response_model=AuthorizeResult)
async def authorize_request(
    principal: Annotated[Principal, Depends(get_escalated_principal)],
    payload: AuthorizeRequest,
    db: Session = Depends(get_db)
):
    """Evaluate a right for the caller; a denial is a normal result, not an error"""
    return await authorize(db, principal, payload.right, scope=payload.scope, resource=payload.resource)


@authorization_router.get("/permissions/me", response_model=UserPermissions)
async def get_my_permissions(
    principal: Annotated[Principal, Depends(get_escalated_principal)],
    db: Session = Depends(get_db)
):
    user_id = principal.get_user_id_or_throw()
    department_ids = list(dict.fromkeys(
        m.department_id for m in get_all_memberships(db, user_id) if m.user_category != GLOBAL_ADMIN
    ))
    permissions = await permission_cache.get_user_permissions(
        db, user_id, principal.user_categories, department_ids
    )
    # Global rights only ever come from the admin token on this request
    return permissions.model_copy(update={"global_rights": sorted(principal.global_rights)})


@authorization_router.get("/permissions/me/departments", response_model=List[DepartmentWithRoles])
def get_my_departments(
    principal: Annotated[Principal, Depends(get_escalated_principal)],
    user_category: Optional[str] = None,
    db: Session = Depends(get_db)
):
    user_id = principal.get_user_id_or_throw()
    categories = [user_category] if user_category else principal.user_categories

    result = []
    for category in categories:
        result.extend(get_visible_departments(db, user_id, category))
    return result
