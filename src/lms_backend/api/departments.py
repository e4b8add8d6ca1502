from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lms_backend.api.exceptions import NotFoundException
from lms_backend.database import get_db
from lms_backend.interface.departments import (
    DepartmentCreate,
    DepartmentGet,
    DepartmentMove,
    SubdepartmentList,
)
from lms_backend.permissions.auth import get_escalated_principal
from lms_backend.permissions.authorize import ensure_authorized
from lms_backend.permissions.cache import permission_cache
from lms_backend.permissions.hierarchy import create_department, move_department
from lms_backend.permissions.principal import Principal

DEPARTMENT_MANAGE_RIGHT = "settings:department:manage"
HIERARCHY_MANAGE_RIGHT = "system:departments:manage"

department_router = APIRouter()


@department_router.get("/{department_id}/subdepartments", response_model=SubdepartmentList)
async def list_subdepartments(
    principal: Annotated[Principal, Depends(get_escalated_principal)],
    department_id: str,
    db: Session = Depends(get_db)
):
    tree = await permission_cache.get_department_tree(db)
    if department_id not in tree:
        raise NotFoundException(f"Department {department_id} not found")
    return SubdepartmentList(department_id=department_id, department_ids=tree.descendants_of(department_id))


@department_router.post("", response_model=DepartmentGet, status_code=201)
async def create_department_route(
    principal: Annotated[Principal, Depends(get_escalated_principal)],
    payload: DepartmentCreate,
    db: Session = Depends(get_db)
):
    # Sub-departments may be created by the parent's admins, roots only globally
    if payload.parent_id is not None:
        await ensure_authorized(db, principal, DEPARTMENT_MANAGE_RIGHT, scope=payload.parent_id)
    else:
        await ensure_authorized(db, principal, HIERARCHY_MANAGE_RIGHT)

    department = await create_department(
        db,
        name=payload.name,
        code=payload.code,
        parent_id=payload.parent_id,
        description=payload.description,
        is_visible=payload.is_visible,
        require_explicit_membership=payload.require_explicit_membership,
        created_by=principal.user_id,
    )
    return DepartmentGet.model_validate(department)


@department_router.patch("/{department_id}/parent", response_model=DepartmentGet)
async def move_department_route(
    principal: Annotated[Principal, Depends(get_escalated_principal)],
    department_id: str,
    payload: DepartmentMove,
    db: Session = Depends(get_db)
):
    await ensure_authorized(db, principal, HIERARCHY_MANAGE_RIGHT)

    department = await move_department(
        db, department_id, payload.parent_id,
        expected_version=payload.expected_version,
        updated_by=principal.user_id,
    )
    return DepartmentGet.model_validate(department)
