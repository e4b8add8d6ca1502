from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lms_backend.api.exceptions import NotFoundException
from lms_backend.database import get_db
from lms_backend.interface.departments import MembershipSummary
from lms_backend.interface.memberships import MembershipGet, MembershipUpdate, RoleAssign
from lms_backend.model.membership import DepartmentMembership
from lms_backend.permissions.auth import get_escalated_principal
from lms_backend.permissions.authorize import ensure_authorized
from lms_backend.permissions.management import (
    MANAGE_RIGHTS,
    assign_role,
    get_role_definition,
    remove_role,
    update_membership,
)
from lms_backend.permissions.principal import Principal
from lms_backend.permissions.roles import get_all_memberships

USER_READ_RIGHT = "system:users:read"

membership_router = APIRouter()


def _membership_or_404(db: Session, user_id: str, membership_id: str) -> DepartmentMembership:
    membership = db.get(DepartmentMembership, membership_id)
    if membership is None or membership.user_id != user_id:
        raise NotFoundException(f"Membership {membership_id} not found")
    return membership


@membership_router.get("/{user_id}/memberships", response_model=List[MembershipSummary])
async def list_memberships(
    principal: Annotated[Principal, Depends(get_escalated_principal)],
    user_id: str,
    db: Session = Depends(get_db)
):
    if principal.user_id != user_id:
        await ensure_authorized(db, principal, USER_READ_RIGHT)
    return get_all_memberships(db, user_id)


@membership_router.post("/{user_id}/roles", response_model=MembershipGet, status_code=201)
async def grant_role(
    principal: Annotated[Principal, Depends(get_escalated_principal)],
    user_id: str,
    payload: RoleAssign,
    db: Session = Depends(get_db)
):
    definition = get_role_definition(db, payload.role_name)
    await ensure_authorized(db, principal, MANAGE_RIGHTS[definition.user_category], scope=payload.department_id)

    membership = await assign_role(
        db, user_id, payload.department_id, payload.role_name,
        is_primary=payload.is_primary,
        expires_at=payload.expires_at,
        actor_id=principal.user_id,
    )
    return MembershipGet.model_validate(membership)


@membership_router.patch("/{user_id}/roles/{membership_id}", response_model=MembershipGet)
async def patch_membership(
    principal: Annotated[Principal, Depends(get_escalated_principal)],
    user_id: str,
    membership_id: str,
    payload: MembershipUpdate,
    db: Session = Depends(get_db)
):
    membership = _membership_or_404(db, user_id, membership_id)
    await ensure_authorized(
        db, principal, MANAGE_RIGHTS[membership.user_category], scope=membership.department_id
    )

    membership = await update_membership(
        db, user_id, membership_id,
        roles=payload.roles,
        is_primary=payload.is_primary,
        expires_at=payload.expires_at,
        is_active=payload.is_active,
        expected_version=payload.expected_version,
        actor_id=principal.user_id,
    )
    return MembershipGet.model_validate(membership)


@membership_router.delete("/{user_id}/roles/{membership_id}", response_model=MembershipGet)
async def revoke_role(
    principal: Annotated[Principal, Depends(get_escalated_principal)],
    user_id: str,
    membership_id: str,
    role_name: Optional[str] = None,
    expected_version: Optional[int] = None,
    db: Session = Depends(get_db)
):
    """Remove one role, or the whole membership when no role is given"""
    membership = _membership_or_404(db, user_id, membership_id)
    await ensure_authorized(
        db, principal, MANAGE_RIGHTS[membership.user_category], scope=membership.department_id
    )

    membership = await remove_role(
        db, user_id, membership_id,
        role_name=role_name,
        expected_version=expected_version,
        actor_id=principal.user_id,
    )
    return MembershipGet.model_validate(membership)
