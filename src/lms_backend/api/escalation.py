from typing import Annotated
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from lms_backend.api.exceptions import NotFoundException
from lms_backend.database import get_db
from lms_backend.interface.escalation import AdminSessionGet, EscalateRequest, EscalationResult
from lms_backend.permissions.auth import get_current_principal, require_escalation
from lms_backend.permissions.escalation import escalation_service, session_info
from lms_backend.permissions.principal import Principal

escalation_router = APIRouter()


@escalation_router.post("/escalate", response_model=EscalationResult)
async def escalate(
    principal: Annotated[Principal, Depends(get_current_principal)],
    payload: EscalateRequest,
    db: Session = Depends(get_db)
):
    """Exchange the escalation password for an admin token"""
    return await escalation_service.escalate(db, principal.get_user_id_or_throw(), payload.escalation_password)


@escalation_router.post("/deescalate", status_code=204)
async def deescalate(
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Session = Depends(get_db)
):
    await escalation_service.deescalate(db, principal.get_user_id_or_throw())
    return Response(status_code=204)


@escalation_router.get("/session", response_model=AdminSessionGet)
def get_admin_session(
    principal: Annotated[Principal, Depends(require_escalation)],
    db: Session = Depends(get_db)
):
    session = escalation_service.get_active_session(db, principal.user_id)
    if session is None:
        raise NotFoundException("No active admin session")
    return session_info(session)


@escalation_router.post("/session/refresh", response_model=AdminSessionGet)
def refresh_admin_session(
    principal: Annotated[Principal, Depends(require_escalation)],
    db: Session = Depends(get_db)
):
    return escalation_service.refresh_session(db, principal.user_id)
