"""
FastAPI dependencies turning request credentials into a ``Principal``.

The identity token travels in ``Authorization: Bearer``. Admin-tier routes
additionally need the escalation token in ``X-Admin-Token``, issued to the
same user.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security.utils import get_authorization_scheme_param
from sqlalchemy.orm import Session

from lms_backend.api.exceptions import UnauthorizedException
from lms_backend.database import get_db
from lms_backend.model.auth import User
from lms_backend.permissions.credentials import IdentityVerifier, JWTIdentityVerifier
from lms_backend.permissions.escalation import escalation_service
from lms_backend.permissions.principal import Principal

logger = logging.getLogger(__name__)

ADMIN_TOKEN_HEADER = "X-Admin-Token"

identity_verifier: IdentityVerifier = JWTIdentityVerifier()


def parse_bearer_token(request: Request) -> str:
    authorization = request.headers.get("Authorization")
    if not authorization:
        raise UnauthorizedException("No authorization provided")

    scheme, param = get_authorization_scheme_param(authorization)
    if not param or scheme.lower() != "bearer":
        raise UnauthorizedException("Invalid authorization format")
    return param


def get_admin_token(request: Request) -> Optional[str]:
    return request.headers.get(ADMIN_TOKEN_HEADER) or None


def get_current_principal(
    token: Annotated[str, Depends(parse_bearer_token)],
    db: Session = Depends(get_db),
) -> Principal:
    user_id = identity_verifier.verify(token)

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthorizedException("Unknown or inactive user")

    return Principal(user_id=user.id, user_categories=list(user.user_categories or []))


def get_escalated_principal(
    principal: Annotated[Principal, Depends(get_current_principal)],
    admin_token: Annotated[Optional[str], Depends(get_admin_token)],
    db: Session = Depends(get_db),
) -> Principal:
    """Principal with global rights attached when a valid admin token is present."""
    if admin_token is None:
        return principal

    session = escalation_service.validate_admin_token(db, admin_token, user_id=principal.user_id)
    return principal.with_escalation(session.token_id, session.roles or [], session.access_rights or [])


def require_escalation(
    principal: Annotated[Principal, Depends(get_current_principal)],
    admin_token: Annotated[Optional[str], Depends(get_admin_token)],
    db: Session = Depends(get_db),
) -> Principal:
    session = escalation_service.require_admin_credentials(db, principal.user_id, admin_token)
    return principal.with_escalation(session.token_id, session.roles or [], session.access_rights or [])
