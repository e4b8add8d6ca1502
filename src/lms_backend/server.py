import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from lms_backend.api.authorization import authorization_router
from lms_backend.api.departments import department_router
from lms_backend.api.escalation import escalation_router
from lms_backend.api.memberships import membership_router
from lms_backend.api.roles import role_router
from lms_backend.database import get_session_factory
from lms_backend.permissions.access_rights import role_registry
from lms_backend.settings import settings

logger = logging.getLogger(__name__)


async def startup_logic():

    with get_session_factory()() as db:
        try:
            count = role_registry.refresh(db)
            logger.info(f"Loaded {count} role definitions")
        except SQLAlchemyError as e:
            # Registry loads lazily on first use instead
            logger.error(f"Could not preload role definitions: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):

    await startup_logic()

    yield

app = FastAPI(lifespan=lifespan)

origins = [
    "*"
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(
    escalation_router,
    prefix="/admin",
    tags=["admin", "escalation"]
)

app.include_router(
    authorization_router,
    tags=["authorization"]
)

app.include_router(
    membership_router,
    prefix="/users",
    tags=["user", "roles"]
)

app.include_router(
    department_router,
    prefix="/departments",
    tags=["departments"]
)

app.include_router(
    role_router,
    prefix="/roles",
    tags=["roles"]
)


if __name__ == "__main__":
    uvicorn.run(
        "lms_backend.server:app",
        host="0.0.0.0",
        port=8000,
        log_level="debug" if settings.DEBUG_MODE != "production" else "info",
        workers=1
    )
