"""
Pytest configuration and fixtures for all tests.

Every test runs against a fresh in-memory SQLite database and an in-process
stand-in for the Redis cache.
"""

import os
import sys
from datetime import datetime
from typing import Iterable, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure lms_backend is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from lms_backend.model import Base
from lms_backend.model.auth import GlobalAdmin, User
from lms_backend.model.base import utcnow
from lms_backend.model.constants import GLOBAL_ADMIN, MASTER_DEPARTMENT_ID
from lms_backend.model.department import Department
from lms_backend.model.membership import DepartmentMembership
from lms_backend.permissions.access_rights import role_registry
from lms_backend.permissions.cache import permission_cache
from lms_backend.permissions.credentials import BcryptCredentialVerifier
from lms_backend.permissions.escalation import escalation_service
from lms_backend.permissions.role_setup import (
    seed_access_rights,
    seed_master_department,
    seed_role_definitions,
)
from lms_backend.tests.fixtures import ESCALATION_PASSWORD, MockCache


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(engine):
    """Create a new database session for a test."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def mock_cache():
    return MockCache()


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch, mock_cache):
    """Fresh role registry, in-process cache and a fast bcrypt work factor."""
    role_registry.invalidate()
    monkeypatch.setattr(permission_cache, "_cache_client", mock_cache)
    monkeypatch.setattr(escalation_service, "verifier", BcryptCredentialVerifier(rounds=4))
    yield
    role_registry.invalidate()


@pytest.fixture
def seeded(db):
    """Role definitions, access-right catalogue and the master department."""
    seed_role_definitions(db)
    seed_access_rights(db)
    return seed_master_department(db)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(categories: Iterable[str] = ("staff",), is_active: bool = True,
                   username: Optional[str] = None) -> User:
        counter["n"] += 1
        user = User(
            username=username or f"user{counter['n']}",
            email=f"{username or 'user' + str(counter['n'])}@example.org",
            user_categories=list(categories),
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_department(db):

    def _make_department(code: str, parent: Optional[Department] = None, name: Optional[str] = None,
                         **kwargs) -> Department:
        department = Department(
            name=name or code.title(),
            code=code,
            parent_id=parent.id if parent is not None else None,
            **kwargs,
        )
        db.add(department)
        db.commit()
        return department

    return _make_department


@pytest.fixture
def make_membership(db):

    def _make_membership(user: User, department: Department, user_category: str, roles: Iterable[str],
                         is_primary: bool = False, expires_at: Optional[datetime] = None,
                         is_active: bool = True) -> DepartmentMembership:
        membership = DepartmentMembership(
            user_id=user.id,
            user_category=user_category,
            department_id=department.id,
            roles=list(roles),
            is_primary=is_primary,
            joined_at=utcnow(),
            expires_at=expires_at,
            is_active=is_active,
        )
        db.add(membership)
        db.commit()
        return membership

    return _make_membership


@pytest.fixture
def make_global_admin(db, seeded, make_user):
    """Users holding an active GlobalAdmin record and a master membership."""

    def _make_global_admin(roles: Iterable[str] = ("system-admin",), password: str = ESCALATION_PASSWORD,
                           session_timeout: int = 15, user: Optional[User] = None) -> User:
        if user is None:
            user = make_user(categories=("staff", GLOBAL_ADMIN))
        db.add(GlobalAdmin(
            id=user.id,
            escalation_password=escalation_service.verifier.hash(password),
            session_timeout=session_timeout,
        ))
        db.add(DepartmentMembership(
            user_id=user.id,
            user_category=GLOBAL_ADMIN,
            department_id=MASTER_DEPARTMENT_ID,
            roles=list(roles),
            is_primary=True,
            joined_at=utcnow(),
        ))
        db.commit()
        return user

    return _make_global_admin


@pytest.fixture
def org(db, seeded, make_department):
    """
    A small department tree::

        UNI
        ├── ENG
        │   ├── CS
        │   │   └── AI
        │   └── MECH (inactive)
        └── ART (require_explicit_membership)
            └── MUSIC
    """
    uni = make_department("UNI", name="University")
    eng = make_department("ENG", uni, name="Engineering")
    cs = make_department("CS", eng, name="Computer Science")
    ai = make_department("AI", cs, name="Artificial Intelligence")
    mech = make_department("MECH", eng, name="Mechanical", is_active=False)
    art = make_department("ART", uni, name="Arts", require_explicit_membership=True)
    music = make_department("MUSIC", art, name="Music")
    return {
        "UNI": uni,
        "ENG": eng,
        "CS": cs,
        "AI": ai,
        "MECH": mech,
        "ART": art,
        "MUSIC": music,
    }
