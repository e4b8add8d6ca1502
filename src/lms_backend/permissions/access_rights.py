"""
Access-right resolution and wildcard matching.

Rights are ``domain:resource:action`` strings. ``*`` grants everything,
``domain:*`` a whole domain and ``domain:resource:*`` every action on one
resource.
"""

import logging
import re
import threading
import time
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from lms_backend.api.exceptions import BadRequestException
from lms_backend.model.role import AccessRight, RoleDefinition
from lms_backend.settings import settings

logger = logging.getLogger(__name__)

WILDCARD = "*"

ACCESS_RIGHT_PATTERN = re.compile(r"^(\*|[a-z]+:\*|[a-z]+:[a-z-]+:(\*|[a-z-]+))$")
CONCRETE_RIGHT_PATTERN = re.compile(r"^[a-z]+:[a-z-]+:[a-z-]+$")


class RoleRegistry:
    """
    Process-wide cache of active role definitions.

    Entries are loaded lazily on first use and reloaded once the TTL has
    elapsed, after ``invalidate``, or when the shared permission epoch seen
    by ``sync_epoch`` moves on. Lookups for roles missing from the snapshot
    fall through to the database.
    """

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.ROLE_DEFINITION_TTL
        self._rights: Dict[str, List[str]] = {}
        self._loaded_at: Optional[float] = None
        self._epoch: Optional[int] = None
        self._lock = threading.Lock()

    def _is_fresh(self) -> bool:
        return self._loaded_at is not None and time.monotonic() - self._loaded_at < self.ttl_seconds

    def refresh(self, db: Session) -> int:
        definitions = db.query(RoleDefinition).filter(RoleDefinition.is_active.is_(True)).all()
        rights = {definition.name: list(definition.access_rights or []) for definition in definitions}
        with self._lock:
            self._rights = rights
            self._loaded_at = time.monotonic()
        logger.debug(f"Loaded {len(rights)} role definitions")
        return len(rights)

    def invalidate(self):
        with self._lock:
            self._rights = {}
            self._loaded_at = None

    def sync_epoch(self, epoch: int):
        """Drop the snapshot when another process has bumped the permission epoch."""
        with self._lock:
            if self._epoch == epoch:
                return
            if self._epoch is not None:
                logger.debug(f"Permission epoch moved to {epoch}, reloading role definitions")
            self._epoch = epoch
            self._rights = {}
            self._loaded_at = None

    def rights_for(self, db: Session, role_name: str) -> List[str]:
        if not self._is_fresh():
            self.refresh(db)

        rights = self._rights.get(role_name)
        if rights is not None:
            return rights

        definition = (
            db.query(RoleDefinition)
            .filter(RoleDefinition.name == role_name, RoleDefinition.is_active.is_(True))
            .first()
        )
        if definition is None:
            logger.debug(f"Unknown or inactive role {role_name}")
            return []

        rights = list(definition.access_rights or [])
        with self._lock:
            self._rights[role_name] = rights
        return rights


role_registry = RoleRegistry()


def resolve_access_rights(db: Session, roles: Iterable[str], registry: Optional[RoleRegistry] = None) -> List[str]:
    """Sorted, deduplicated union of the rights granted by ``roles``."""
    registry = registry or role_registry
    rights = set()
    for role in roles:
        rights.update(registry.rights_for(db, role))
    return sorted(rights)


def matches_access_right(held: str, required: str) -> bool:
    if held == WILDCARD or held == required:
        return True
    if held.endswith(":*"):
        return CONCRETE_RIGHT_PATTERN.match(required) is not None and required.startswith(held[:-1])
    return False


def has_access_right(held_rights: Iterable[str], required: str) -> bool:
    return any(matches_access_right(held, required) for held in held_rights)


def find_matching_right(held_rights: Iterable[str], required: str) -> Optional[str]:
    for held in held_rights:
        if matches_access_right(held, required):
            return held
    return None


def has_any_access_right(held_rights: Iterable[str], required: Iterable[str]) -> bool:
    held_rights = list(held_rights)
    return any(has_access_right(held_rights, right) for right in required)


def has_all_access_rights(held_rights: Iterable[str], required: Iterable[str]) -> bool:
    held_rights = list(held_rights)
    return all(has_access_right(held_rights, right) for right in required)


def validate_access_right(right: str) -> str:
    if not isinstance(right, str) or not ACCESS_RIGHT_PATTERN.match(right):
        raise BadRequestException(f"Invalid access right: {right!r}")
    return right


def expand_wildcards(db: Session, rights: Iterable[str]) -> List[str]:
    """Expand wildcard rights into the concrete rights of the active catalogue."""
    rights = list(rights)
    concrete = {right for right in rights if not right.endswith("*")}
    patterns = [right for right in rights if right.endswith("*")]

    if patterns:
        catalogue = db.query(AccessRight.name).filter(AccessRight.is_active.is_(True)).all()
        for (name,) in catalogue:
            if any(matches_access_right(pattern, name) for pattern in patterns):
                concrete.add(name)

    return sorted(concrete)


def own_scoped_variants(required: str) -> List[str]:
    """
    Ownership variants of a right: ``domain:resource:action-own`` and
    ``domain:own:action``.
    """
    parts = required.split(":")
    if len(parts) != 3:
        return []
    domain, resource, action = parts
    return [f"{domain}:{resource}:{action}-own", f"{domain}:own:{action}"]
