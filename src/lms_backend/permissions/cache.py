"""
Versioned permission cache.

Each user has one cache entry holding the rights resolved per department.
An entry is only trusted while its ``version`` matches the user's counter and
its ``epoch`` matches the global counter; both are read *before* resolving, so
an invalidation racing with a refill leaves a stale-tagged entry behind rather
than a silently wrong one. When the cache store is unreachable every lookup
is resolved directly from the database.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from lms_backend.interface.authorization import DepartmentRights, UserPermissions
from lms_backend.model.base import utcnow
from lms_backend.model.constants import GLOBAL_ADMIN
from lms_backend.permissions.access_rights import resolve_access_rights, role_registry
from lms_backend.permissions.hierarchy import DepartmentTree
from lms_backend.permissions.roles import resolve_roles_with_source
from lms_backend.redis_cache import get_redis_client
from lms_backend.settings import settings

logger = logging.getLogger(__name__)

PERMISSIONS_KEY = "auth:permissions:{user_id}"
USER_VERSION_KEY = "auth:user:{user_id}:version"
EPOCH_KEY = "auth:permissions:epoch"
HIERARCHY_KEY = "auth:hierarchy"
HIERARCHY_VERSION_KEY = "auth:hierarchy:version"


def resolve_department_rights(db: Session, user_id: str, user_categories: Iterable[str],
                              department_id: str) -> DepartmentRights:
    """
    Uncached resolution of one department for the user's learner and staff
    categories. Global-admin roles only ever reach a caller through an
    escalation session.
    """
    roles: List[str] = []
    role_sources: Dict[str, str] = {}
    source_department_id: Optional[str] = None

    for category in user_categories:
        if category == GLOBAL_ADMIN:
            continue
        category_roles, source = resolve_roles_with_source(db, user_id, department_id, category)
        for role in category_roles:
            if role not in role_sources:
                roles.append(role)
                role_sources[role] = source
        if category_roles and source_department_id is None:
            source_department_id = source

    return DepartmentRights(
        roles=roles,
        rights=resolve_access_rights(db, roles),
        source_department_id=source_department_id,
        role_sources=role_sources,
    )


class PermissionCache:

    def __init__(self, client=None, ttl_seconds: Optional[int] = None,
                 hierarchy_ttl_seconds: Optional[int] = None):
        """
        Args:
            client: aiocache-compatible cache; defaults to the shared Redis client
            ttl_seconds: lifetime of a user entry
            hierarchy_ttl_seconds: lifetime of the department tree snapshot
        """
        self._cache_client = client
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.PERMISSION_CACHE_TTL
        self.hierarchy_ttl_seconds = (
            hierarchy_ttl_seconds if hierarchy_ttl_seconds is not None else settings.HIERARCHY_CACHE_TTL
        )

    async def _client(self):
        if self._cache_client is not None:
            return self._cache_client
        return await get_redis_client()

    @staticmethod
    async def _read_counter(client, key: str) -> int:
        value = await client.get(key)
        return int(value) if value is not None else 0

    async def get_version(self, user_id: str) -> int:
        client = await self._client()
        return await self._read_counter(client, USER_VERSION_KEY.format(user_id=user_id))

    async def get_epoch(self) -> int:
        client = await self._client()
        return await self._read_counter(client, EPOCH_KEY)

    async def _load_entry(self, user_id: str):
        """Return ``(client, entry, version, epoch)``; entry is None unless current."""
        client = await self._client()
        version = await self._read_counter(client, USER_VERSION_KEY.format(user_id=user_id))
        epoch = await self._read_counter(client, EPOCH_KEY)
        role_registry.sync_epoch(epoch)

        raw = await client.get(PERMISSIONS_KEY.format(user_id=user_id))
        entry = None
        if raw:
            entry = UserPermissions.model_validate(raw)
            if entry.version != version or entry.epoch != epoch:
                logger.debug(f"Discarding stale permission entry for {user_id}")
                entry = None
        return client, entry, version, epoch

    async def _store_entry(self, client, entry: UserPermissions):
        try:
            await client.set(
                PERMISSIONS_KEY.format(user_id=entry.user_id),
                entry.model_dump(mode="json"),
                ttl=self.ttl_seconds,
            )
        except Exception as e:
            logger.warning(f"Failed to store permissions for {entry.user_id}: {e}")

    @staticmethod
    def _new_entry(user_id: str, version: int, epoch: int) -> UserPermissions:
        return UserPermissions(
            user_id=user_id,
            version=version,
            epoch=epoch,
            computed_at=utcnow(),
        )

    async def get_department_rights(self, db: Session, user_id: str, user_categories: Iterable[str],
                                    department_id: str) -> DepartmentRights:
        user_categories = list(user_categories)
        try:
            client, entry, version, epoch = await self._load_entry(user_id)
        except Exception as e:
            logger.warning(f"Permission cache unavailable, resolving directly: {e}")
            return resolve_department_rights(db, user_id, user_categories, department_id)

        if entry is not None and department_id in entry.department_rights:
            logger.debug(f"Permission cache hit for {user_id} in {department_id}")
            return entry.department_rights[department_id]

        logger.debug(f"Permission cache miss for {user_id} in {department_id}")
        if entry is None:
            entry = self._new_entry(user_id, version, epoch)

        rights = resolve_department_rights(db, user_id, user_categories, department_id)
        entry.department_rights[department_id] = rights
        await self._store_entry(client, entry)
        return rights

    async def get_user_permissions(self, db: Session, user_id: str, user_categories: Iterable[str],
                                   department_ids: Iterable[str] = ()) -> UserPermissions:
        """Cache entry for a user, filled in for ``department_ids``."""
        user_categories = list(user_categories)
        department_ids = list(department_ids)
        try:
            client, entry, version, epoch = await self._load_entry(user_id)
        except Exception as e:
            logger.warning(f"Permission cache unavailable, resolving directly: {e}")
            client, entry, version, epoch = None, None, 0, 0

        created = entry is None
        if created:
            entry = self._new_entry(user_id, version, epoch)

        missing = [dept_id for dept_id in department_ids if dept_id not in entry.department_rights]
        for dept_id in missing:
            entry.department_rights[dept_id] = resolve_department_rights(db, user_id, user_categories, dept_id)

        if client is not None and (created or missing):
            await self._store_entry(client, entry)
        return entry

    async def invalidate_user(self, user_id: str):
        try:
            client = await self._client()
            await client.delete(PERMISSIONS_KEY.format(user_id=user_id))
            await client.increment(USER_VERSION_KEY.format(user_id=user_id))
            logger.info(f"Invalidated permission cache for user {user_id}")
        except Exception as e:
            logger.warning(f"Failed to invalidate permission cache for {user_id}: {e}")

    async def invalidate_all(self):
        try:
            client = await self._client()
            await client.increment(EPOCH_KEY)
            logger.info("Invalidated all cached permissions")
        except Exception as e:
            logger.warning(f"Failed to bump permission epoch: {e}")

    async def get_department_tree(self, db: Session) -> DepartmentTree:
        try:
            client = await self._client()
            version = await self._read_counter(client, HIERARCHY_VERSION_KEY)
            raw = await client.get(HIERARCHY_KEY)
        except Exception as e:
            logger.warning(f"Hierarchy cache unavailable, loading from database: {e}")
            return DepartmentTree.load(db)

        if raw and raw.get("version") == version:
            logger.debug("Hierarchy cache hit")
            return DepartmentTree.from_cache(raw["departments"])

        tree = DepartmentTree.load(db)
        try:
            await client.set(
                HIERARCHY_KEY,
                {"version": version, "departments": tree.to_cache()},
                ttl=self.hierarchy_ttl_seconds,
            )
        except Exception as e:
            logger.warning(f"Failed to cache department hierarchy: {e}")
        return tree

    async def invalidate_hierarchy(self):
        try:
            client = await self._client()
            await client.delete(HIERARCHY_KEY)
            await client.increment(HIERARCHY_VERSION_KEY)
            logger.info("Invalidated cached department hierarchy")
        except Exception as e:
            logger.warning(f"Failed to invalidate department hierarchy: {e}")


# Global cache instance
permission_cache = PermissionCache()
