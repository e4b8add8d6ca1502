"""
Department hierarchy traversal and structural writes.

Reads work on a ``DepartmentTree`` snapshot, either loaded from the database
or taken from the permission cache. Every traversal keeps a visited set, so a
malformed parent chain terminates instead of looping.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from lms_backend.api.exceptions import ConflictException, NotFoundException
from lms_backend.model.base import utcnow
from lms_backend.model.department import Department
from lms_backend.model.membership import DepartmentMembership
from lms_backend.permissions.audit import DEPARTMENT_MOVED, record_audit_event

logger = logging.getLogger(__name__)


class DepartmentNode(BaseModel):
    id: str
    name: str
    code: str
    parent_id: Optional[str] = None
    is_active: bool = True
    is_visible: bool = True
    is_system: bool = False
    require_explicit_membership: bool = False


class DepartmentTree:
    """Immutable parent/child index over all departments."""

    def __init__(self, nodes: Iterable[DepartmentNode]):
        self._nodes: Dict[str, DepartmentNode] = {node.id: node for node in nodes}
        children: Dict[str, List[str]] = defaultdict(list)
        for node in self._nodes.values():
            if node.parent_id is not None:
                children[node.parent_id].append(node.id)
        self._children = {parent: sorted(ids) for parent, ids in children.items()}

    @classmethod
    def load(cls, db: Session) -> "DepartmentTree":
        rows = db.query(
            Department.id,
            Department.name,
            Department.code,
            Department.parent_id,
            Department.is_active,
            Department.is_visible,
            Department.is_system,
            Department.require_explicit_membership,
        ).all()
        return cls(DepartmentNode(**row._asdict()) for row in rows)

    @classmethod
    def from_cache(cls, data: List[Dict[str, Any]]) -> "DepartmentTree":
        return cls(DepartmentNode.model_validate(item) for item in data)

    def to_cache(self) -> List[Dict[str, Any]]:
        return [node.model_dump() for node in self._nodes.values()]

    def __contains__(self, department_id: str) -> bool:
        return department_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, department_id: str) -> Optional[DepartmentNode]:
        return self._nodes.get(department_id)

    def children_of(self, department_id: str, active_only: bool = True) -> List[DepartmentNode]:
        result = []
        for child_id in self._children.get(department_id, []):
            child = self._nodes[child_id]
            if active_only and not (child.is_active and child.is_visible):
                continue
            result.append(child)
        return result

    def descendants_of(self, department_id: str) -> List[str]:
        """
        The department itself plus every transitive child.

        Inactive or invisible children are skipped together with their
        subtrees. An unknown or inactive root yields an empty list.
        """
        root = self._nodes.get(department_id)
        if root is None or not root.is_active:
            return []

        result = [root.id]
        visited = {root.id}
        stack = [root.id]
        while stack:
            current = stack.pop()
            for child in self.children_of(current):
                if child.id in visited:
                    continue
                visited.add(child.id)
                result.append(child.id)
                stack.append(child.id)
        return result

    def ancestors_of(self, department_id: str) -> List[str]:
        """Chain from the department up to its root, the department first."""
        if department_id not in self._nodes:
            return []

        chain = []
        visited = set()
        current: Optional[str] = department_id
        while current is not None and current not in visited:
            node = self._nodes.get(current)
            if node is None:
                break
            visited.add(current)
            chain.append(current)
            current = node.parent_id

        if current is not None and current in visited:
            logger.error(f"Department parent chain of {department_id} contains a cycle at {current}")
        return chain

    def root_of(self, department_id: str) -> Optional[str]:
        chain = self.ancestors_of(department_id)
        return chain[-1] if chain else None


def _tree(db: Session, tree: Optional[DepartmentTree]) -> DepartmentTree:
    return tree if tree is not None else DepartmentTree.load(db)


def get_department_and_subdepartments(db: Session, department_id: str,
                                      tree: Optional[DepartmentTree] = None) -> List[str]:
    return _tree(db, tree).descendants_of(department_id)


def get_parent_departments(db: Session, department_id: str,
                           tree: Optional[DepartmentTree] = None) -> List[str]:
    return _tree(db, tree).ancestors_of(department_id)


def get_root_department(db: Session, department_id: str,
                        tree: Optional[DepartmentTree] = None) -> Optional[str]:
    return _tree(db, tree).root_of(department_id)


def is_top_level_member(db: Session, user_id: str, department_id: str) -> bool:
    """True when the user belongs to ``department_id`` and it has no parent."""
    department = db.get(Department, department_id)
    if department is None or department.parent_id is not None:
        return False

    memberships = (
        db.query(DepartmentMembership)
        .filter(
            DepartmentMembership.user_id == user_id,
            DepartmentMembership.department_id == department_id,
            DepartmentMembership.is_active.is_(True),
        )
        .all()
    )
    now = utcnow()
    return any(m.is_effective(now) for m in memberships)


def has_hierarchical_access(db: Session, user_department_ids: Iterable[str], target_department_id: str,
                            tree: Optional[DepartmentTree] = None) -> bool:
    department_ids = list(user_department_ids)
    if target_department_id in department_ids:
        return True

    tree = _tree(db, tree)
    return any(target_department_id in tree.descendants_of(dept_id) for dept_id in department_ids)


def get_department_ids_for_query(db: Session, user_department_ids: Iterable[str],
                                 tree: Optional[DepartmentTree] = None) -> List[str]:
    """Deduplicated union of every given department and its subtree."""
    tree = _tree(db, tree)
    result: List[str] = []
    seen = set()
    for dept_id in user_department_ids:
        for sub_id in tree.descendants_of(dept_id):
            if sub_id not in seen:
                seen.add(sub_id)
                result.append(sub_id)
    return result


def _commit(db: Session, message: str):
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConflictException(message)
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Department write rejected: {e.orig}")
        raise ConflictException(message)


async def _invalidate_hierarchy(cache, full: bool = False):
    if cache is None:
        from lms_backend.permissions.cache import permission_cache
        cache = permission_cache
    await cache.invalidate_hierarchy()
    if full:
        # Cascaded roles depend on the parent chain
        await cache.invalidate_all()


async def create_department(
    db: Session,
    name: str,
    code: str,
    parent_id: Optional[str] = None,
    description: Optional[str] = None,
    is_visible: bool = True,
    require_explicit_membership: bool = False,
    created_by: Optional[str] = None,
    cache=None,
) -> Department:
    if parent_id is not None and db.get(Department, parent_id) is None:
        raise NotFoundException(f"Parent department {parent_id} not found")

    code = code.strip().upper()
    if db.query(Department.id).filter(Department.code == code).first() is not None:
        raise ConflictException(f"Department code {code} already exists")

    department = Department(
        name=name,
        code=code,
        parent_id=parent_id,
        description=description,
        is_visible=is_visible,
        require_explicit_membership=require_explicit_membership,
        created_by=created_by,
        updated_by=created_by,
    )
    db.add(department)
    _commit(db, f"Department code {code} already exists")
    db.refresh(department)

    logger.info(f"Created department {department.id} ({code}) under {parent_id}")
    await _invalidate_hierarchy(cache)
    return department


async def move_department(
    db: Session,
    department_id: str,
    new_parent_id: Optional[str],
    expected_version: Optional[int] = None,
    updated_by: Optional[str] = None,
    cache=None,
) -> Department:
    """Re-parent a department, rejecting anything that would form a cycle."""
    department = db.get(Department, department_id)
    if department is None:
        raise NotFoundException(f"Department {department_id} not found")

    if expected_version is not None and department.version != expected_version:
        raise ConflictException("Department was modified concurrently")

    if department.is_system:
        raise ConflictException("System departments cannot be moved")

    if new_parent_id is not None:
        if new_parent_id == department_id:
            raise ConflictException("A department cannot be its own parent")
        if db.get(Department, new_parent_id) is None:
            raise NotFoundException(f"Parent department {new_parent_id} not found")
        if department_id in DepartmentTree.load(db).ancestors_of(new_parent_id):
            raise ConflictException("Move would create a cycle in the department hierarchy")

    if department.parent_id == new_parent_id:
        return department

    previous_parent = department.parent_id
    department.parent_id = new_parent_id
    department.updated_by = updated_by
    record_audit_event(
        db, DEPARTMENT_MOVED, actor_id=updated_by, department_id=department_id,
        details={"from": previous_parent, "to": new_parent_id},
    )
    _commit(db, "Department was modified concurrently")
    db.refresh(department)

    logger.info(f"Moved department {department_id} from {previous_parent} to {new_parent_id}")
    await _invalidate_hierarchy(cache, full=True)
    return department
