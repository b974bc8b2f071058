"""In-memory stores.

Dictionary-backed implementations of the store interfaces for tests and
embedded use. The check-and-write of ``create`` and ``update`` runs under a
lock so the optimistic version check behaves like the conditional UPDATE of
the SQL stores. Reads snapshot the rows under the same lock. Stored rows are
replaced on write, never mutated, so a snapshot stays consistent.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from scopeguard.core.authz.states import AssignmentStatus
from scopeguard.core.errors import ConflictError, NotFoundError, VersionConflictError
from scopeguard.core.timeutil import to_naive_utc, utcnow
from scopeguard.db.base import new_id
from scopeguard.schemas.common import Page
from scopeguard.schemas.entities import Policy, Role, RoleAssignment
from scopeguard.schemas.requests import (
    AssignRoleDTO,
    CreatePolicyDTO,
    CreateRoleDTO,
    ListAssignmentsParams,
    UpdateAssignmentDTO,
)
from scopeguard.stores.base import AssignmentStore, PolicyStore, RoleStore
from scopeguard.stores.pagination import build_page, decode_cursor, resolve_limit


def _sort_key(entity) -> tuple:
    return entity.created_at, entity.id


def _paginate(entities: List, limit: Optional[int], cursor: Optional[str]) -> Page:
    limit = resolve_limit(limit)
    ordered = sorted(entities, key=_sort_key)
    if cursor:
        after = decode_cursor(cursor)
        ordered = [e for e in ordered if _sort_key(e) > after]
    window = [e.model_copy(deep=True) for e in ordered[: limit + 1]]
    return build_page(window, limit, _sort_key)


class _MemoryKeyedStore:
    """Shared implementation for roles and policies."""

    schema = None
    entity_type = "entity"

    def __init__(self):
        self._rows: Dict[Tuple[str, str], BaseModel] = {}
        self._lock = threading.RLock()

    def _tenant_rows(self, tenant_id: str) -> List:
        with self._lock:
            return [row for (tid, _), row in self._rows.items() if tid == tenant_id]

    def _new_entity(self, tenant_id: str, key: str, actor: str, fields: dict):
        with self._lock:
            if any(row.key == key for row in self._tenant_rows(tenant_id)):
                raise ConflictError(f"{self.entity_type.capitalize()} with key '{key}' already exists")

            timestamp = utcnow()
            entity = self.schema(
                id=new_id(),
                tenant_id=tenant_id,
                key=key,
                version=1,
                created_at=timestamp,
                updated_at=timestamp,
                created_by=actor,
                **fields,
            )
            self._rows[(tenant_id, entity.id)] = entity
        return entity.model_copy(deep=True)

    def get_by_id(self, tenant_id: str, entity_id: str):
        with self._lock:
            row = self._rows.get((tenant_id, entity_id))
        return row.model_copy(deep=True) if row else None

    def get_by_key(self, tenant_id: str, key: str):
        for row in self._tenant_rows(tenant_id):
            if row.key == key:
                return row.model_copy(deep=True)
        return None

    def get_by_keys(self, tenant_id: str, keys: Sequence[str]) -> List:
        if not keys:
            return []

        by_key = {row.key: row for row in self._tenant_rows(tenant_id)}
        return [by_key[k].model_copy(deep=True) for k in dict.fromkeys(keys) if k in by_key]

    def update(
        self,
        tenant_id: str,
        entity_id: str,
        patch: BaseModel,
        actor: str,
        expected_version: Optional[int] = None,
    ):
        with self._lock:
            current = self._rows.get((tenant_id, entity_id))
            if current is None:
                raise NotFoundError(f"{self.entity_type.capitalize()} {entity_id} not found")

            expected = current.version if expected_version is None else expected_version
            if current.version != expected:
                raise VersionConflictError(self.entity_type, entity_id, expected)

            changes = dict(patch.model_dump(exclude_unset=True, exclude_none=True))
            changes.update(version=expected + 1, updated_at=utcnow(), updated_by=actor)
            updated = self.schema.model_validate({**current.model_dump(), **changes})
            self._rows[(tenant_id, entity_id)] = updated
        return updated.model_copy(deep=True)

    def delete(self, tenant_id: str, entity_id: str) -> None:
        with self._lock:
            if self._rows.pop((tenant_id, entity_id), None) is None:
                raise NotFoundError(f"{self.entity_type.capitalize()} {entity_id} not found")

    def list(self, tenant_id: str, limit: Optional[int] = None, cursor: Optional[str] = None) -> Page:
        return _paginate(self._tenant_rows(tenant_id), limit, cursor)

    def list_with_filters(self, tenant_id: str, params) -> Page:
        rows = self._tenant_rows(tenant_id)
        if params.risk_level is not None:
            rows = [r for r in rows if r.risk_level == params.risk_level]
        if params.is_system is not None:
            rows = [r for r in rows if r.is_system == params.is_system]
        return _paginate(rows, params.limit, params.cursor)


class InMemoryRoleStore(_MemoryKeyedStore, RoleStore):
    schema = Role
    entity_type = "role"

    def create(self, tenant_id: str, data: CreateRoleDTO, actor: str, *, is_system: bool = False) -> Role:
        return self._new_entity(tenant_id, data.key, actor, dict(
            display_name=data.display_name,
            description=data.description or "",
            policies=list(data.policies),
            tags=list(data.tags),
            risk_level=data.risk_level,
            is_system=is_system,
        ))


class InMemoryPolicyStore(_MemoryKeyedStore, PolicyStore):
    schema = Policy
    entity_type = "policy"

    def create(self, tenant_id: str, data: CreatePolicyDTO, actor: str, *, is_system: bool = False) -> Policy:
        return self._new_entity(tenant_id, data.key, actor, dict(
            display_name=data.display_name,
            description=data.description or "",
            allow=list(data.allow),
            deny=list(data.deny),
            conditions=data.conditions,
            risk_level=data.risk_level,
            is_system=is_system,
        ))


class InMemoryAssignmentStore(AssignmentStore):
    def __init__(self):
        self._rows: Dict[Tuple[str, str], RoleAssignment] = {}
        self._lock = threading.RLock()

    def _tenant_rows(self, tenant_id: str) -> List[RoleAssignment]:
        with self._lock:
            return [row for (tid, _), row in self._rows.items() if tid == tenant_id]

    @staticmethod
    def _copies(rows) -> List[RoleAssignment]:
        return [row.model_copy(deep=True) for row in rows]

    def create(self, tenant_id: str, data: AssignRoleDTO, granted_by: str) -> RoleAssignment:
        with self._lock:
            for row in self._tenant_rows(tenant_id):
                if (
                    row.user_id == data.user_id
                    and row.role_key == data.role_key
                    and row.scope == data.scope
                    and row.status == AssignmentStatus.ACTIVE
                ):
                    raise ConflictError("User already has this role in this scope")

            timestamp = utcnow()
            assignment = RoleAssignment(
                id=new_id(),
                tenant_id=tenant_id,
                user_id=data.user_id,
                role_key=data.role_key,
                scope=data.scope,
                status=AssignmentStatus.ACTIVE,
                expires_at=to_naive_utc(data.expires_at) if data.expires_at else None,
                granted_by=granted_by,
                granted_at=timestamp,
                reason=data.reason,
                version=1,
                created_at=timestamp,
                updated_at=timestamp,
                created_by=granted_by,
            )
            self._rows[(tenant_id, assignment.id)] = assignment
        return assignment.model_copy(deep=True)

    def get_by_id(self, tenant_id: str, assignment_id: str) -> Optional[RoleAssignment]:
        with self._lock:
            row = self._rows.get((tenant_id, assignment_id))
        return row.model_copy(deep=True) if row else None

    def update(
        self,
        tenant_id: str,
        assignment_id: str,
        patch: UpdateAssignmentDTO,
        actor: str,
        expected_version: Optional[int] = None,
    ) -> RoleAssignment:
        with self._lock:
            current = self._rows.get((tenant_id, assignment_id))
            if current is None:
                raise NotFoundError(f"Assignment {assignment_id} not found")

            expected = current.version if expected_version is None else expected_version
            if current.version != expected:
                raise VersionConflictError("roleAssignment", assignment_id, expected)

            changes = dict(patch.model_dump(exclude_unset=True, exclude_none=True))
            if "expires_at" in changes:
                changes["expires_at"] = to_naive_utc(changes["expires_at"])
            changes.update(version=expected + 1, updated_at=utcnow(), updated_by=actor)
            updated = RoleAssignment.model_validate({**current.model_dump(), **changes})
            self._rows[(tenant_id, assignment_id)] = updated
        return updated.model_copy(deep=True)

    def list(self, tenant_id: str, params: Optional[ListAssignmentsParams] = None) -> Page:
        params = params or ListAssignmentsParams()
        rows = self._tenant_rows(tenant_id)
        if params.status is not None:
            rows = [r for r in rows if r.status == params.status]
        if params.user_id:
            rows = [r for r in rows if r.user_id == params.user_id]
        if params.role_key:
            rows = [r for r in rows if r.role_key == params.role_key]
        return _paginate(rows, params.limit, params.cursor)

    def get_by_user_id(self, tenant_id: str, user_id: str) -> List[RoleAssignment]:
        return self._copies(r for r in self._tenant_rows(tenant_id) if r.user_id == user_id)

    def get_by_user_and_scope(self, tenant_id: str, user_id: str, scope: str) -> List[RoleAssignment]:
        return self._copies(
            r for r in self._tenant_rows(tenant_id) if r.user_id == user_id and r.scope == scope
        )

    def get_active_by_user_id(self, tenant_id: str, user_id: str, now: datetime) -> List[RoleAssignment]:
        rows = [
            r for r in self._tenant_rows(tenant_id)
            if r.user_id == user_id and r.is_effective(now)
        ]
        return self._copies(sorted(rows, key=_sort_key))

    def get_by_role_key(self, tenant_id: str, role_key: str) -> List[RoleAssignment]:
        return self._copies(r for r in self._tenant_rows(tenant_id) if r.role_key == role_key)

    def list_expired_candidates(self, tenant_id: str, now: datetime) -> List[RoleAssignment]:
        return self._copies(
            r for r in self._tenant_rows(tenant_id)
            if r.status == AssignmentStatus.ACTIVE and r.expires_at is not None and r.expires_at < now
        )
