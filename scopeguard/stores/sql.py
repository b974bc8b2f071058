"""SQLAlchemy-backed stores.

Each store wraps a Session owned by the caller; stores flush but never
commit, so a unit of work spans whatever the caller decides. Inserts run
inside a SAVEPOINT so a unique-constraint failure only discards that insert.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Type

from pydantic import BaseModel
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scopeguard.core.authz.states import AssignmentStatus
from scopeguard.core.errors import ConflictError, NotFoundError, VersionConflictError
from scopeguard.core.timeutil import to_naive_utc, utcnow
from scopeguard.db.models import PolicyRecord, RoleAssignmentRecord, RoleRecord
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

logger = logging.getLogger(__name__)


def patch_values(patch: BaseModel) -> Dict[str, Any]:
    """Fields explicitly set on a patch, as column values. None means unchanged."""
    values = patch.model_dump(exclude_unset=True, exclude_none=True)
    return {
        name: value.value if isinstance(value, Enum) else value
        for name, value in values.items()
    }


def _sort_key(entity) -> tuple:
    return entity.created_at, entity.id


class _SqlKeyedStore:
    """Shared implementation for roles and policies."""

    record: Type = None
    schema: Type[BaseModel] = None
    entity_type = "entity"

    def __init__(self, db: Session):
        self.db = db

    # -- helpers -----------------------------------------------------------

    def _query(self, tenant_id: str):
        return self.db.query(self.record).filter(self.record.tenant_id == tenant_id)

    def _get_record(self, tenant_id: str, entity_id: str):
        return self._query(tenant_id).filter(self.record.id == entity_id).first()

    def _to_entity(self, record):
        return self.schema.model_validate(record)

    def _insert(self, record):
        try:
            with self.db.begin_nested():
                self.db.add(record)
        except IntegrityError as exc:
            logger.warning("Insert of %s %s lost a race on its unique key", self.entity_type, record.key)
            raise ConflictError(
                f"{self.entity_type.capitalize()} with key '{record.key}' already exists"
            ) from exc
        return self._to_entity(record)

    def _page(self, query, limit: Optional[int], cursor: Optional[str]) -> Page:
        limit = resolve_limit(limit)
        if cursor:
            created_at, last_id = decode_cursor(cursor)
            query = query.filter(
                or_(
                    self.record.created_at > created_at,
                    and_(self.record.created_at == created_at, self.record.id > last_id),
                )
            )
        rows = query.order_by(self.record.created_at.asc(), self.record.id.asc()).limit(limit + 1).all()
        return build_page([self._to_entity(r) for r in rows], limit, _sort_key)

    # -- reads -------------------------------------------------------------

    def get_by_id(self, tenant_id: str, entity_id: str):
        record = self._get_record(tenant_id, entity_id)
        return self._to_entity(record) if record else None

    def get_by_key(self, tenant_id: str, key: str):
        record = self._query(tenant_id).filter(self.record.key == key).first()
        return self._to_entity(record) if record else None

    def get_by_keys(self, tenant_id: str, keys: Sequence[str]) -> List:
        if not keys:
            return []

        wanted = list(dict.fromkeys(keys))
        records = self._query(tenant_id).filter(self.record.key.in_(wanted)).all()
        by_key = {r.key: r for r in records}
        return [self._to_entity(by_key[k]) for k in wanted if k in by_key]

    def list(self, tenant_id: str, limit: Optional[int] = None, cursor: Optional[str] = None) -> Page:
        return self._page(self._query(tenant_id), limit, cursor)

    def list_with_filters(self, tenant_id: str, params) -> Page:
        query = self._query(tenant_id)
        if params.risk_level is not None:
            query = query.filter(self.record.risk_level == params.risk_level.value)
        if params.is_system is not None:
            query = query.filter(self.record.is_system == params.is_system)
        return self._page(query, params.limit, params.cursor)

    # -- writes ------------------------------------------------------------

    def update(
        self,
        tenant_id: str,
        entity_id: str,
        patch: BaseModel,
        actor: str,
        expected_version: Optional[int] = None,
    ):
        current = self._get_record(tenant_id, entity_id)
        if current is None:
            raise NotFoundError(f"{self.entity_type.capitalize()} {entity_id} not found")

        expected = current.version if expected_version is None else expected_version
        values = patch_values(patch)
        values.update(version=expected + 1, updated_at=utcnow(), updated_by=actor)

        written = self._query(tenant_id).filter(
            self.record.id == entity_id,
            self.record.version == expected,
        ).update(values, synchronize_session=False)

        if written != 1:
            logger.warning("Version conflict on %s %s (expected version %d)", self.entity_type, entity_id, expected)
            raise VersionConflictError(self.entity_type, entity_id, expected)

        self.db.refresh(current)
        return self._to_entity(current)

    def delete(self, tenant_id: str, entity_id: str) -> None:
        record = self._get_record(tenant_id, entity_id)
        if record is None:
            raise NotFoundError(f"{self.entity_type.capitalize()} {entity_id} not found")
        self.db.delete(record)
        self.db.flush()


class SqlRoleStore(_SqlKeyedStore, RoleStore):
    record = RoleRecord
    schema = Role
    entity_type = "role"

    def create(self, tenant_id: str, data: CreateRoleDTO, actor: str, *, is_system: bool = False) -> Role:
        if self.get_by_key(tenant_id, data.key):
            raise ConflictError(f"Role with key '{data.key}' already exists")

        timestamp = utcnow()
        return self._insert(RoleRecord(
            tenant_id=tenant_id,
            key=data.key,
            display_name=data.display_name,
            description=data.description or "",
            policies=list(data.policies),
            tags=list(data.tags),
            risk_level=data.risk_level.value,
            is_system=is_system,
            version=1,
            created_at=timestamp,
            updated_at=timestamp,
            created_by=actor,
        ))


class SqlPolicyStore(_SqlKeyedStore, PolicyStore):
    record = PolicyRecord
    schema = Policy
    entity_type = "policy"

    def create(self, tenant_id: str, data: CreatePolicyDTO, actor: str, *, is_system: bool = False) -> Policy:
        if self.get_by_key(tenant_id, data.key):
            raise ConflictError(f"Policy with key '{data.key}' already exists")

        timestamp = utcnow()
        return self._insert(PolicyRecord(
            tenant_id=tenant_id,
            key=data.key,
            display_name=data.display_name,
            description=data.description or "",
            allow=list(data.allow),
            deny=list(data.deny),
            conditions=data.conditions.model_dump(exclude_none=True) if data.conditions else None,
            risk_level=data.risk_level.value,
            is_system=is_system,
            version=1,
            created_at=timestamp,
            updated_at=timestamp,
            created_by=actor,
        ))


class SqlAssignmentStore(AssignmentStore):
    def __init__(self, db: Session):
        self.db = db

    def _query(self, tenant_id: str):
        return self.db.query(RoleAssignmentRecord).filter(RoleAssignmentRecord.tenant_id == tenant_id)

    @staticmethod
    def _to_entity(record) -> RoleAssignment:
        return RoleAssignment.model_validate(record)

    def create(self, tenant_id: str, data: AssignRoleDTO, granted_by: str) -> RoleAssignment:
        duplicate = self._query(tenant_id).filter(
            RoleAssignmentRecord.user_id == data.user_id,
            RoleAssignmentRecord.role_key == data.role_key,
            RoleAssignmentRecord.scope == data.scope,
            RoleAssignmentRecord.status == AssignmentStatus.ACTIVE.value,
        ).first()
        if duplicate:
            raise ConflictError("User already has this role in this scope")

        timestamp = utcnow()
        record = RoleAssignmentRecord(
            tenant_id=tenant_id,
            user_id=data.user_id,
            role_key=data.role_key,
            scope=data.scope,
            status=AssignmentStatus.ACTIVE.value,
            expires_at=to_naive_utc(data.expires_at) if data.expires_at else None,
            granted_by=granted_by,
            granted_at=timestamp,
            reason=data.reason,
            version=1,
            created_at=timestamp,
            updated_at=timestamp,
            created_by=granted_by,
        )
        try:
            with self.db.begin_nested():
                self.db.add(record)
        except IntegrityError as exc:
            logger.warning("Grant of %s to %s in %s lost a race on the active-grant index", data.role_key, data.user_id, data.scope)
            raise ConflictError("User already has this role in this scope") from exc
        return self._to_entity(record)

    def get_by_id(self, tenant_id: str, assignment_id: str) -> Optional[RoleAssignment]:
        record = self._query(tenant_id).filter(RoleAssignmentRecord.id == assignment_id).first()
        return self._to_entity(record) if record else None

    def update(
        self,
        tenant_id: str,
        assignment_id: str,
        patch: UpdateAssignmentDTO,
        actor: str,
        expected_version: Optional[int] = None,
    ) -> RoleAssignment:
        current = self._query(tenant_id).filter(RoleAssignmentRecord.id == assignment_id).first()
        if current is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")

        expected = current.version if expected_version is None else expected_version
        values = patch_values(patch)
        if "expires_at" in values:
            values["expires_at"] = to_naive_utc(values["expires_at"])
        values.update(version=expected + 1, updated_at=utcnow(), updated_by=actor)

        written = self._query(tenant_id).filter(
            RoleAssignmentRecord.id == assignment_id,
            RoleAssignmentRecord.version == expected,
        ).update(values, synchronize_session=False)

        if written != 1:
            logger.warning("Version conflict on assignment %s (expected version %d)", assignment_id, expected)
            raise VersionConflictError(self.entity_type, assignment_id, expected)

        self.db.refresh(current)
        return self._to_entity(current)

    def list(self, tenant_id: str, params: Optional[ListAssignmentsParams] = None) -> Page:
        params = params or ListAssignmentsParams()
        query = self._query(tenant_id)
        if params.status is not None:
            query = query.filter(RoleAssignmentRecord.status == params.status.value)
        if params.user_id:
            query = query.filter(RoleAssignmentRecord.user_id == params.user_id)
        if params.role_key:
            query = query.filter(RoleAssignmentRecord.role_key == params.role_key)

        limit = resolve_limit(params.limit)
        if params.cursor:
            created_at, last_id = decode_cursor(params.cursor)
            query = query.filter(
                or_(
                    RoleAssignmentRecord.created_at > created_at,
                    and_(RoleAssignmentRecord.created_at == created_at, RoleAssignmentRecord.id > last_id),
                )
            )
        rows = query.order_by(
            RoleAssignmentRecord.created_at.asc(), RoleAssignmentRecord.id.asc()
        ).limit(limit + 1).all()
        return build_page([self._to_entity(r) for r in rows], limit, _sort_key)

    def get_by_user_id(self, tenant_id: str, user_id: str) -> List[RoleAssignment]:
        rows = self._query(tenant_id).filter(RoleAssignmentRecord.user_id == user_id).all()
        return [self._to_entity(r) for r in rows]

    def get_by_user_and_scope(self, tenant_id: str, user_id: str, scope: str) -> List[RoleAssignment]:
        rows = self._query(tenant_id).filter(
            RoleAssignmentRecord.user_id == user_id,
            RoleAssignmentRecord.scope == scope,
        ).all()
        return [self._to_entity(r) for r in rows]

    def get_active_by_user_id(self, tenant_id: str, user_id: str, now: datetime) -> List[RoleAssignment]:
        rows = self._query(tenant_id).filter(
            RoleAssignmentRecord.user_id == user_id,
            RoleAssignmentRecord.status == AssignmentStatus.ACTIVE.value,
            or_(
                RoleAssignmentRecord.expires_at.is_(None),
                RoleAssignmentRecord.expires_at > now,
            ),
        ).order_by(RoleAssignmentRecord.created_at.asc()).all()
        return [self._to_entity(r) for r in rows]

    def get_by_role_key(self, tenant_id: str, role_key: str) -> List[RoleAssignment]:
        rows = self._query(tenant_id).filter(RoleAssignmentRecord.role_key == role_key).all()
        return [self._to_entity(r) for r in rows]

    def list_expired_candidates(self, tenant_id: str, now: datetime) -> List[RoleAssignment]:
        rows = self._query(tenant_id).filter(
            RoleAssignmentRecord.status == AssignmentStatus.ACTIVE.value,
            RoleAssignmentRecord.expires_at.isnot(None),
            RoleAssignmentRecord.expires_at < now,
        ).all()
        return [self._to_entity(r) for r in rows]
