"""Store interfaces for roles, policies and role assignments.

The authorization service depends only on these interfaces. Every store
is tenant-scoped: each call names the tenant and never sees rows of
another tenant.

Updates are optimistic. ``update`` writes only if the stored version still
equals ``expected_version`` (by default the version read at the start of
the call) and raises VersionConflictError otherwise, leaving the row as it
was. Each successful update bumps the version by exactly one.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Generic, List, Optional, Sequence, TypeVar

from scopeguard.schemas.common import Page
from scopeguard.schemas.entities import Policy, Role, RoleAssignment
from scopeguard.schemas.requests import (
    AssignRoleDTO,
    CreatePolicyDTO,
    CreateRoleDTO,
    ListAssignmentsParams,
    ListPoliciesParams,
    ListRolesParams,
    UpdateAssignmentDTO,
    UpdatePolicyDTO,
    UpdateRoleDTO,
)

E = TypeVar("E")
C = TypeVar("C")
U = TypeVar("U")
F = TypeVar("F")


class KeyedStore(ABC, Generic[E, C, U, F]):
    """CRUD for entities with a tenant-unique human key."""

    entity_type: str = "entity"

    @abstractmethod
    def create(self, tenant_id: str, data: C, actor: str, *, is_system: bool = False) -> E:
        """Insert a new entity at version 1. Duplicate key -> ConflictError."""

    @abstractmethod
    def get_by_id(self, tenant_id: str, entity_id: str) -> Optional[E]:
        ...

    @abstractmethod
    def get_by_key(self, tenant_id: str, key: str) -> Optional[E]:
        ...

    @abstractmethod
    def get_by_keys(self, tenant_id: str, keys: Sequence[str]) -> List[E]:
        """Bulk lookup in request order; missing keys are skipped, [] -> []."""

    @abstractmethod
    def update(
        self,
        tenant_id: str,
        entity_id: str,
        patch: U,
        actor: str,
        expected_version: Optional[int] = None,
    ) -> E:
        ...

    @abstractmethod
    def delete(self, tenant_id: str, entity_id: str) -> None:
        ...

    @abstractmethod
    def list(self, tenant_id: str, limit: Optional[int] = None, cursor: Optional[str] = None) -> Page:
        ...

    @abstractmethod
    def list_with_filters(self, tenant_id: str, params: F) -> Page:
        ...


class RoleStore(KeyedStore[Role, CreateRoleDTO, UpdateRoleDTO, ListRolesParams]):
    entity_type = "role"


class PolicyStore(KeyedStore[Policy, CreatePolicyDTO, UpdatePolicyDTO, ListPoliciesParams]):
    entity_type = "policy"


class AssignmentStore(ABC):
    """Role assignments. There is no delete: history is kept by status."""

    entity_type = "roleAssignment"

    @abstractmethod
    def create(self, tenant_id: str, data: AssignRoleDTO, granted_by: str) -> RoleAssignment:
        """Insert an active assignment. A second active grant -> ConflictError."""

    @abstractmethod
    def get_by_id(self, tenant_id: str, assignment_id: str) -> Optional[RoleAssignment]:
        ...

    @abstractmethod
    def update(
        self,
        tenant_id: str,
        assignment_id: str,
        patch: UpdateAssignmentDTO,
        actor: str,
        expected_version: Optional[int] = None,
    ) -> RoleAssignment:
        ...

    @abstractmethod
    def list(self, tenant_id: str, params: Optional[ListAssignmentsParams] = None) -> Page:
        ...

    @abstractmethod
    def get_by_user_id(self, tenant_id: str, user_id: str) -> List[RoleAssignment]:
        ...

    @abstractmethod
    def get_by_user_and_scope(self, tenant_id: str, user_id: str, scope: str) -> List[RoleAssignment]:
        ...

    @abstractmethod
    def get_active_by_user_id(self, tenant_id: str, user_id: str, now: datetime) -> List[RoleAssignment]:
        """Active assignments whose expires_at is unset or still in the future."""

    @abstractmethod
    def get_by_role_key(self, tenant_id: str, role_key: str) -> List[RoleAssignment]:
        ...

    @abstractmethod
    def list_expired_candidates(self, tenant_id: str, now: datetime) -> List[RoleAssignment]:
        """Active assignments with expires_at before now."""
