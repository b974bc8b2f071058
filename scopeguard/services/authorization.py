"""Authorization service.

Ties the role, policy and assignment stores to the permission evaluator:
validates and persists role/policy/assignment changes, evaluates
permission checks for a user in a resource scope, and publishes a domain
event for every mutation and evaluation.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from scopeguard.core.authz.evaluator import (
    REASON_NO_ASSIGNMENTS,
    REASON_NO_ROLES,
    build_effective_permissions,
    decide,
    denied,
    filter_assignments_by_scope,
    unique_keys,
)
from scopeguard.core.authz.permissions import validate_permission_patterns
from scopeguard.core.authz.scopes import scope_matches, validate_scope
from scopeguard.core.authz.states import AssignmentStatus, ensure_transition
from scopeguard.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from scopeguard.core.events import (
    EventActor,
    EventPayload,
    EventPublisher,
    EventType,
    LoggingEventPublisher,
)
from scopeguard.core.timeutil import to_naive_utc, utcnow
from scopeguard.schemas.common import Page
from scopeguard.schemas.entities import Policy, Role, RoleAssignment
from scopeguard.schemas.requests import (
    AssignRoleDTO,
    CreatePolicyDTO,
    CreateRoleDTO,
    EvaluateBatchDTO,
    EvaluatePermissionDTO,
    ListAssignmentsParams,
    ListPoliciesParams,
    ListRolesParams,
    UpdateAssignmentDTO,
    UpdatePolicyDTO,
    UpdateRoleDTO,
)
from scopeguard.schemas.results import (
    BatchEvaluationResult,
    BatchSummary,
    Decision,
    EffectivePermission,
    UserAccessSummary,
)
from scopeguard.stores.base import AssignmentStore, PolicyStore, RoleStore
from scopeguard.stores.pagination import resolve_limit

logger = logging.getLogger(__name__)


def _updated_fields(patch) -> List[str]:
    return sorted(patch.model_dump(exclude_unset=True, exclude_none=True))


class AuthorizationService:
    """
    High-level service for roles, policies, assignments and permission checks.

    Handles:
    - Role and policy CRUD with reference and system-entity checks
    - Granting and revoking role assignments
    - Evaluating permissions (single and batch) and effective permissions
    - Expiring assignments past their expires_at
    """

    def __init__(
        self,
        role_store: RoleStore,
        policy_store: PolicyStore,
        assignment_store: AssignmentStore,
        events: Optional[EventPublisher] = None,
    ):
        """
        Initialize the authorization service.

        Args:
            role_store: Store for roles
            policy_store: Store for policies
            assignment_store: Store for role assignments
            events: Publisher for domain events; events are only logged if omitted
        """
        self.roles = role_store
        self.policies = policy_store
        self.assignments = assignment_store
        self.events = events or LoggingEventPublisher()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit(
        self,
        event_type: EventType,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        action: str,
        data: dict,
        actor: Optional[str] = None,
    ) -> None:
        payload = EventPayload(
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            data=data,
            actor=EventActor.user(actor) if actor else EventActor.system(),
        )
        try:
            self.events.publish(event_type, payload)
        except Exception:
            # Log but dont fail the operation
            logger.exception("Failed to publish %s for %s %s", event_type.value, entity_type, entity_id)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def _require_policies(self, tenant_id: str, keys: Sequence[str]) -> None:
        found = {p.key for p in self.policies.get_by_keys(tenant_id, keys)}
        missing = [k for k in unique_keys(keys) if k not in found]
        if missing:
            raise NotFoundError(f"Policies not found: {', '.join(missing)}")

    def create_role(self, tenant_id: str, data: CreateRoleDTO, actor: str, *, is_system: bool = False) -> Role:
        self._require_policies(tenant_id, data.policies)

        role = self.roles.create(tenant_id, data, actor, is_system=is_system)
        logger.info("Created role %s (%s) in tenant %s", role.key, role.id, tenant_id)

        self._emit(
            EventType.ROLE_CREATED, tenant_id, "role", role.id, "created",
            {"key": role.key, "policies": role.policies}, actor,
        )
        return role

    def get_role_by_id(self, tenant_id: str, role_id: str) -> Role:
        role = self.roles.get_by_id(tenant_id, role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found")
        return role

    def get_role_by_key(self, tenant_id: str, key: str) -> Role:
        role = self.roles.get_by_key(tenant_id, key)
        if role is None:
            raise NotFoundError(f"Role with key '{key}' not found")
        return role

    def update_role(
        self,
        tenant_id: str,
        role_id: str,
        data: UpdateRoleDTO,
        actor: str,
        expected_version: Optional[int] = None,
    ) -> Role:
        """
        Apply a partial update to a role.

        Fields left unset (or None) keep their stored value. When
        expected_version is given the write only succeeds against that
        version; otherwise against the version read here.

        Raises:
            NotFoundError: role or a referenced policy is missing
            ForbiddenError: the role is a system role
            VersionConflictError: the role changed since it was read
        """
        existing = self.get_role_by_id(tenant_id, role_id)
        if existing.is_system:
            raise ForbiddenError("Cannot modify system role")

        if data.policies is not None:
            self._require_policies(tenant_id, data.policies)

        version = existing.version if expected_version is None else expected_version
        role = self.roles.update(tenant_id, role_id, data, actor, expected_version=version)
        logger.info("Updated role %s to version %d", role.key, role.version)

        self._emit(
            EventType.ROLE_UPDATED, tenant_id, "role", role.id, "updated",
            {"key": role.key, "updated_fields": _updated_fields(data)}, actor,
        )
        return role

    def delete_role(self, tenant_id: str, role_id: str, actor: str) -> None:
        existing = self.get_role_by_id(tenant_id, role_id)
        if existing.is_system:
            raise ForbiddenError("Cannot delete system role")

        blocking = [
            a.id for a in self.assignments.get_by_role_key(tenant_id, existing.key)
            if a.status == AssignmentStatus.ACTIVE
        ]
        if blocking:
            raise ConflictError(
                f"Role '{existing.key}' has active assignments: {', '.join(blocking)}"
            )

        self.roles.delete(tenant_id, role_id)
        logger.info("Deleted role %s (%s) in tenant %s", existing.key, role_id, tenant_id)

        self._emit(
            EventType.ROLE_DELETED, tenant_id, "role", role_id, "deleted",
            {"key": existing.key}, actor,
        )

    def list_roles(self, tenant_id: str, params: Optional[ListRolesParams] = None) -> Page:
        return self.roles.list_with_filters(tenant_id, params or ListRolesParams())

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def create_policy(self, tenant_id: str, data: CreatePolicyDTO, actor: str, *, is_system: bool = False) -> Policy:
        validate_permission_patterns(list(data.allow) + list(data.deny))

        policy = self.policies.create(tenant_id, data, actor, is_system=is_system)
        logger.info("Created policy %s (%s) in tenant %s", policy.key, policy.id, tenant_id)

        self._emit(
            EventType.POLICY_CREATED, tenant_id, "policy", policy.id, "created",
            {"key": policy.key}, actor,
        )
        return policy

    def get_policy_by_id(self, tenant_id: str, policy_id: str) -> Policy:
        policy = self.policies.get_by_id(tenant_id, policy_id)
        if policy is None:
            raise NotFoundError(f"Policy {policy_id} not found")
        return policy

    def get_policy_by_key(self, tenant_id: str, key: str) -> Policy:
        policy = self.policies.get_by_key(tenant_id, key)
        if policy is None:
            raise NotFoundError(f"Policy with key '{key}' not found")
        return policy

    def update_policy(
        self,
        tenant_id: str,
        policy_id: str,
        data: UpdatePolicyDTO,
        actor: str,
        expected_version: Optional[int] = None,
    ) -> Policy:
        existing = self.get_policy_by_id(tenant_id, policy_id)
        if existing.is_system:
            raise ForbiddenError("Cannot modify system policy")

        validate_permission_patterns(list(data.allow or []) + list(data.deny or []))

        version = existing.version if expected_version is None else expected_version
        policy = self.policies.update(tenant_id, policy_id, data, actor, expected_version=version)
        logger.info("Updated policy %s to version %d", policy.key, policy.version)

        self._emit(
            EventType.POLICY_UPDATED, tenant_id, "policy", policy.id, "updated",
            {"key": policy.key, "updated_fields": _updated_fields(data)}, actor,
        )
        return policy

    def _roles_referencing(self, tenant_id: str, policy_key: str) -> List[str]:
        keys = []
        cursor = None
        while True:
            page = self.roles.list(tenant_id, limit=resolve_limit(None), cursor=cursor)
            keys.extend(r.key for r in page.items if policy_key in r.policies)
            if not page.has_more:
                return keys
            cursor = page.next_cursor

    def delete_policy(self, tenant_id: str, policy_id: str, actor: str) -> None:
        existing = self.get_policy_by_id(tenant_id, policy_id)
        if existing.is_system:
            raise ForbiddenError("Cannot delete system policy")

        blocking = self._roles_referencing(tenant_id, existing.key)
        if blocking:
            raise ConflictError(
                f"Policy '{existing.key}' is referenced by roles: {', '.join(blocking)}"
            )

        self.policies.delete(tenant_id, policy_id)
        logger.info("Deleted policy %s (%s) in tenant %s", existing.key, policy_id, tenant_id)

        self._emit(
            EventType.POLICY_DELETED, tenant_id, "policy", policy_id, "deleted",
            {"key": existing.key}, actor,
        )

    def list_policies(self, tenant_id: str, params: Optional[ListPoliciesParams] = None) -> Page:
        return self.policies.list_with_filters(tenant_id, params or ListPoliciesParams())

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def assign_role(self, tenant_id: str, data: AssignRoleDTO, granted_by: str) -> RoleAssignment:
        """
        Grant a role to a user within a scope.

        Raises:
            ValidationError: malformed scope or expires_at not in the future
            NotFoundError: the role does not exist
            ConflictError: the user already holds the role in that scope
        """
        validate_scope(data.scope)
        if data.expires_at is not None and to_naive_utc(data.expires_at) <= utcnow():
            raise ValidationError(
                "expires_at must be in the future",
                details={"expires_at": [data.expires_at.isoformat()]},
            )

        self.get_role_by_key(tenant_id, data.role_key)

        assignment = self.assignments.create(tenant_id, data, granted_by)
        logger.info(
            "Assigned role %s to user %s in scope %s",
            assignment.role_key, assignment.user_id, assignment.scope,
        )

        self._emit(
            EventType.ROLE_ASSIGNED, tenant_id, "roleAssignment", assignment.id, "assigned",
            {
                "user_id": assignment.user_id,
                "role_key": assignment.role_key,
                "scope": assignment.scope,
                "expires_at": assignment.expires_at.isoformat() if assignment.expires_at else None,
            },
            granted_by,
        )
        return assignment

    def _transition(
        self,
        tenant_id: str,
        assignment: RoleAssignment,
        to_status: AssignmentStatus,
        actor: str,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RoleAssignment:
        ensure_transition(assignment.status, to_status)
        version = assignment.version if expected_version is None else expected_version
        return self.assignments.update(
            tenant_id,
            assignment.id,
            UpdateAssignmentDTO(status=to_status, reason=reason),
            actor,
            expected_version=version,
        )

    def revoke_assignment(
        self,
        tenant_id: str,
        assignment_id: str,
        revoked_by: str,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RoleAssignment:
        """Mark an assignment inactive. The record itself is kept."""
        current = self.assignments.get_by_id(tenant_id, assignment_id)
        if current is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")

        revoked = self._transition(
            tenant_id, current, AssignmentStatus.INACTIVE, revoked_by, expected_version, reason
        )
        logger.info("Revoked assignment %s (role %s, user %s)", revoked.id, revoked.role_key, revoked.user_id)

        self._emit(
            EventType.ROLE_REVOKED, tenant_id, "roleAssignment", revoked.id, "revoked",
            {"user_id": revoked.user_id, "role_key": revoked.role_key, "scope": revoked.scope},
            revoked_by,
        )
        return revoked

    def _revoke_all(self, tenant_id: str, assignments: Iterable[RoleAssignment], revoked_by: str) -> int:
        count = 0
        for assignment in assignments:
            if assignment.status != AssignmentStatus.ACTIVE:
                continue
            try:
                self.revoke_assignment(
                    tenant_id, assignment.id, revoked_by, expected_version=assignment.version
                )
            except VersionConflictError:
                logger.warning("Skipped assignment %s: modified concurrently", assignment.id)
                continue
            count += 1
        return count

    def revoke_user_assignments(self, tenant_id: str, user_id: str, revoked_by: str) -> int:
        """Revoke every active assignment of a user. Returns the number revoked."""
        count = self._revoke_all(tenant_id, self.assignments.get_by_user_id(tenant_id, user_id), revoked_by)
        logger.info("Revoked %d assignments of user %s", count, user_id)
        return count

    def revoke_role_assignments(self, tenant_id: str, role_key: str, revoked_by: str) -> int:
        """Revoke every active assignment of a role. Returns the number revoked."""
        count = self._revoke_all(tenant_id, self.assignments.get_by_role_key(tenant_id, role_key), revoked_by)
        logger.info("Revoked %d assignments of role %s", count, role_key)
        return count

    def get_user_assignments(self, tenant_id: str, user_id: str) -> List[RoleAssignment]:
        """Active, unexpired assignments of a user. Revoked and expired grants are left out."""
        return self._active_assignments(tenant_id, user_id, utcnow())

    def list_assignments(self, tenant_id: str, params: Optional[ListAssignmentsParams] = None) -> Page:
        return self.assignments.list(tenant_id, params or ListAssignmentsParams())

    def expire_old_assignments(self, tenant_id: str) -> int:
        """
        Move active assignments whose expires_at has passed to expired.

        Each assignment is updated on its own. One that was changed
        concurrently is skipped and left for the next run.

        Returns:
            Number of assignments expired by this run
        """
        now = utcnow()
        count = 0

        for assignment in self.assignments.list_expired_candidates(tenant_id, now):
            try:
                expired = self._transition(
                    tenant_id, assignment, AssignmentStatus.EXPIRED, "system",
                    expected_version=assignment.version,
                )
            except VersionConflictError:
                logger.warning("Skipped expiring assignment %s: modified concurrently", assignment.id)
                continue

            count += 1
            self._emit(
                EventType.ROLE_EXPIRED, tenant_id, "roleAssignment", expired.id, "expired",
                {"user_id": expired.user_id, "role_key": expired.role_key, "scope": expired.scope},
            )

        if count:
            logger.info("Expired %d assignments in tenant %s", count, tenant_id)
        return count

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _active_assignments(self, tenant_id: str, user_id: str, now: datetime) -> List[RoleAssignment]:
        return [
            a for a in self.assignments.get_active_by_user_id(tenant_id, user_id, now)
            if a.is_effective(now)
        ]

    def _load_roles(self, tenant_id: str, assignments: Sequence[RoleAssignment]) -> List[Role]:
        return self.roles.get_by_keys(tenant_id, unique_keys(a.role_key for a in assignments))

    def _load_policies(self, tenant_id: str, roles: Sequence[Role]) -> List[Policy]:
        return self.policies.get_by_keys(tenant_id, unique_keys(k for r in roles for k in r.policies))

    def _policies_in_scope(
        self,
        tenant_id: str,
        user_id: str,
        resource_scope: str,
        now: datetime,
    ) -> Tuple[Optional[List[Policy]], Optional[str]]:
        """Policies reachable in a scope, or the denial reason when there are none to check."""
        matching = filter_assignments_by_scope(
            self._active_assignments(tenant_id, user_id, now), resource_scope
        )
        if not matching:
            return None, REASON_NO_ASSIGNMENTS

        roles = self._load_roles(tenant_id, matching)
        if not roles:
            return None, REASON_NO_ROLES

        return self._load_policies(tenant_id, roles), None

    def evaluate_permission(
        self,
        tenant_id: str,
        data: EvaluatePermissionDTO,
        actor: Optional[str] = None,
    ) -> Decision:
        """Check one permission for a user in a resource scope. Denial is a result, not an error."""
        now = utcnow()
        policies, reason = self._policies_in_scope(tenant_id, data.user_id, data.resource_scope, now)
        if policies is None:
            decision = denied(reason, evaluated_at=now)
        else:
            decision = decide(policies, data.permission, evaluated_at=now)

        logger.debug(
            "Evaluated %s for user %s in %s: allowed=%s",
            data.permission, data.user_id, data.resource_scope, decision.allowed,
        )

        self._emit(
            EventType.PERMISSION_EVALUATED, tenant_id, "permission", data.user_id, "evaluated",
            {
                "user_id": data.user_id,
                "permission": data.permission,
                "resource_scope": data.resource_scope,
                "allowed": decision.allowed,
                "reason": decision.reason,
                "matched_policies": decision.matched_policies,
            },
            actor,
        )
        return decision

    def evaluate_batch(
        self,
        tenant_id: str,
        data: EvaluateBatchDTO,
        actor: Optional[str] = None,
    ) -> BatchEvaluationResult:
        """Check several permissions against one snapshot of the user's policies."""
        now = utcnow()
        policies, reason = self._policies_in_scope(tenant_id, data.user_id, data.resource_scope, now)

        results = {}
        allowed = 0
        # counted per requested permission, duplicates included
        for permission in data.permissions:
            if policies is None:
                decision = denied(reason, evaluated_at=now)
            else:
                decision = decide(policies, permission, evaluated_at=now)
            results[permission] = decision
            if decision.allowed:
                allowed += 1

        total = len(data.permissions)
        summary = BatchSummary(total=total, allowed=allowed, denied=total - allowed)

        logger.debug(
            "Evaluated %d permissions for user %s in %s: %d allowed",
            summary.total, data.user_id, data.resource_scope, summary.allowed,
        )

        self._emit(
            EventType.PERMISSION_EVALUATED, tenant_id, "permission", data.user_id, "batch_evaluated",
            {
                "user_id": data.user_id,
                "resource_scope": data.resource_scope,
                "permissions": list(data.permissions),
                "summary": summary.model_dump(),
            },
            actor,
        )
        return BatchEvaluationResult(results=results, summary=summary)

    def get_effective_permissions(
        self,
        tenant_id: str,
        user_id: str,
        scope: Optional[str] = None,
    ) -> List[EffectivePermission]:
        """Aggregated allow/deny per literal pattern across the user's active roles."""
        assignments = self._active_assignments(tenant_id, user_id, utcnow())
        if scope is not None:
            assignments = [a for a in assignments if scope_matches(a.scope, scope)]
        if not assignments:
            return []

        roles = self._load_roles(tenant_id, assignments)
        return build_effective_permissions(self._load_policies(tenant_id, roles))

    def get_user_access_summary(self, tenant_id: str, user_id: str) -> UserAccessSummary:
        assignments = self._active_assignments(tenant_id, user_id, utcnow())
        effective = self.get_effective_permissions(tenant_id, user_id)
        return UserAccessSummary(
            user_id=user_id,
            assignments=assignments,
            effective_permissions=[e.permission for e in effective if e.allowed],
            denied_patterns=[e.permission for e in effective if not e.allowed],
            count=len(assignments),
        )


def create_authorization_service(db: Session, publisher: Optional[EventPublisher] = None) -> AuthorizationService:
    """Build a service over the SQLAlchemy stores bound to ``db``."""
    from scopeguard.stores.sql import SqlAssignmentStore, SqlPolicyStore, SqlRoleStore

    return AuthorizationService(
        SqlRoleStore(db),
        SqlPolicyStore(db),
        SqlAssignmentStore(db),
        events=publisher,
    )
