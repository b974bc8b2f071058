"""Pydantic schemas: domain entities, request payloads and results."""

from scopeguard.schemas.common import Page, PageParams
from scopeguard.schemas.entities import (
    Policy,
    PolicyConditions,
    RiskLevel,
    Role,
    RoleAssignment,
)
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

__all__ = [
    "Page",
    "PageParams",
    "Policy",
    "PolicyConditions",
    "RiskLevel",
    "Role",
    "RoleAssignment",
    "AssignRoleDTO",
    "CreatePolicyDTO",
    "CreateRoleDTO",
    "EvaluateBatchDTO",
    "EvaluatePermissionDTO",
    "ListAssignmentsParams",
    "ListPoliciesParams",
    "ListRolesParams",
    "UpdateAssignmentDTO",
    "UpdatePolicyDTO",
    "UpdateRoleDTO",
    "BatchEvaluationResult",
    "BatchSummary",
    "Decision",
    "EffectivePermission",
    "UserAccessSummary",
]
