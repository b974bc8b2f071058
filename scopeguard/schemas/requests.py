"""Request payloads accepted by the authorization service.

These check shape only (lengths, key syntax, concrete permission syntax).
Semantic checks such as permission-pattern grammar for policies, scope
syntax and referenced keys happen in the service.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from scopeguard.core.authz.permissions import CONCRETE_PERMISSION_REGEX, is_concrete_permission
from scopeguard.core.authz.states import AssignmentStatus
from scopeguard.schemas.common import PageParams
from scopeguard.schemas.entities import PolicyConditions, RiskLevel

KEY_PATTERN = r"^[a-z][a-z0-9_]*$"


def _reject_duplicates(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is None:
        return values
    seen = set()
    duplicates = []
    for value in values:
        if value in seen and value not in duplicates:
            duplicates.append(value)
        seen.add(value)
    if duplicates:
        raise ValueError(f"duplicate entries: {', '.join(duplicates)}")
    return values


class CreateRoleDTO(BaseModel):
    key: str = Field(..., pattern=KEY_PATTERN)
    display_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    policies: List[str] = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW

    unique_policies = field_validator("policies")(_reject_duplicates)


class UpdateRoleDTO(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    policies: Optional[List[str]] = Field(None, min_length=1)
    tags: Optional[List[str]] = None
    risk_level: Optional[RiskLevel] = None

    unique_policies = field_validator("policies")(_reject_duplicates)


class CreatePolicyDTO(BaseModel):
    key: str = Field(..., pattern=KEY_PATTERN)
    display_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    allow: List[str] = Field(default_factory=list)
    deny: List[str] = Field(default_factory=list)
    conditions: Optional[PolicyConditions] = None
    risk_level: RiskLevel = RiskLevel.LOW


class UpdatePolicyDTO(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    allow: Optional[List[str]] = None
    deny: Optional[List[str]] = None
    conditions: Optional[PolicyConditions] = None
    risk_level: Optional[RiskLevel] = None


class AssignRoleDTO(BaseModel):
    user_id: str = Field(..., min_length=1)
    role_key: str = Field(..., min_length=1)
    scope: str = Field(..., min_length=1)
    expires_at: Optional[datetime] = None
    reason: Optional[str] = Field(None, max_length=500)


class UpdateAssignmentDTO(BaseModel):
    """Internal patch applied to an assignment by revoke and the sweep."""
    status: Optional[AssignmentStatus] = None
    expires_at: Optional[datetime] = None
    reason: Optional[str] = Field(None, max_length=500)


class EvaluatePermissionDTO(BaseModel):
    user_id: str = Field(..., min_length=1)
    permission: str = Field(..., pattern=CONCRETE_PERMISSION_REGEX)
    resource_scope: str = Field(..., min_length=1)


class EvaluateBatchDTO(BaseModel):
    user_id: str = Field(..., min_length=1)
    resource_scope: str = Field(..., min_length=1)
    permissions: List[str] = Field(..., min_length=1, max_length=100)

    @field_validator("permissions")
    @classmethod
    def concrete_permissions(cls, values: List[str]) -> List[str]:
        bad = [p for p in values if not is_concrete_permission(p)]
        if bad:
            raise ValueError(f"invalid permissions: {', '.join(bad)}")
        return values


class ListRolesParams(PageParams):
    risk_level: Optional[RiskLevel] = None
    is_system: Optional[bool] = None


class ListPoliciesParams(PageParams):
    risk_level: Optional[RiskLevel] = None
    is_system: Optional[bool] = None


class ListAssignmentsParams(PageParams):
    status: Optional[AssignmentStatus] = None
    user_id: Optional[str] = None
    role_key: Optional[str] = None
