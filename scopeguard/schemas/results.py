"""Result types produced by permission evaluation."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from scopeguard.schemas.entities import PolicyConditions, RoleAssignment


class Decision(BaseModel):
    """Outcome of a single permission check.

    A denial is a normal result, not an error; ``reason`` explains it.
    """
    allowed: bool
    reason: str
    matched_policies: List[str] = Field(default_factory=list)
    evaluated_at: Optional[datetime] = None


class BatchSummary(BaseModel):
    total: int
    allowed: int
    denied: int


class BatchEvaluationResult(BaseModel):
    results: Dict[str, Decision]
    summary: BatchSummary


class EffectivePermission(BaseModel):
    """Aggregated outcome for one literal permission pattern."""
    permission: str
    allowed: bool
    source: str  # key of the policy that produced this entry
    conditions: Optional[PolicyConditions] = None


class UserAccessSummary(BaseModel):
    """A user's active assignments with their allowed and denied patterns."""
    user_id: str
    assignments: List[RoleAssignment]
    effective_permissions: List[str]
    denied_patterns: List[str]
    count: int
