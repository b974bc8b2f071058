"""Domain entities returned by the stores and the authorization service."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from scopeguard.core.authz.states import AssignmentStatus


class RiskLevel(str, Enum):
    """How much damage a role or policy can do if misused."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PolicyConditions(BaseModel):
    """Contextual conditions attached to a policy.

    Carried alongside effective permissions for the caller to enforce;
    the evaluator does not interpret them.
    """
    requires_mfa: Optional[bool] = None
    only_business_hours: Optional[bool] = None
    allowed_device_types: Optional[List[str]] = None
    ip_allowlist: Optional[List[str]] = None
    max_session_duration: Optional[int] = None  # seconds

    class Config:
        from_attributes = True


class Role(BaseModel):
    id: str
    tenant_id: str
    key: str
    display_name: str
    description: str = ""
    policies: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    is_system: bool = False
    version: int = 1
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True


class Policy(BaseModel):
    id: str
    tenant_id: str
    key: str
    display_name: str
    description: str = ""
    allow: List[str] = Field(default_factory=list)
    deny: List[str] = Field(default_factory=list)
    conditions: Optional[PolicyConditions] = None
    risk_level: RiskLevel = RiskLevel.LOW
    is_system: bool = False
    version: int = 1
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True


class RoleAssignment(BaseModel):
    id: str
    tenant_id: str
    user_id: str
    role_key: str
    scope: str
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    expires_at: Optional[datetime] = None
    granted_by: str
    granted_at: datetime
    reason: Optional[str] = None
    version: int = 1
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True

    def is_expired(self, now: datetime) -> bool:
        """True when expires_at is set and not in the future."""
        return self.expires_at is not None and self.expires_at <= now

    def is_effective(self, now: datetime) -> bool:
        """Active and not past its expiry."""
        return self.status == AssignmentStatus.ACTIVE and not self.is_expired(now)
