"""Database models for scopeguard."""

from scopeguard.db.models.role import RoleRecord
from scopeguard.db.models.policy import PolicyRecord
from scopeguard.db.models.assignment import RoleAssignmentRecord

__all__ = [
    "RoleRecord",
    "PolicyRecord",
    "RoleAssignmentRecord",
]
