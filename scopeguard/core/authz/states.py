"""Role assignment lifecycle states and transitions.

State diagram:

    ┌──────────┐  revoke   ┌──────────┐
    │  ACTIVE  │──────────►│ INACTIVE │
    └────┬─────┘           └──────────┘
         │ sweep
    ┌────▼─────┐
    │ EXPIRED  │
    └──────────┘

There is no way back to ACTIVE: re-granting a role creates a new
assignment so that history is preserved.
"""

from enum import Enum
from typing import Dict, FrozenSet

from scopeguard.core.errors import InvalidTransitionError


class AssignmentStatus(str, Enum):
    """Status of a role assignment."""

    ACTIVE = "active"       # Grant is in effect (unless expires_at has passed)
    INACTIVE = "inactive"   # Explicitly revoked
    EXPIRED = "expired"     # Moved here by the expiry sweep


ASSIGNMENT_TRANSITIONS: Dict[AssignmentStatus, FrozenSet[AssignmentStatus]] = {
    AssignmentStatus.ACTIVE: frozenset([AssignmentStatus.INACTIVE, AssignmentStatus.EXPIRED]),
    AssignmentStatus.INACTIVE: frozenset(),
    AssignmentStatus.EXPIRED: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[AssignmentStatus] = frozenset(
    status for status, targets in ASSIGNMENT_TRANSITIONS.items() if not targets
)


def can_transition(from_status: AssignmentStatus, to_status: AssignmentStatus) -> bool:
    """Check if an assignment may move from one status to another."""
    return AssignmentStatus(to_status) in ASSIGNMENT_TRANSITIONS.get(AssignmentStatus(from_status), frozenset())


def ensure_transition(from_status: AssignmentStatus, to_status: AssignmentStatus) -> None:
    """Raise InvalidTransitionError unless the transition is allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(AssignmentStatus(from_status).value, AssignmentStatus(to_status).value)
