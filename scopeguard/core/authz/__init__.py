"""Permission evaluation primitives.

Pure functions only: pattern grammar and matching, scope matching and the
assignment status machine. The decision algorithm lives in
``scopeguard.core.authz.evaluator``.
"""

from .permissions import (
    Permission,
    permission_matches,
    pattern_matches,
    validate_permission_patterns,
)
from .scopes import scope_matches, validate_scope, GLOBAL_SCOPE
from .states import AssignmentStatus, can_transition, ensure_transition

__all__ = [
    "Permission",
    "permission_matches",
    "pattern_matches",
    "validate_permission_patterns",
    "scope_matches",
    "validate_scope",
    "GLOBAL_SCOPE",
    "AssignmentStatus",
    "can_transition",
    "ensure_transition",
]
