"""Error taxonomy for scopeguard.

Every error raised by the stores and the authorization service derives from
AuthzError, which carries a stable code and an HTTP-style status so callers
can map it onto their transport.
"""

from typing import Dict, List, Optional


class AuthzError(Exception):
    """Base class for all scopeguard errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AuthzError):
    """A role, policy or assignment (or a referenced key) does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class ConflictError(AuthzError):
    """The write collides with existing state."""

    code = "CONFLICT"
    status_code = 409

    def __init__(self, message: str = "Conflict"):
        super().__init__(message)


class ForbiddenError(AuthzError):
    """The target is a system entity and cannot be mutated."""

    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class ValidationError(AuthzError):
    """Malformed permission pattern, scope, cursor or timestamp."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        details: Optional[Dict[str, List[str]]] = None,
    ):
        super().__init__(message)
        self.details = details or {}


class VersionConflictError(ConflictError):
    """Raised when a conditional update finds a different stored version."""

    def __init__(self, entity_type: str, entity_id: str, expected_version: int):
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently "
            f"(expected version {expected_version}); re-read and retry"
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version


class InvalidTransitionError(ConflictError):
    """Raised when an assignment status change is not allowed."""

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Cannot transition assignment from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status
