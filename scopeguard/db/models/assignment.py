"""Role assignment database model.

Assignments are never deleted; revocation and expiry only change status,
so the table doubles as the grant history.
"""

from sqlalchemy import Column, String, DateTime, Integer, Index, text

from scopeguard.core.timeutil import utcnow
from scopeguard.db.base import Base, new_id


class RoleAssignmentRecord(Base):
    """Grant of a role to a user within a resource scope."""
    __tablename__ = "role_assignments"
    __table_args__ = (
        # At most one active grant per (user, role, scope)
        Index(
            "uq_role_assignments_active",
            "tenant_id", "user_id", "role_key", "scope",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_role_assignments_user", "tenant_id", "user_id"),
        Index("ix_role_assignments_role", "tenant_id", "role_key"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(100), nullable=False, index=True)
    user_id = Column(String(100), nullable=False)
    role_key = Column(String(100), nullable=False)
    scope = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default="active", index=True)
    expires_at = Column(DateTime, nullable=True)
    granted_by = Column(String(100), nullable=False)
    granted_at = Column(DateTime, nullable=False, default=utcnow)
    reason = Column(String(500), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    created_by = Column(String(100), nullable=True)
    updated_by = Column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<RoleAssignment {self.user_id} {self.role_key}@{self.scope} [{self.status}]>"
