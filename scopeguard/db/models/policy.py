from sqlalchemy import Column, String, DateTime, JSON, Boolean, Integer, Text, UniqueConstraint

from scopeguard.core.timeutil import utcnow
from scopeguard.db.base import Base, new_id


class PolicyRecord(Base):
    __tablename__ = "policies"
    __table_args__ = (
        UniqueConstraint("tenant_id", "key", name="uq_policies_tenant_key"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(100), nullable=False, index=True)
    key = Column(String(100), nullable=False)
    display_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    allow = Column(JSON, nullable=False, default=list)
    deny = Column(JSON, nullable=False, default=list)
    conditions = Column(JSON, nullable=True)
    risk_level = Column(String(20), nullable=False, default="low")
    is_system = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    created_by = Column(String(100), nullable=True)
    updated_by = Column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<Policy {self.key} v{self.version}>"
