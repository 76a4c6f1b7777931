from sqlalchemy import Column, String, Boolean, ForeignKey, DateTime, Enum, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from uuid import uuid4

from agence_api.database.database import Base
from agence_api.common.mixins import TimestampMixin
from agence_api.modules.registry.models import Role


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, unique=True, nullable=False)
    password = Column(String, nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    role = Column(Enum(Role), nullable=False)
    # null pour le superadmin
    agency_id = Column(UUID(as_uuid=True), ForeignKey("agencies.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=True)
    last_login = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    agency = relationship("Agency", back_populates="users")
    permissions = relationship("AgentPermission", back_populates="user", cascade="all, delete-orphan")

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"


class AgentPermission(Base, TimestampMixin):
    """Enregistrement (module, actions) d'un agent."""
    __tablename__ = "agent_permissions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    module = Column(String(50), nullable=False)
    actions = Column(JSON, nullable=False, default=list)

    # Relationships
    user = relationship("User", back_populates="permissions")

    __table_args__ = (
        UniqueConstraint("user_id", "module", name="uq_agent_permission_module"),
    )
