from sqlalchemy import Column, String, Boolean, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from uuid import uuid4

from agence_api.database.database import Base
from agence_api.common.mixins import TimestampMixin
from agence_api.modules.permissions.models import AgencyContext


class Agency(Base, TimestampMixin):
    __tablename__ = "agencies"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    address = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Listes d'identifiants de modules ; toujours réassignées, jamais mutées en place
    active_modules = Column(JSON, nullable=False, default=list)
    requested_modules = Column(JSON, nullable=False, default=list)

    users = relationship("User", back_populates="agency")

    def to_context(self) -> AgencyContext:
        return AgencyContext(
            agency_id=self.id,
            active_modules=frozenset(self.active_modules or []),
            requested_modules=frozenset(self.requested_modules or []),
        )

    def __repr__(self):
        return f"<Agency(name='{self.name}', modules={len(self.active_modules or [])})>"
