from sqlalchemy import Column, String, JSON
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4

from agence_api.database.database import Base
from agence_api.common.mixins import TimestampMixin


class AuditLog(Base, TimestampMixin):
    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    # null pour les actions hors agence
    agency_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    user_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    module = Column(String(50), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    details = Column(JSON, nullable=False, default=dict)

    def __repr__(self):
        return f"<AuditLog({self.module}.{self.action} {self.entity_id})>"
