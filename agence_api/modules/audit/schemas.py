from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class AuditLogOut(BaseModel):
    id: UUID
    agency_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    module: str
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[UUID] = None
    details: Dict[str, Any] = {}
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuditLogList(BaseModel):
    items: List[AuditLogOut]
    total: int
    limit: int
    offset: int
