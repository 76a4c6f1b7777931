from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from agence_api.core.config import settings
from agence_api.database.database import get_db
from agence_api.modules.audit.schemas import AuditLogList
from agence_api.modules.audit.service import AuditService
from agence_api.modules.auth.schemas import AuthContext
from agence_api.modules.permissions.dependencies import require_permission
from agence_api.modules.registry.models import Action

audit_router = APIRouter(prefix="/audit", tags=["Audit"])


@audit_router.get("", response_model=AuditLogList)
def list_audit_entries(
    agency_id: Optional[UUID] = None,
    module: Optional[str] = Query(None, max_length=50),
    action: Optional[str] = Query(None, max_length=50),
    entity_id: Optional[UUID] = None,
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(require_permission("audit", Action.READ)),
    db: Session = Depends(get_db),
):
    entries, total = AuditService(db).list_entries(
        agency_id=agency_id, module=module, action=action, entity_id=entity_id, limit=limit, offset=offset
    )
    return AuditLogList(items=entries, total=total, limit=limit, offset=offset)
