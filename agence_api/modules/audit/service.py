from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from agence_api.modules.audit.models import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Ajout et lecture du journal d'audit ; l'appelant valide la transaction."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        module: str,
        action: str,
        agency_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        entry = AuditLog(
            agency_id=agency_id,
            user_id=user_id,
            module=module,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details or {},
        )
        self.db.add(entry)
        logger.debug(f"Audit {module}.{action} on {entity_type} {entity_id} by {user_id}")
        return entry

    def list_entries(
        self,
        agency_id: Optional[UUID] = None,
        module: Optional[str] = None,
        action: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[AuditLog], int]:
        query = self.db.query(AuditLog)
        if agency_id is not None:
            query = query.filter(AuditLog.agency_id == agency_id)
        if module is not None:
            query = query.filter(AuditLog.module == module)
        if action is not None:
            query = query.filter(AuditLog.action == action)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == entity_id)

        total = query.count()
        entries = query.order_by(AuditLog.created_at.desc()).offset(offset).limit(limit).all()
        return entries, total
