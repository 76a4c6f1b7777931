from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from agence_api.core.config import settings
from agence_api.database.database import get_db
from agence_api.modules.agencies.schemas import (
    AgencyCreate, AgencyOut, ModuleApprovalRequest, ModuleIdsRequest,
)
from agence_api.modules.agencies.service import AgencyService
from agence_api.modules.auth.dependencies import require_agency, require_role
from agence_api.modules.auth.schemas import AuthContext
from agence_api.modules.permissions.dependencies import require_permission
from agence_api.modules.registry.models import Action, Role

agencies_router = APIRouter(prefix="/agences", tags=["Agences"])


@agencies_router.get("/me", response_model=AgencyOut)
def get_my_agency(auth_context: AuthContext = Depends(require_agency), db: Session = Depends(get_db)):
    return AgencyService(db).get_agency(auth_context.agency_id)


@agencies_router.post("/me/modules/demandes", response_model=AgencyOut)
def request_modules(
    payload: ModuleIdsRequest,
    auth_context: AuthContext = Depends(require_role(Role.AGENCE)),
    db: Session = Depends(get_db),
):
    """Demande d'activation de modules par l'administrateur de l'agence."""
    return AgencyService(db).request_modules(auth_context.agency_id, payload.modules)


@agencies_router.get("", response_model=List[AgencyOut])
def list_agencies(
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    _: AuthContext = Depends(require_permission("agences", Action.READ)),
    db: Session = Depends(get_db),
):
    return AgencyService(db).list_agencies(limit=limit, offset=offset)


@agencies_router.post("", response_model=AgencyOut, status_code=status.HTTP_201_CREATED)
def create_agency(
    payload: AgencyCreate,
    _: AuthContext = Depends(require_permission("agences", Action.CREATE)),
    db: Session = Depends(get_db),
):
    return AgencyService(db).create_agency(payload)


@agencies_router.get("/{agency_id}", response_model=AgencyOut)
def get_agency(
    agency_id: UUID,
    _: AuthContext = Depends(require_permission("agences", Action.READ)),
    db: Session = Depends(get_db),
):
    return AgencyService(db).get_agency(agency_id)


@agencies_router.post("/{agency_id}/modules/approuver", response_model=AgencyOut)
def approve_modules(
    agency_id: UUID,
    payload: ModuleApprovalRequest,
    _: AuthContext = Depends(require_permission("agences", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    return AgencyService(db).approve_modules(agency_id, payload.modules)


@agencies_router.post("/{agency_id}/modules/rejeter", response_model=AgencyOut)
def reject_modules(
    agency_id: UUID,
    payload: ModuleApprovalRequest,
    _: AuthContext = Depends(require_permission("agences", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    return AgencyService(db).reject_modules(agency_id, payload.modules)


@agencies_router.delete("/{agency_id}/modules/{module_id}", response_model=AgencyOut)
def deactivate_module(
    agency_id: UUID,
    module_id: str,
    _: AuthContext = Depends(require_permission("agences", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    return AgencyService(db).deactivate_module(agency_id, module_id)
