from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from agence_api.core.config import settings
from agence_api.database.database import get_db
from agence_api.modules.auth.schemas import AuthContext
from agence_api.modules.clients.models import Client, ClientStatus
from agence_api.modules.clients.schemas import ClientCreate, ClientList, ClientOut, ClientUpdate
from agence_api.modules.clients.service import ClientService
from agence_api.modules.permissions.dependencies import require_permission
from agence_api.modules.registry.models import Action

clients_router = APIRouter(prefix="/clients", tags=["Clients"])


def _client_out(client: Client, balance: Decimal) -> ClientOut:
    return ClientOut.model_validate(client).model_copy(update={"outstanding_balance": balance})


def _with_balance(service: ClientService, client: Client, agency_id: UUID) -> ClientOut:
    return _client_out(client, service.outstanding_balance(client.id, agency_id))


@clients_router.post("", response_model=ClientOut, status_code=status.HTTP_201_CREATED)
def create_client(
    client_data: ClientCreate,
    auth_context: AuthContext = Depends(require_permission("clients", Action.CREATE)),
    db: Session = Depends(get_db),
):
    return ClientService(db).create_client(client_data, auth_context.agency_id)


@clients_router.get("", response_model=ClientList)
def list_clients(
    search: Optional[str] = Query(None, max_length=100),
    client_status: Optional[ClientStatus] = Query(None, alias="status"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(require_permission("clients", Action.READ)),
    db: Session = Depends(get_db),
):
    service = ClientService(db)
    clients, total = service.list_clients(
        auth_context.agency_id, search=search, status=client_status, limit=limit, offset=offset
    )
    balances = service.outstanding_balances(auth_context.agency_id, [c.id for c in clients])
    items = [_client_out(c, balances.get(c.id, Decimal("0.00"))) for c in clients]
    return ClientList(items=items, total=total, limit=limit, offset=offset)


@clients_router.get("/{client_id}", response_model=ClientOut)
def get_client(
    client_id: UUID,
    auth_context: AuthContext = Depends(require_permission("clients", Action.READ)),
    db: Session = Depends(get_db),
):
    service = ClientService(db)
    client = service.get_client(client_id, auth_context.agency_id)
    return _with_balance(service, client, auth_context.agency_id)


@clients_router.patch("/{client_id}", response_model=ClientOut)
def update_client(
    client_id: UUID,
    client_data: ClientUpdate,
    auth_context: AuthContext = Depends(require_permission("clients", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    service = ClientService(db)
    client = service.update_client(client_id, client_data, auth_context.agency_id)
    return _with_balance(service, client, auth_context.agency_id)


@clients_router.delete("/{client_id}", response_model=ClientOut)
def deactivate_client(
    client_id: UUID,
    auth_context: AuthContext = Depends(require_permission("clients", Action.DELETE)),
    db: Session = Depends(get_db),
):
    """Désactivation : les clients référencés par des factures ne sont jamais supprimés."""
    service = ClientService(db)
    client = service.deactivate_client(client_id, auth_context.agency_id)
    return _with_balance(service, client, auth_context.agency_id)
