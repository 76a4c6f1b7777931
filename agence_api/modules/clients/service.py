from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agence_api.common.exceptions import NotFoundError, ValidationError
from agence_api.modules.clients.models import Client, ClientStatus
from agence_api.modules.clients.schemas import ClientCreate, ClientUpdate
from agence_api.modules.invoices.models import Invoice, InvoiceStatus

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Factures dont le reste à payer compte dans le solde client
OPEN_INVOICE_STATUSES = (InvoiceStatus.SENT, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.OVERDUE)


class ClientService:
    """Clients de l'agence (jamais supprimés, seulement désactivés)."""

    def __init__(self, db: Session):
        self.db = db

    def create_client(self, client_data: ClientCreate, agency_id: UUID) -> Client:
        client = Client(agency_id=agency_id, **client_data.model_dump())
        self.db.add(client)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ValidationError("Un client avec cet email existe déjà", email=client_data.email)
        self.db.refresh(client)
        logger.info(f"Client {client.id} created in agency {agency_id}")
        return client

    def get_client(self, client_id: UUID, agency_id: UUID) -> Client:
        client = self.db.query(Client).filter(
            Client.id == client_id,
            Client.agency_id == agency_id,
        ).first()
        if client is None:
            raise NotFoundError("Client", client_id)
        return client

    def list_clients(self, agency_id: UUID, search: Optional[str] = None,
                     status: Optional[ClientStatus] = None,
                     limit: int = 100, offset: int = 0) -> Tuple[List[Client], int]:
        query = self.db.query(Client).filter(Client.agency_id == agency_id)
        if status is not None:
            query = query.filter(Client.status == status)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Client.last_name.ilike(pattern),
                Client.first_name.ilike(pattern),
                Client.company_name.ilike(pattern),
                Client.email.ilike(pattern),
                Client.phone.ilike(pattern),
            ))
        total = query.count()
        clients = query.order_by(Client.last_name, Client.first_name).offset(offset).limit(limit).all()
        return clients, total

    def update_client(self, client_id: UUID, client_data: ClientUpdate, agency_id: UUID) -> Client:
        client = self.get_client(client_id, agency_id)
        for field, value in client_data.model_dump(exclude_unset=True).items():
            setattr(client, field, value)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ValidationError("Un client avec cet email existe déjà", email=client_data.email)
        self.db.refresh(client)
        return client

    def deactivate_client(self, client_id: UUID, agency_id: UUID) -> Client:
        client = self.get_client(client_id, agency_id)
        client.status = ClientStatus.INACTIF
        self.db.commit()
        self.db.refresh(client)
        logger.info(f"Client {client_id} deactivated")
        return client

    # ===== SOLDE CLIENT =====

    def outstanding_balances(self, agency_id: UUID, client_ids: Iterable[UUID]) -> Dict[UUID, Decimal]:
        """Reste à payer par client, sur les factures envoyées, partiellement payées ou en retard."""
        client_ids = list(client_ids)
        if not client_ids:
            return {}
        rows = self.db.query(
            Invoice.client_id,
            func.coalesce(func.sum(Invoice.amount_incl_tax - Invoice.amount_paid), 0),
        ).filter(
            Invoice.agency_id == agency_id,
            Invoice.client_id.in_(client_ids),
            Invoice.status.in_(OPEN_INVOICE_STATUSES),
        ).group_by(Invoice.client_id).all()
        return {client_id: Decimal(str(total)).quantize(CENT) for client_id, total in rows}

    def outstanding_balance(self, client_id: UUID, agency_id: UUID) -> Decimal:
        return self.outstanding_balances(agency_id, [client_id]).get(client_id, ZERO)
