from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from agence_api.core.config import settings
from agence_api.database.database import get_db
from agence_api.modules.auth.schemas import AuthContext
from agence_api.modules.cash.models import OperationCategory, OperationDirection, PaymentMethod
from agence_api.modules.cash.schemas import (
    BalanceOut, CashReportOut, OperationCreate, OperationList, OperationOut, ReversalOut,
)
from agence_api.modules.cash.service import CashLedgerService
from agence_api.modules.invoices.payments import InvoicePaymentService
from agence_api.modules.permissions.dependencies import require_permission
from agence_api.modules.registry.models import Action
from agence_api.modules.suppliers.service import SupplierService

cash_router = APIRouter(prefix="/caisse", tags=["Caisse"])


def _record(direction: OperationDirection, payload: OperationCreate, auth_context: AuthContext, db: Session):
    return CashLedgerService(db).record_operation(
        direction,
        payload.amount,
        payload.description,
        auth_context.agency_id,
        payload.category,
        payload.method,
        client_id=payload.client_id,
        agent_id=payload.agent_id,
        reference=payload.reference,
        created_by=auth_context.user_id,
        notes=payload.notes,
        occurred_at=payload.occurred_at,
    )


@cash_router.get("/operations", response_model=OperationList)
def list_operations(
    direction: Optional[OperationDirection] = None,
    category: Optional[OperationCategory] = None,
    method: Optional[PaymentMethod] = None,
    invoice_id: Optional[UUID] = None,
    date_from: Optional[datetime] = Query(None, description="Début de période (ISO 8601)"),
    date_to: Optional[datetime] = Query(None, description="Fin de période (ISO 8601)"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(require_permission("caisse", Action.READ)),
    db: Session = Depends(get_db),
):
    operations, total = CashLedgerService(db).list_operations(
        auth_context.agency_id,
        direction=direction,
        category=category,
        method=method,
        invoice_id=invoice_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return OperationList(items=operations, total=total, limit=limit, offset=offset)


@cash_router.get("/operations/{operation_id}", response_model=OperationOut)
def get_operation(
    operation_id: UUID,
    auth_context: AuthContext = Depends(require_permission("caisse", Action.READ)),
    db: Session = Depends(get_db),
):
    return CashLedgerService(db).get_operation(operation_id, auth_context.agency_id)


@cash_router.post("/entree", response_model=OperationOut, status_code=status.HTTP_201_CREATED)
def record_inflow(
    payload: OperationCreate,
    auth_context: AuthContext = Depends(require_permission("caisse", Action.CREATE)),
    db: Session = Depends(get_db),
):
    """Entrée de caisse manuelle (vente libre, recharge client...)."""
    return _record(OperationDirection.ENTREE, payload, auth_context, db)


@cash_router.post("/sortie", response_model=OperationOut, status_code=status.HTTP_201_CREATED)
def record_outflow(
    payload: OperationCreate,
    auth_context: AuthContext = Depends(require_permission("caisse", Action.CREATE)),
    db: Session = Depends(get_db),
):
    """Sortie de caisse manuelle (salaire, dépense diverse...)."""
    return _record(OperationDirection.SORTIE, payload, auth_context, db)


@cash_router.put("/operations/{operation_id}/annuler", response_model=ReversalOut)
def cancel_operation(
    operation_id: UUID,
    auth_context: AuthContext = Depends(require_permission("caisse", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    """
    Annule une opération par écriture compensatoire. Les opérations liées
    à une facture ou à un fournisseur ajustent aussi la facture / les soldes.
    """
    ledger = CashLedgerService(db)
    operation = ledger.get_operation(operation_id, auth_context.agency_id)

    if ledger.is_invoice_linked(operation):
        outcome = InvoicePaymentService(db, ledger).cancel_operation(
            operation_id, auth_context.agency_id, auth_context.user_id
        )
        return ReversalOut(original=outcome.original, reversal=outcome.reversal)
    if operation.supplier_id is not None:
        movement = SupplierService(db, ledger).cancel_operation(
            operation_id, auth_context.agency_id, auth_context.user_id
        )
        return ReversalOut(original=operation, reversal=movement.operation)

    result = ledger.cancel_operation(operation_id, auth_context.agency_id, auth_context.user_id)
    return ReversalOut(original=result.original, reversal=result.reversal)


@cash_router.get("/solde", response_model=BalanceOut)
def get_balance(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    auth_context: AuthContext = Depends(require_permission("caisse", Action.READ)),
    db: Session = Depends(get_db),
):
    balance = CashLedgerService(db).compute_balance(auth_context.agency_id, date_from, date_to)
    return BalanceOut(currency=settings.CURRENCY, **balance)


@cash_router.get("/rapport", response_model=CashReportOut)
def get_report(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    auth_context: AuthContext = Depends(require_permission("caisse", Action.READ)),
    db: Session = Depends(get_db),
):
    report = CashLedgerService(db).generate_report(auth_context.agency_id, date_from, date_to)
    return CashReportOut(currency=settings.CURRENCY, **report)
