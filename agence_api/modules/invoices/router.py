from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from datetime import date

from agence_api.common.exceptions import NotFoundError
from agence_api.core.config import settings
from agence_api.database.database import get_db
from agence_api.modules.auth.schemas import AuthContext
from agence_api.modules.cash.service import CashLedgerService
from agence_api.modules.invoices.models import InvoiceStatus
from agence_api.modules.invoices.payments import InvoicePaymentService
from agence_api.modules.invoices.schemas import (
    AmountRequest, FullPaymentRequest, InvoiceCancelRequest, InvoiceCreate, InvoiceDetail,
    InvoiceLinesUpdate, InvoiceList, InvoiceOut, OperationCancelResult, PaymentResult,
)
from agence_api.modules.invoices.service import InvoiceService
from agence_api.modules.permissions.dependencies import require_permission
from agence_api.modules.registry.models import Action

# Router principal du module factures
router = APIRouter(prefix="/factures", tags=["Factures"])


@router.post("", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
def create_invoice(
    invoice_data: InvoiceCreate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(require_permission("factures", Action.CREATE)),
):
    """
    Créer une facture client.

    Le numéro (FAC-000001) est attribué par agence ; la facture est créée
    en brouillon, ou envoyée directement si ``send`` est vrai.
    """
    return InvoiceService(db).create_invoice(invoice_data, auth_context.agency_id, auth_context.user_id)


@router.get("", response_model=InvoiceList)
def list_invoices(
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    start_date: Optional[date] = Query(None, description="Date de début (YYYY-MM-DD)"),
    end_date: Optional[date] = Query(None, description="Date de fin (YYYY-MM-DD)"),
    client_id: Optional[UUID] = Query(None, description="Filtrer par client"),
    invoice_status: Optional[InvoiceStatus] = Query(None, alias="status", description="Statut"),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(require_permission("factures", Action.READ)),
):
    invoices, total = InvoiceService(db).list_invoices(
        auth_context.agency_id,
        status=invoice_status,
        client_id=client_id,
        date_from=start_date,
        date_to=end_date,
        limit=limit,
        offset=offset,
    )
    return InvoiceList(items=invoices, total=total, limit=limit, offset=offset)


@router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(require_permission("factures", Action.READ)),
):
    return InvoiceService(db).get_invoice(invoice_id, auth_context.agency_id)


@router.put("/{invoice_id}/lignes", response_model=InvoiceDetail)
def update_invoice_lines(
    invoice_id: UUID,
    payload: InvoiceLinesUpdate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(require_permission("factures", Action.UPDATE)),
):
    """Remplacer les lignes (brouillon ou envoyée, sans paiement)."""
    return InvoiceService(db).update_lines(invoice_id, payload, auth_context.agency_id)


@router.post("/{invoice_id}/envoyer", response_model=InvoiceOut)
def send_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(require_permission("factures", Action.UPDATE)),
):
    return InvoiceService(db).send_invoice(invoice_id, auth_context.agency_id)


@router.post("/{invoice_id}/annuler", response_model=InvoiceOut)
def cancel_invoice(
    invoice_id: UUID,
    payload: InvoiceCancelRequest,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(require_permission("factures", Action.UPDATE)),
):
    """Annulation définitive ; l'argent encaissé se rend par remboursement."""
    return InvoicePaymentService(db).cancel_invoice(invoice_id, auth_context.agency_id, payload.reason)


@router.post("/{invoice_id}/payer", response_model=PaymentResult)
def pay_invoice(
    invoice_id: UUID,
    payload: FullPaymentRequest,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(require_permission("factures", Action.UPDATE)),
):
    """Paiement du reste à payer en une fois."""
    outcome = InvoicePaymentService(db).pay_full(
        invoice_id, payload.method, auth_context.agency_id,
        created_by=auth_context.user_id, notes=payload.notes,
    )
    return PaymentResult(invoice=outcome.invoice, operation=outcome.operation)


@router.post("/{invoice_id}/versement", response_model=PaymentResult)
def pay_invoice_partial(
    invoice_id: UUID,
    payload: AmountRequest,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(require_permission("factures", Action.UPDATE)),
):
    outcome = InvoicePaymentService(db).pay_partial(
        invoice_id, payload.amount, payload.method, auth_context.agency_id,
        created_by=auth_context.user_id, notes=payload.notes,
    )
    return PaymentResult(invoice=outcome.invoice, operation=outcome.operation)


@router.post("/{invoice_id}/avoir", response_model=PaymentResult)
def issue_credit_note(
    invoice_id: UUID,
    payload: AmountRequest,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(require_permission("factures", Action.UPDATE)),
):
    outcome = InvoicePaymentService(db).issue_credit_note(
        invoice_id, payload.amount, payload.method, auth_context.agency_id,
        created_by=auth_context.user_id, notes=payload.notes,
    )
    return PaymentResult(invoice=outcome.invoice, operation=outcome.operation)


@router.post("/{invoice_id}/refund", response_model=PaymentResult)
def refund_invoice(
    invoice_id: UUID,
    payload: AmountRequest,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(require_permission("factures", Action.UPDATE)),
):
    outcome = InvoicePaymentService(db).refund(
        invoice_id, payload.amount, payload.method, auth_context.agency_id,
        created_by=auth_context.user_id, notes=payload.notes,
    )
    return PaymentResult(invoice=outcome.invoice, operation=outcome.operation)


@router.put("/{invoice_id}/operations/{operation_id}/annuler", response_model=OperationCancelResult)
def cancel_invoice_operation(
    invoice_id: UUID,
    operation_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(require_permission("factures", Action.UPDATE)),
):
    """Annule un paiement, avoir ou remboursement et ajuste la facture en miroir."""
    ledger = CashLedgerService(db)
    operation = ledger.get_operation(operation_id, auth_context.agency_id)
    if operation.invoice_id != invoice_id:
        raise NotFoundError("Opération de facture", operation_id)
    outcome = InvoicePaymentService(db, ledger).cancel_operation(
        operation_id, auth_context.agency_id, auth_context.user_id
    )
    return OperationCancelResult(original=outcome.original, reversal=outcome.reversal, invoice=outcome.invoice)
