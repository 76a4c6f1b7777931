from sqlalchemy.orm import Session, selectinload
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple
from uuid import UUID
from datetime import date
import logging

from agence_api.common.exceptions import InvalidStateError, NotFoundError, ValidationError
from agence_api.core.config import settings
from agence_api.modules.clients.service import ClientService
from agence_api.modules.invoices.models import (
    Invoice, InvoiceLineItem, InvoiceSequence, InvoiceStatus,
)
from agence_api.modules.invoices.schemas import InvoiceCreate, InvoiceLineItemCreate, InvoiceLinesUpdate

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
EDITABLE_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.SENT)


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class InvoiceService:
    """
    Cycle de vie documentaire des factures : création, numérotation,
    lignes, envoi, passage en retard. Les mouvements d'argent passent
    par InvoicePaymentService.
    """

    def __init__(self, db: Session):
        self.db = db

    def calculate_line_items(self, items: List[InvoiceLineItemCreate]) -> Tuple[List[InvoiceLineItem], Decimal, Decimal]:
        """Lignes calculées et totaux (HT, TTC)"""
        lines = []
        total_excl = Decimal("0.00")
        total_incl = Decimal("0.00")

        for position, item in enumerate(items):
            line_amount = _money(Decimal(item.quantity) * Decimal(item.unit_price))
            tax_amount = _money(line_amount * Decimal(item.tax_rate) / Decimal(100))
            line_total = line_amount + tax_amount
            lines.append(InvoiceLineItem(
                position=position,
                description=item.description,
                quantity=item.quantity,
                unit_price=_money(item.unit_price),
                tax_rate=item.tax_rate,
                line_amount=line_amount,
                line_total=line_total,
            ))
            total_excl += line_amount
            total_incl += line_total

        if total_incl <= 0:
            raise ValidationError("Le montant TTC de la facture doit être positif")
        return lines, total_excl, total_incl

    def generate_invoice_number(self, agency_id: UUID) -> str:
        """Numéro séquentiel par agence (FAC-000001)"""
        sequence = self.db.query(InvoiceSequence).filter(
            InvoiceSequence.agency_id == agency_id
        ).with_for_update().first()

        if not sequence:
            sequence = InvoiceSequence(
                agency_id=agency_id,
                current_number=0,
                prefix=settings.INVOICE_NUMBER_PREFIX,
            )
            self.db.add(sequence)
            self.db.flush()

        sequence.current_number += 1
        return f"{sequence.prefix or settings.INVOICE_NUMBER_PREFIX}{sequence.current_number:06d}"

    def create_invoice(self, invoice_data: InvoiceCreate, agency_id: UUID, user_id: Optional[UUID] = None) -> Invoice:
        client = ClientService(self.db).get_client(invoice_data.client_id, agency_id)
        lines, total_excl, total_incl = self.calculate_line_items(invoice_data.line_items)

        invoice = Invoice(
            agency_id=agency_id,
            client_id=client.id,
            created_by=user_id,
            number=self.generate_invoice_number(agency_id),
            status=InvoiceStatus.SENT if invoice_data.send else InvoiceStatus.DRAFT,
            issue_date=invoice_data.issue_date or date.today(),
            due_date=invoice_data.due_date,
            notes=invoice_data.notes,
            currency=settings.CURRENCY,
            amount_excl_tax=total_excl,
            amount_incl_tax=total_incl,
            amount_paid=Decimal("0.00"),
            credited_amount=Decimal("0.00"),
            line_items=lines,
        )
        self.db.add(invoice)
        self.db.commit()
        self.db.refresh(invoice)
        logger.info(f"Invoice {invoice.number} created for agency {agency_id} ({total_incl})")
        return invoice

    def get_invoice(self, invoice_id: UUID, agency_id: UUID, for_update: bool = False) -> Invoice:
        query = self.db.query(Invoice).options(
            selectinload(Invoice.line_items),
            selectinload(Invoice.payments),
        ).filter(
            Invoice.id == invoice_id,
            Invoice.agency_id == agency_id,
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        invoice = query.first()
        if not invoice:
            raise NotFoundError("Facture", invoice_id)
        return invoice

    def list_invoices(
        self,
        agency_id: UUID,
        status: Optional[InvoiceStatus] = None,
        client_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[Invoice], int]:
        query = self.db.query(Invoice).filter(Invoice.agency_id == agency_id)
        if status is not None:
            query = query.filter(Invoice.status == status)
        if client_id is not None:
            query = query.filter(Invoice.client_id == client_id)
        if date_from is not None:
            query = query.filter(Invoice.issue_date >= date_from)
        if date_to is not None:
            query = query.filter(Invoice.issue_date <= date_to)

        total = query.count()
        invoices = query.order_by(Invoice.issue_date.desc(), Invoice.number.desc()).offset(offset).limit(limit).all()
        return invoices, total

    def update_lines(self, invoice_id: UUID, data: InvoiceLinesUpdate, agency_id: UUID) -> Invoice:
        """Remplacement des lignes, uniquement avant tout paiement"""
        lines, total_excl, total_incl = self.calculate_line_items(data.line_items)

        invoice = self.get_invoice(invoice_id, agency_id, for_update=True)
        status, issue_date = invoice.status, invoice.issue_date
        if status not in EDITABLE_STATUSES or invoice.amount_paid > 0:
            self.db.rollback()
            raise InvalidStateError(
                "Seules les factures brouillon ou envoyées sans paiement sont modifiables",
                invoice_id=invoice_id,
                status=status.value,
            )
        if data.due_date and data.due_date < issue_date:
            self.db.rollback()
            raise ValidationError("La date d'échéance doit être postérieure à la date d'émission")

        invoice.line_items = lines
        invoice.amount_excl_tax = total_excl
        invoice.amount_incl_tax = total_incl
        if data.due_date is not None:
            invoice.due_date = data.due_date
        if data.notes is not None:
            invoice.notes = data.notes
        self.db.commit()
        self.db.refresh(invoice)
        logger.info(f"Invoice {invoice.number} lines replaced (total {total_incl})")
        return invoice

    def send_invoice(self, invoice_id: UUID, agency_id: UUID) -> Invoice:
        invoice = self.get_invoice(invoice_id, agency_id)
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidStateError(
                "Seule une facture brouillon peut être envoyée",
                invoice_id=invoice_id,
                status=invoice.status.value,
            )
        invoice.status = InvoiceStatus.SENT
        self.db.commit()
        self.db.refresh(invoice)
        logger.info(f"Invoice {invoice.number}: draft -> sent")
        return invoice

    def mark_overdue_invoices(self, agency_id: Optional[UUID] = None, today: Optional[date] = None) -> int:
        """
        Passe en ``overdue`` les factures envoyées, sans paiement, dont
        l'échéance est dépassée. Sans agence : toutes les agences.
        """
        today = today or date.today()
        query = self.db.query(Invoice).filter(
            Invoice.status == InvoiceStatus.SENT,
            Invoice.due_date.isnot(None),
            Invoice.due_date < today,
        )
        if agency_id is not None:
            query = query.filter(Invoice.agency_id == agency_id)

        invoices = query.with_for_update().all()
        for invoice in invoices:
            invoice.status = InvoiceStatus.OVERDUE
        self.db.commit()

        if invoices:
            logger.info(f"{len(invoices)} invoice(s) marked overdue (agency={agency_id or 'all'})")
        return len(invoices)
