"""
Machine à états des paiements de facture.

Chaque opération (paiement total ou partiel, avoir, remboursement,
annulation d'opération) suit la même séquence, dans une seule transaction :

    1. verrou de la facture (SELECT ... FOR UPDATE)
    2. contrôles métier              -> ValidationError / InvalidStateError
    3. écriture au grand livre       (flush, pas de commit)
    4. mise à jour de la facture + trace InvoicePayment
    5. commit

Un échec après l'étape 3 annule toute la transaction et lève
ConsistencyError ; rien n'est rejoué automatiquement.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from agence_api.common.exceptions import (
    AgenceError, ConsistencyError, InvalidStateError, NotFoundError, ValidationError,
)
from agence_api.modules.cash.models import (
    Operation, OperationCategory, OperationDirection, PaymentMethod,
)
from agence_api.modules.cash.service import CashLedgerService, to_amount
from agence_api.modules.invoices.models import (
    Invoice, InvoicePayment, InvoiceStatus, PaymentKind,
)

logger = logging.getLogger(__name__)


def derive_status(current: InvoiceStatus, amount_paid: Decimal, total: Decimal) -> InvoiceStatus:
    """
    Statut déduit du montant payé. ``cancelled`` est terminal ;
    ``overdue`` n'est posé que par la tâche de relance.
    """
    if current == InvoiceStatus.CANCELLED:
        return current
    if total > 0 and amount_paid >= total:
        return InvoiceStatus.PAID
    if amount_paid > 0:
        return InvoiceStatus.PARTIALLY_PAID
    if current in (InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID):
        return InvoiceStatus.SENT
    return current


@dataclass(frozen=True)
class PaymentOutcome:
    invoice: Invoice
    operation: Operation


@dataclass(frozen=True)
class CancellationOutcome:
    original: Operation
    reversal: Operation
    invoice: Optional[Invoice] = None


# catégorie de l'écriture -> (type de trace, effet sur amount_paid, effet sur credited_amount)
_CATEGORY_EFFECTS = {
    OperationCategory.INVOICE_PAYMENT: (PaymentKind.PAYMENT, 1, 0),
    OperationCategory.REFUND: (PaymentKind.REFUND, -1, 0),
    OperationCategory.CREDIT_NOTE: (PaymentKind.CREDIT_NOTE, 0, 1),
}


class InvoicePaymentService:
    """Paiements, avoirs et remboursements, chacun couplé à une écriture de caisse."""

    def __init__(self, db: Session, ledger: Optional[CashLedgerService] = None):
        self.db = db
        self.ledger = ledger or CashLedgerService(db)

    # ===== ENCAISSEMENTS =====

    def pay_full(self, invoice_id: UUID, method=PaymentMethod.ESPECES, agency_id: UUID = None,
                 *, created_by: Optional[UUID] = None, notes: Optional[str] = None) -> PaymentOutcome:
        with self._rejections():
            invoice = self._lock_invoice(invoice_id, agency_id)
            self._ensure_collectable(invoice)
            remaining = invoice.amount_remaining
            if remaining <= 0:
                raise InvalidStateError("Aucun montant restant à payer", invoice_id=invoice_id)

            return self._apply_movement(
                invoice, OperationCategory.INVOICE_PAYMENT, remaining, method,
                f"Paiement facture {invoice.number}", created_by=created_by, notes=notes,
            )

    def pay_partial(self, invoice_id: UUID, amount, method=PaymentMethod.ESPECES, agency_id: UUID = None,
                    *, created_by: Optional[UUID] = None, notes: Optional[str] = None) -> PaymentOutcome:
        with self._rejections():
            amount = to_amount(amount)
            invoice = self._lock_invoice(invoice_id, agency_id)
            self._ensure_collectable(invoice)
            if amount > invoice.amount_remaining:
                raise ValidationError(
                    "Le versement dépasse le reste à payer",
                    amount=amount,
                    remaining=invoice.amount_remaining,
                )

            return self._apply_movement(
                invoice, OperationCategory.INVOICE_PAYMENT, amount, method,
                f"Versement facture {invoice.number}", created_by=created_by, notes=notes,
            )

    # ===== DÉCAISSEMENTS =====

    def issue_credit_note(self, invoice_id: UUID, amount, method=PaymentMethod.ESPECES, agency_id: UUID = None,
                          *, created_by: Optional[UUID] = None, notes: Optional[str] = None) -> PaymentOutcome:
        """
        Avoir : sortie de caisse, ``amount_paid`` inchangé, ``credited_amount``
        cumulé. Le total des avoirs ne peut dépasser le montant payé.
        """
        with self._rejections():
            amount = to_amount(amount)
            invoice = self._lock_invoice(invoice_id, agency_id)
            if amount > invoice.creditable_amount:
                raise ValidationError(
                    "L'avoir dépasse le montant payé non encore crédité",
                    amount=amount,
                    creditable=invoice.creditable_amount,
                )

            return self._apply_movement(
                invoice, OperationCategory.CREDIT_NOTE, amount, method,
                f"Avoir facture {invoice.number}", created_by=created_by, notes=notes,
            )

    def refund(self, invoice_id: UUID, amount, method=PaymentMethod.ESPECES, agency_id: UUID = None,
               *, created_by: Optional[UUID] = None, notes: Optional[str] = None) -> PaymentOutcome:
        """
        Remboursement : sortie de caisse, ``amount_paid`` diminué. Les avoirs
        déjà versés sont déduits du montant remboursable.
        """
        with self._rejections():
            amount = to_amount(amount)
            invoice = self._lock_invoice(invoice_id, agency_id)
            if amount > invoice.creditable_amount:
                raise ValidationError(
                    "Le remboursement dépasse le montant payé non encore crédité",
                    amount=amount,
                    paid=invoice.amount_paid,
                    credited=invoice.credited_amount,
                )

            return self._apply_movement(
                invoice, OperationCategory.REFUND, amount, method,
                f"Remboursement facture {invoice.number}", created_by=created_by, notes=notes,
            )

    # ===== ANNULATIONS =====

    def cancel_operation(self, operation_id: UUID, agency_id: UUID,
                         created_by: Optional[UUID] = None) -> CancellationOutcome:
        """
        Annule une écriture. Si elle concerne une facture (paiement,
        remboursement, avoir), la facture est ajustée en miroir dans la même
        transaction ; sinon c'est une simple écriture compensatoire.
        """
        original = self.ledger.get_operation(operation_id, agency_id)
        if not CashLedgerService.is_invoice_linked(original):
            result = self.ledger.cancel_operation(operation_id, agency_id, created_by)
            return CancellationOutcome(original=result.original, reversal=result.reversal)

        with self._rejections():
            invoice = self._lock_invoice(original.invoice_id, agency_id)
            if original.is_reversal:
                raise InvalidStateError(
                    "Une écriture d'annulation ne peut pas être annulée", operation_id=operation_id
                )
            if self.ledger.find_reversal(original.id) is not None:
                raise InvalidStateError("Opération déjà annulée", operation_id=operation_id)

            kind, paid_sign, credit_sign = _CATEGORY_EFFECTS[original.category]
            paid_delta = -paid_sign * original.amount
            credit_delta = -credit_sign * original.amount
            self._check_amounts(invoice, paid_delta, credit_delta, invalid_state=True)

            result = self.ledger.cancel_operation(
                operation_id, agency_id, created_by, allow_linked=True, commit=False
            )
            trace = self.db.query(InvoicePayment).filter(
                InvoicePayment.operation_id == original.id
            ).first()

            self._mutate_and_commit(
                invoice, result.reversal, kind, paid_delta, credit_delta,
                reverses_id=trace.id if trace else None,
                notes=f"Annulation de l'opération {original.id}",
            )
            logger.info(f"Invoice {invoice.number}: operation {original.id} cancelled")
            return CancellationOutcome(original=result.original, reversal=result.reversal, invoice=invoice)

    def cancel_invoice(self, invoice_id: UUID, agency_id: UUID, reason: str) -> Invoice:
        """
        Annulation explicite et définitive. Aucune écriture de caisse :
        l'argent déjà encaissé se rend par remboursement.
        """
        with self._rejections():
            invoice = self._lock_invoice(invoice_id, agency_id)
            if invoice.status == InvoiceStatus.CANCELLED:
                raise InvalidStateError("Facture déjà annulée", invoice_id=invoice_id)
            if not reason or not reason.strip():
                raise ValidationError("Motif d'annulation requis", field="reason")

            previous = invoice.status
            invoice.status = InvoiceStatus.CANCELLED
            invoice.cancellation_reason = reason.strip()
            invoice.cancelled_at = datetime.now(timezone.utc)
            self.db.commit()
            self.db.refresh(invoice)

        logger.info(f"Invoice {invoice.number}: {previous.value} -> cancelled")
        return invoice

    # ===== INTERNES =====

    def _rejections(self):
        return _RollbackOnRejection(self.db)

    def _lock_invoice(self, invoice_id: UUID, agency_id: UUID) -> Invoice:
        if agency_id is None:
            raise ValidationError("Agence manquante", field="agency_id")
        invoice = self.db.query(Invoice).filter(
            Invoice.id == invoice_id,
            Invoice.agency_id == agency_id,
        ).with_for_update().populate_existing().first()
        if invoice is None:
            raise NotFoundError("Facture", invoice_id)
        return invoice

    @staticmethod
    def _ensure_collectable(invoice: Invoice):
        if invoice.status == InvoiceStatus.CANCELLED:
            raise InvalidStateError("Facture annulée", invoice_id=invoice.id)
        if invoice.status == InvoiceStatus.PAID:
            raise InvalidStateError("Facture déjà payée", invoice_id=invoice.id)

    @staticmethod
    def _check_amounts(invoice: Invoice, paid_delta: Decimal, credit_delta: Decimal, invalid_state: bool = False):
        new_paid = Decimal(invoice.amount_paid) + paid_delta
        new_credited = Decimal(invoice.credited_amount) + credit_delta
        error = InvalidStateError if invalid_state else ConsistencyError
        if new_paid < 0 or new_paid > Decimal(invoice.amount_incl_tax):
            raise error(
                "Montant payé hors limites après l'opération",
                invoice_id=invoice.id,
                amount_paid=new_paid,
            )
        if new_credited < 0:
            raise error("Montant crédité négatif après l'opération", invoice_id=invoice.id)
        if new_credited > new_paid:
            raise error(
                "Les avoirs dépasseraient le montant payé",
                invoice_id=invoice.id,
                amount_paid=new_paid,
                credited_amount=new_credited,
            )

    def _apply_movement(self, invoice: Invoice, category: OperationCategory, amount: Decimal, method,
                        description: str, created_by: Optional[UUID], notes: Optional[str]) -> PaymentOutcome:
        kind, paid_sign, credit_sign = _CATEGORY_EFFECTS[category]
        direction = OperationDirection.SORTIE if paid_sign < 0 or credit_sign > 0 else OperationDirection.ENTREE

        operation = self.ledger.record_operation(
            direction, amount, description, invoice.agency_id, category, method,
            invoice_id=invoice.id,
            client_id=invoice.client_id,
            reference=invoice.number,
            created_by=created_by,
            notes=notes,
            commit=False,
        )
        self._mutate_and_commit(invoice, operation, kind, paid_sign * amount, credit_sign * amount, notes=notes)
        return PaymentOutcome(invoice=invoice, operation=operation)

    def _mutate_and_commit(self, invoice: Invoice, operation: Operation, kind: PaymentKind,
                           paid_delta: Decimal, credit_delta: Decimal,
                           reverses_id: Optional[UUID] = None, notes: Optional[str] = None):
        """Étapes 4 et 5 : toute erreur ici laisse une écriture orpheline, donc rollback."""
        previous = invoice.status
        try:
            self._check_amounts(invoice, paid_delta, credit_delta)
            invoice.amount_paid = Decimal(invoice.amount_paid) + paid_delta
            invoice.credited_amount = Decimal(invoice.credited_amount) + credit_delta
            invoice.status = derive_status(invoice.status, invoice.amount_paid, Decimal(invoice.amount_incl_tax))
            self.db.add(InvoicePayment(
                agency_id=invoice.agency_id,
                invoice_id=invoice.id,
                operation_id=operation.id,
                reverses_id=reverses_id,
                kind=kind,
                amount=operation.amount,
                method=operation.method,
                notes=notes,
            ))
            self.db.commit()
        except Exception as e:
            self._rollback_after_ledger_write(invoice, operation, e)

        self.db.refresh(invoice)
        self.db.refresh(operation)
        if invoice.status != previous:
            logger.info(f"Invoice {invoice.number}: {previous.value} -> {invoice.status.value}")
        logger.info(
            f"Invoice {invoice.number}: {kind.value} {operation.amount} via operation {operation.id} "
            f"(paid={invoice.amount_paid}, credited={invoice.credited_amount})"
        )

    def _rollback_after_ledger_write(self, invoice: Invoice, operation: Operation, error: Exception):
        invoice_id, operation_id = invoice.id, operation.id
        logger.error(
            f"Consistency failure on invoice {invoice_id} after ledger write {operation_id}: {error}"
        )
        try:
            self.db.rollback()
        except Exception as rollback_error:
            logger.critical(
                f"Rollback failed for invoice {invoice_id} / operation {operation_id}: {rollback_error}"
            )
        raise ConsistencyError(
            "Échec de la mise à jour de la facture ; opération de caisse annulée",
            invoice_id=invoice_id,
            operation_id=operation_id,
        ) from error


class _RollbackOnRejection:
    """Libère le verrou de la facture quand un contrôle métier échoue."""

    def __init__(self, db: Session):
        self.db = db

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None and issubclass(exc_type, AgenceError) and not issubclass(exc_type, ConsistencyError):
            self.db.rollback()
            logger.warning(f"Invoice operation rejected: {exc}")
        return False
