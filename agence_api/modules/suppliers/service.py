from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from agence_api.common.exceptions import (
    ConsistencyError, InvalidStateError, NotFoundError, ValidationError,
)
from agence_api.modules.cash.models import (
    Operation, OperationCategory, OperationDirection, PaymentMethod,
)
from agence_api.modules.cash.service import CashLedgerService, to_amount
from agence_api.modules.suppliers.migrations import needs_upgrade, upgrade_supplier
from agence_api.modules.suppliers.models import (
    SUPPLIER_SCHEMA_VERSION, Supplier, SupplierTransaction, SupplierTransactionKind,
)
from agence_api.modules.suppliers.schemas import SupplierCreate, SupplierUpdate

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class SupplierMovement:
    supplier: Supplier
    transaction: SupplierTransaction
    operation: Optional[Operation] = None


class SupplierService:
    """
    Fournisseurs et leurs deux soldes :
    - debt_balance : ce que l'agence doit au fournisseur ;
    - credit_balance : avances et trop-versés, imputables sur la dette
      ou remboursés par le fournisseur.
    Tout mouvement de caisse et la mise à jour du solde sont validés ensemble.
    """

    def __init__(self, db: Session, ledger: Optional[CashLedgerService] = None):
        self.db = db
        self.ledger = ledger or CashLedgerService(db)

    def create_supplier(self, supplier_data: SupplierCreate, agency_id: UUID) -> Supplier:
        supplier = Supplier(
            agency_id=agency_id,
            schema_version=SUPPLIER_SCHEMA_VERSION,
            debt_balance=ZERO,
            credit_balance=ZERO,
            **supplier_data.model_dump(),
        )
        self.db.add(supplier)
        self.db.commit()
        self.db.refresh(supplier)
        logger.info(f"Supplier {supplier.id} created in agency {agency_id}")
        return supplier

    def get_supplier(self, supplier_id: UUID, agency_id: UUID, for_update: bool = False) -> Supplier:
        query = self.db.query(Supplier).filter(
            Supplier.id == supplier_id,
            Supplier.agency_id == agency_id,
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        supplier = query.first()
        if supplier is None:
            raise NotFoundError("Fournisseur", supplier_id)
        if needs_upgrade(supplier):
            upgrade_supplier(supplier)
            if not for_update:
                self.db.commit()
                self.db.refresh(supplier)
        return supplier

    def list_suppliers(self, agency_id: UUID, active_only: bool = False,
                       limit: int = 100, offset: int = 0) -> Tuple[List[Supplier], int]:
        query = self.db.query(Supplier).filter(Supplier.agency_id == agency_id)
        if active_only:
            query = query.filter(Supplier.is_active.is_(True))
        total = query.count()
        suppliers = query.order_by(Supplier.name).offset(offset).limit(limit).all()

        upgraded = [s for s in suppliers if upgrade_supplier(s)]
        if upgraded:
            self.db.commit()
        return suppliers, total

    def update_supplier(self, supplier_id: UUID, supplier_data: SupplierUpdate, agency_id: UUID) -> Supplier:
        supplier = self.get_supplier(supplier_id, agency_id)
        for field, value in supplier_data.model_dump(exclude_unset=True).items():
            setattr(supplier, field, value)
        self.db.commit()
        self.db.refresh(supplier)
        return supplier

    def list_transactions(self, supplier_id: UUID, agency_id: UUID) -> List[SupplierTransaction]:
        self.get_supplier(supplier_id, agency_id)
        return self.db.query(SupplierTransaction).filter(
            SupplierTransaction.supplier_id == supplier_id,
            SupplierTransaction.agency_id == agency_id,
        ).order_by(SupplierTransaction.created_at).all()

    # ===== MOUVEMENTS DE SOLDE =====

    def record_debt(self, supplier_id: UUID, amount, agency_id: UUID,
                    reference: Optional[str] = None, notes: Optional[str] = None) -> SupplierMovement:
        """Facture fournisseur reçue : la dette augmente, la caisse ne bouge pas."""
        amount = to_amount(amount)
        supplier = self.get_supplier(supplier_id, agency_id, for_update=True)
        supplier.debt_balance = Decimal(supplier.debt_balance) + amount
        transaction = SupplierTransaction(
            agency_id=agency_id,
            supplier_id=supplier.id,
            kind=SupplierTransactionKind.DEBT,
            amount=amount,
            debt_delta=amount,
            credit_delta=ZERO,
            reference=reference,
            notes=notes,
        )
        self.db.add(transaction)
        self.db.commit()
        self.db.refresh(supplier)
        logger.info(f"Supplier {supplier.id}: debt +{amount} (now {supplier.debt_balance})")
        return SupplierMovement(supplier=supplier, transaction=transaction)

    def pay_supplier(self, supplier_id: UUID, amount, method=PaymentMethod.ESPECES, agency_id: UUID = None,
                     *, created_by: Optional[UUID] = None, reference: Optional[str] = None,
                     notes: Optional[str] = None) -> SupplierMovement:
        """
        Règlement : sortie de caisse, dette diminuée sans passer sous zéro.
        Le trop-versé devient du crédit chez le fournisseur.
        """
        amount = to_amount(amount)
        supplier = self._lock(supplier_id, agency_id)
        applied = min(amount, Decimal(supplier.debt_balance))
        return self._apply(
            supplier, SupplierTransactionKind.PAYMENT, amount, method,
            f"Paiement fournisseur {supplier.name}",
            debt_delta=-applied, credit_delta=amount - applied,
            created_by=created_by, reference=reference, notes=notes,
        )

    def record_advance(self, supplier_id: UUID, amount, method=PaymentMethod.ESPECES, agency_id: UUID = None,
                       *, created_by: Optional[UUID] = None, reference: Optional[str] = None,
                       notes: Optional[str] = None) -> SupplierMovement:
        """Avance : sortie de caisse, crédit prépayé augmenté."""
        amount = to_amount(amount)
        supplier = self._lock(supplier_id, agency_id)
        return self._apply(
            supplier, SupplierTransactionKind.ADVANCE, amount, method,
            f"Avance fournisseur {supplier.name}",
            debt_delta=ZERO, credit_delta=amount,
            created_by=created_by, reference=reference, notes=notes,
        )

    def apply_credit(self, supplier_id: UUID, agency_id: UUID, amount=None,
                     reference: Optional[str] = None, notes: Optional[str] = None) -> SupplierMovement:
        """
        Imputation du crédit sur la dette, sans mouvement de caisse.
        Sans montant : tout ce qui peut l'être, min(crédit, dette).
        """
        amount = None if amount is None else to_amount(amount)
        supplier = self._lock(supplier_id, agency_id)
        credit = Decimal(supplier.credit_balance)
        debt = Decimal(supplier.debt_balance)
        available = min(credit, debt)
        if available <= 0:
            self.db.rollback()
            raise InvalidStateError(
                "Aucun crédit imputable : crédit ou dette nul",
                supplier_id=supplier_id,
                credit_balance=credit,
                debt_balance=debt,
            )
        if amount is None:
            amount = available
        if amount > available:
            self.db.rollback()
            raise ValidationError(
                "Le montant dépasse le crédit imputable",
                amount=amount,
                available=available,
            )

        supplier.credit_balance = credit - amount
        supplier.debt_balance = debt - amount
        transaction = SupplierTransaction(
            agency_id=agency_id,
            supplier_id=supplier.id,
            kind=SupplierTransactionKind.CREDIT_APPLIED,
            amount=amount,
            debt_delta=-amount,
            credit_delta=-amount,
            reference=reference,
            notes=notes,
        )
        self.db.add(transaction)
        self.db.commit()
        self.db.refresh(supplier)
        logger.info(f"Supplier {supplier.id}: credit {amount} applied to debt "
                    f"(debt={supplier.debt_balance}, credit={supplier.credit_balance})")
        return SupplierMovement(supplier=supplier, transaction=transaction)

    def refund_credit(self, supplier_id: UUID, amount, method=PaymentMethod.ESPECES, agency_id: UUID = None,
                      *, created_by: Optional[UUID] = None, reference: Optional[str] = None,
                      notes: Optional[str] = None) -> SupplierMovement:
        """Le fournisseur rembourse tout ou partie du crédit : entrée de caisse."""
        amount = to_amount(amount)
        supplier = self._lock(supplier_id, agency_id)
        credit = Decimal(supplier.credit_balance)
        if amount > credit:
            self.db.rollback()
            raise ValidationError(
                "Le remboursement dépasse le crédit fournisseur",
                amount=amount,
                credit_balance=credit,
            )
        return self._apply(
            supplier, SupplierTransactionKind.CREDIT_REFUND, amount, method,
            f"Remboursement crédit fournisseur {supplier.name}",
            debt_delta=ZERO, credit_delta=-amount,
            created_by=created_by, reference=reference, notes=notes,
            direction=OperationDirection.ENTREE, category=OperationCategory.SUPPLIER_REFUND,
        )

    def cancel_operation(self, operation_id: UUID, agency_id: UUID,
                         created_by: Optional[UUID] = None) -> SupplierMovement:
        """Annule une écriture fournisseur et rétablit les soldes à l'identique."""
        transaction = self.db.query(SupplierTransaction).filter(
            SupplierTransaction.operation_id == operation_id,
            SupplierTransaction.agency_id == agency_id,
        ).first()
        if transaction is None:
            raise NotFoundError("Opération fournisseur", operation_id)

        supplier = self._lock(transaction.supplier_id, agency_id)
        new_debt = Decimal(supplier.debt_balance) - Decimal(transaction.debt_delta)
        new_credit = Decimal(supplier.credit_balance) - Decimal(transaction.credit_delta)
        if new_debt < 0 or new_credit < 0:
            self.db.rollback()
            raise InvalidStateError(
                "Annulation impossible : solde fournisseur insuffisant",
                supplier_id=supplier.id,
                operation_id=operation_id,
            )

        try:
            result = self.ledger.cancel_operation(
                operation_id, agency_id, created_by, allow_linked=True, commit=False
            )
        except (InvalidStateError, NotFoundError):
            self.db.rollback()
            raise

        reversal = SupplierTransaction(
            agency_id=agency_id,
            supplier_id=supplier.id,
            operation_id=result.reversal.id,
            reverses_id=transaction.id,
            kind=transaction.kind,
            amount=transaction.amount,
            debt_delta=-Decimal(transaction.debt_delta),
            credit_delta=-Decimal(transaction.credit_delta),
            notes=f"Annulation de l'opération {operation_id}",
        )
        self._commit_balances(supplier, result.reversal, reversal, new_debt, new_credit)
        return SupplierMovement(supplier=supplier, transaction=reversal, operation=result.reversal)

    # ===== INTERNES =====

    def _lock(self, supplier_id: UUID, agency_id: UUID) -> Supplier:
        if agency_id is None:
            raise ValidationError("Agence manquante", field="agency_id")
        return self.get_supplier(supplier_id, agency_id, for_update=True)

    def _apply(self, supplier: Supplier, kind: SupplierTransactionKind, amount: Decimal, method,
               description: str, debt_delta: Decimal, credit_delta: Decimal,
               created_by: Optional[UUID], reference: Optional[str], notes: Optional[str],
               direction=OperationDirection.SORTIE,
               category=OperationCategory.SUPPLIER_PAYMENT) -> SupplierMovement:
        operation = self.ledger.record_operation(
            direction, amount, description, supplier.agency_id,
            category, method,
            supplier_id=supplier.id,
            reference=reference,
            created_by=created_by,
            notes=notes,
            commit=False,
        )
        transaction = SupplierTransaction(
            agency_id=supplier.agency_id,
            supplier_id=supplier.id,
            operation_id=operation.id,
            kind=kind,
            amount=amount,
            debt_delta=debt_delta,
            credit_delta=credit_delta,
            reference=reference,
            notes=notes,
        )
        self._commit_balances(
            supplier, operation, transaction,
            Decimal(supplier.debt_balance) + debt_delta,
            Decimal(supplier.credit_balance) + credit_delta,
        )
        return SupplierMovement(supplier=supplier, transaction=transaction, operation=operation)

    def _commit_balances(self, supplier: Supplier, operation: Operation, transaction: SupplierTransaction,
                         new_debt: Decimal, new_credit: Decimal):
        supplier_id, operation_id = supplier.id, operation.id
        try:
            supplier.debt_balance = new_debt
            supplier.credit_balance = new_credit
            self.db.add(transaction)
            self.db.commit()
        except Exception as e:
            logger.error(f"Consistency failure on supplier {supplier_id} after ledger write {operation_id}: {e}")
            try:
                self.db.rollback()
            except Exception as rollback_error:
                logger.critical(f"Rollback failed for supplier {supplier_id}: {rollback_error}")
            raise ConsistencyError(
                "Échec de la mise à jour du solde fournisseur ; opération de caisse annulée",
                supplier_id=supplier_id,
                operation_id=operation_id,
            ) from e

        self.db.refresh(supplier)
        self.db.refresh(operation)
        logger.info(
            f"Supplier {supplier_id}: {transaction.kind.value} {transaction.amount} "
            f"(debt={supplier.debt_balance}, credit={supplier.credit_balance})"
        )
