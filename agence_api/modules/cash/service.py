"""
Services de la caisse.

CashLedgerService est le seul point d'écriture du grand livre :
- record_operation : ajoute une écriture (toujours positive, le sens porte le signe) ;
- cancel_operation : écriture compensatoire de sens opposé ;
- compute_balance / generate_report : lectures agrégées par agence.

Les services métier (factures, fournisseurs) appellent record_operation
avec ``commit=False`` pour écrire dans leur propre transaction.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agence_api.common.exceptions import InvalidStateError, NotFoundError, ValidationError
from agence_api.modules.audit.service import AuditService
from agence_api.modules.auth.models import User
from agence_api.modules.cash import immutability  # noqa: F401  (enregistre les listeners)
from agence_api.modules.cash.models import (
    Operation, OperationCategory, OperationDirection, PaymentMethod,
)
from agence_api.modules.clients.models import Client

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Opérations dont l'annulation doit aussi ajuster la facture liée
INVOICE_LINKED_CATEGORIES = frozenset({
    OperationCategory.INVOICE_PAYMENT,
    OperationCategory.REFUND,
    OperationCategory.CREDIT_NOTE,
})


def to_amount(value: Any, field: str = "amount") -> Decimal:
    """Montant monétaire strictement positif, arrondi au centime."""
    try:
        amount = Decimal(str(value)).quantize(CENT)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Montant invalide", field=field, value=value)
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Le montant doit être strictement positif", field=field, value=value)
    return amount


def _coerce(enum_cls, value, field: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Valeur invalide pour {field} (attendu : {allowed})", field=field, value=value)


@dataclass(frozen=True)
class ReversalResult:
    original: Operation
    reversal: Operation


class CashLedgerService:
    """Grand livre de caisse, en ajout seul, cloisonné par agence."""

    def __init__(self, db: Session):
        self.db = db

    # ===== ÉCRITURE =====

    def record_operation(
        self,
        direction,
        amount,
        description: str,
        agency_id: UUID,
        category=OperationCategory.OTHER,
        method=PaymentMethod.ESPECES,
        *,
        invoice_id: Optional[UUID] = None,
        client_id: Optional[UUID] = None,
        agent_id: Optional[UUID] = None,
        supplier_id: Optional[UUID] = None,
        reference: Optional[str] = None,
        created_by: Optional[UUID] = None,
        notes: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        reversal_of_id: Optional[UUID] = None,
        commit: bool = True,
    ) -> Operation:
        if agency_id is None:
            raise ValidationError("Agence manquante", field="agency_id")
        direction = _coerce(OperationDirection, direction, "direction")
        category = _coerce(OperationCategory, category, "category")
        method = _coerce(PaymentMethod, method, "method")
        amount = to_amount(amount)
        if not description or not description.strip():
            raise ValidationError("Description requise", field="description")
        self._check_references(agency_id, client_id, agent_id)

        operation = Operation(
            agency_id=agency_id,
            direction=direction,
            amount=amount,
            description=description.strip(),
            category=category,
            method=method,
            reference=reference,
            notes=notes,
            invoice_id=invoice_id,
            client_id=client_id,
            agent_id=agent_id,
            supplier_id=supplier_id,
            created_by=created_by,
            reversal_of_id=reversal_of_id,
        )
        if occurred_at is not None:
            operation.occurred_at = occurred_at

        self.db.add(operation)
        self.db.flush()
        AuditService(self.db).record(
            "caisse",
            "annulation" if reversal_of_id is not None else direction.value,
            agency_id=agency_id,
            user_id=created_by,
            entity_type="operation",
            entity_id=operation.id,
            details={"amount": str(amount), "category": category.value},
        )
        if commit:
            self.db.commit()
            self.db.refresh(operation)

        logger.info(
            f"Ledger write {operation.id}: {direction.value} {amount} "
            f"category={category.value} agency={agency_id}"
        )
        return operation

    def cancel_operation(
        self,
        operation_id: UUID,
        agency_id: UUID,
        created_by: Optional[UUID] = None,
        *,
        allow_linked: bool = False,
        commit: bool = True,
    ) -> ReversalResult:
        """
        Annule une opération par une écriture compensatoire.

        L'originale reste intacte. Une écriture compensatoire ne peut pas être
        annulée, et une opération ne peut l'être qu'une fois. Les opérations
        liées à une facture ou à un fournisseur passent par le service
        concerné (``allow_linked`` réservé à ces services).
        """
        original = self.get_operation(operation_id, agency_id, for_update=True)

        if original.is_reversal:
            raise InvalidStateError(
                "Une écriture d'annulation ne peut pas être annulée", operation_id=operation_id
            )
        if self.find_reversal(original.id) is not None:
            raise InvalidStateError("Opération déjà annulée", operation_id=operation_id)
        if not allow_linked and self.is_invoice_linked(original):
            raise InvalidStateError(
                "Opération liée à une facture : annuler via la facture",
                operation_id=operation_id,
                invoice_id=original.invoice_id,
            )
        if not allow_linked and original.supplier_id is not None:
            raise InvalidStateError(
                "Opération liée à un fournisseur : annuler via le fournisseur",
                operation_id=operation_id,
                supplier_id=original.supplier_id,
            )

        try:
            reversal = self.record_operation(
                original.direction.opposite,
                original.amount,
                f"Annulation : {original.description}",
                agency_id,
                original.category,
                original.method,
                invoice_id=original.invoice_id,
                client_id=original.client_id,
                agent_id=original.agent_id,
                supplier_id=original.supplier_id,
                reference=original.reference,
                created_by=created_by,
                reversal_of_id=original.id,
                commit=False,
            )
        except IntegrityError:
            # Contrainte unique sur reversal_of_id : annulation concurrente
            self.db.rollback()
            logger.warning(f"Concurrent cancellation of operation {operation_id} rejected")
            raise InvalidStateError("Opération déjà annulée", operation_id=operation_id)

        if commit:
            self.db.commit()
            self.db.refresh(reversal)
        logger.info(f"Operation {original.id} reversed by {reversal.id}")
        return ReversalResult(original=original, reversal=reversal)

    def _check_references(self, agency_id: UUID, client_id: Optional[UUID], agent_id: Optional[UUID]):
        """Le client et l'agent référencés doivent appartenir à l'agence."""
        if client_id is not None:
            found = self.db.query(Client.id).filter(
                Client.id == client_id,
                Client.agency_id == agency_id,
            ).first()
            if found is None:
                raise NotFoundError("Client", client_id)
        if agent_id is not None:
            found = self.db.query(User.id).filter(
                User.id == agent_id,
                User.agency_id == agency_id,
            ).first()
            if found is None:
                raise NotFoundError("Agent", agent_id)

    # ===== LECTURE =====

    def get_operation(self, operation_id: UUID, agency_id: UUID, for_update: bool = False) -> Operation:
        query = self.db.query(Operation).filter(
            Operation.id == operation_id,
            Operation.agency_id == agency_id,
        )
        if for_update:
            query = query.with_for_update()
        operation = query.first()
        if operation is None:
            raise NotFoundError("Opération", operation_id)
        return operation

    def find_reversal(self, operation_id: UUID) -> Optional[Operation]:
        return self.db.query(Operation).filter(Operation.reversal_of_id == operation_id).first()

    @staticmethod
    def is_invoice_linked(operation: Operation) -> bool:
        return operation.invoice_id is not None and operation.category in INVOICE_LINKED_CATEGORIES

    def list_operations(
        self,
        agency_id: UUID,
        direction=None,
        category=None,
        method=None,
        invoice_id: Optional[UUID] = None,
        supplier_id: Optional[UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[Operation], int]:
        query = self._period_query(agency_id, date_from, date_to)
        if direction is not None:
            query = query.filter(Operation.direction == _coerce(OperationDirection, direction, "direction"))
        if category is not None:
            query = query.filter(Operation.category == _coerce(OperationCategory, category, "category"))
        if method is not None:
            query = query.filter(Operation.method == _coerce(PaymentMethod, method, "method"))
        if invoice_id is not None:
            query = query.filter(Operation.invoice_id == invoice_id)
        if supplier_id is not None:
            query = query.filter(Operation.supplier_id == supplier_id)

        total = query.count()
        operations = query.order_by(
            Operation.occurred_at.desc(), Operation.created_at.desc()
        ).offset(offset).limit(limit).all()
        return operations, total

    def compute_balance(
        self,
        agency_id: UUID,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Solde = somme des entrées - somme des sorties sur toutes les écritures
        de l'agence, annulations comprises (une paire annulée se compense).
        """
        rows = self._period_query(agency_id, date_from, date_to).with_entities(
            Operation.direction,
            func.coalesce(func.sum(Operation.amount), 0),
            func.count(Operation.id),
        ).group_by(Operation.direction).all()

        totals = {OperationDirection.ENTREE: ZERO, OperationDirection.SORTIE: ZERO}
        count = 0
        for direction, total, n in rows:
            totals[direction] = Decimal(str(total)).quantize(CENT)
            count += n

        inflows = totals[OperationDirection.ENTREE]
        outflows = totals[OperationDirection.SORTIE]
        return {
            "balance": inflows - outflows,
            "total_inflows": inflows,
            "total_outflows": outflows,
            "operation_count": count,
        }

    def generate_report(
        self,
        agency_id: UUID,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        operations = self._period_query(agency_id, date_from, date_to).order_by(
            Operation.occurred_at, Operation.created_at
        ).all()

        return {
            "agency_id": agency_id,
            "date_from": date_from,
            "date_to": date_to,
            "summary": self._calculate_summary(operations),
            "by_category": self._group_totals(operations, lambda op: op.category.value),
            "by_method": self._group_totals(operations, lambda op: op.method.value),
            "operations": operations,
        }

    def _period_query(self, agency_id: UUID, date_from: Optional[datetime], date_to: Optional[datetime]):
        if date_from is not None and date_to is not None and date_from > date_to:
            raise ValidationError("Période invalide : date_from postérieure à date_to")
        query = self.db.query(Operation).filter(Operation.agency_id == agency_id)
        if date_from is not None:
            query = query.filter(Operation.occurred_at >= date_from)
        if date_to is not None:
            query = query.filter(Operation.occurred_at <= date_to)
        return query

    @staticmethod
    def _calculate_summary(operations: List[Operation]) -> Dict[str, Any]:
        inflows = sum((op.amount for op in operations if op.direction == OperationDirection.ENTREE), ZERO)
        outflows = sum((op.amount for op in operations if op.direction == OperationDirection.SORTIE), ZERO)
        return {
            "balance": inflows - outflows,
            "total_inflows": inflows,
            "total_outflows": outflows,
            "operation_count": len(operations),
            "reversal_count": sum(1 for op in operations if op.is_reversal),
        }

    @staticmethod
    def _group_totals(operations: List[Operation], key) -> List[Dict[str, Any]]:
        groups: Dict[str, Dict[str, Any]] = {}
        for op in operations:
            group = groups.setdefault(key(op), {
                "key": key(op), "total_inflows": ZERO, "total_outflows": ZERO, "operation_count": 0,
            })
            if op.direction == OperationDirection.ENTREE:
                group["total_inflows"] += op.amount
            else:
                group["total_outflows"] += op.amount
            group["operation_count"] += 1

        for group in groups.values():
            group["balance"] = group["total_inflows"] - group["total_outflows"]
        return sorted(groups.values(), key=lambda g: g["key"])
