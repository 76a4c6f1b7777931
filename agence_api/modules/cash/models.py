"""
Modèles SQLAlchemy de la caisse (grand livre des opérations).

Une Operation est une écriture en append-only :
- jamais modifiée ni supprimée après insertion ;
- une annulation est une nouvelle opération de sens opposé qui
  référence l'originale (``reversal_of_id``, unique).
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Enum, Text, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from datetime import datetime, timezone
from uuid import uuid4
import enum

from agence_api.database.database import Base
from agence_api.common.mixins import AgencyMixin, TimestampMixin


class OperationDirection(enum.Enum):
    ENTREE = "entree"   # encaissement
    SORTIE = "sortie"   # décaissement

    @property
    def opposite(self) -> "OperationDirection":
        return OperationDirection.SORTIE if self is OperationDirection.ENTREE else OperationDirection.ENTREE


class OperationCategory(enum.Enum):
    INVOICE_PAYMENT = "invoice_payment"
    CLIENT_RECHARGE = "client_recharge"
    FREE_SALE = "free_sale"
    REFUND = "refund"
    CREDIT_NOTE = "credit_note"
    SUPPLIER_PAYMENT = "supplier_payment"
    SUPPLIER_REFUND = "supplier_refund"   # remboursement du crédit fournisseur
    AGENT_SALARY = "agent_salary"
    MISC_EXPENSE = "misc_expense"
    OTHER = "other"


class PaymentMethod(enum.Enum):
    ESPECES = "especes"     # espèces
    CHEQUE = "cheque"
    VIREMENT = "virement"   # virement bancaire


def _utcnow():
    return datetime.now(timezone.utc)


class Operation(Base, AgencyMixin, TimestampMixin):
    __tablename__ = "operations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    direction = Column(Enum(OperationDirection), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)  # toujours positif, le sens porte le signe
    description = Column(String(255), nullable=False)
    category = Column(Enum(OperationCategory), nullable=False, default=OperationCategory.OTHER, index=True)
    method = Column(Enum(PaymentMethod), nullable=False, default=PaymentMethod.ESPECES)
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    # Références optionnelles
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id"), nullable=True, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=True, index=True)
    agent_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=True, index=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)

    # Écriture compensatoire : au plus une par opération originale
    reversal_of_id = Column(UUID(as_uuid=True), ForeignKey("operations.id"), nullable=True, unique=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_operation_amount_positive"),
    )

    @property
    def signed_amount(self):
        """Montant signé selon le sens de l'opération"""
        return self.amount if self.direction == OperationDirection.ENTREE else -self.amount

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    def __repr__(self):
        return f"<Operation({self.direction.value if self.direction else None} {self.amount} {self.category})>"
