from sqlalchemy import Column, String, Boolean, Integer, ForeignKey, Numeric, Enum, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from uuid import uuid4
import enum

from agence_api.database.database import Base
from agence_api.common.mixins import AgencyMixin, TimestampMixin

# Version courante du schéma d'un fournisseur (voir suppliers/migrations.py)
SUPPLIER_SCHEMA_VERSION = 2


class SupplierTransactionKind(enum.Enum):
    DEBT = "debt"         # facture fournisseur reçue : la dette augmente
    PAYMENT = "payment"   # règlement de la dette (sortie de caisse)
    ADVANCE = "advance"   # avance : crédit prépayé (sortie de caisse)
    CREDIT_APPLIED = "credit_applied"  # crédit imputé sur la dette, sans caisse
    CREDIT_REFUND = "credit_refund"    # crédit remboursé par le fournisseur (entrée de caisse)


class Supplier(Base, AgencyMixin, TimestampMixin):
    __tablename__ = "suppliers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False, index=True)
    contact_name = Column(String(150), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    address = Column(String(255), nullable=True)
    service_type = Column(String(50), nullable=True)  # billetterie, hôtellerie, transport...
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Deux soldes indépendants, jamais fusionnés
    debt_balance = Column(Numeric(15, 2), nullable=True, default=0)    # dû AU fournisseur
    credit_balance = Column(Numeric(15, 2), nullable=True, default=0)  # crédit prépayé chez le fournisseur

    # Schéma v1 : solde unique, migré vers debt_balance
    legacy_balance = Column(Numeric(15, 2), nullable=True)
    schema_version = Column(Integer, nullable=False, default=SUPPLIER_SCHEMA_VERSION)

    transactions = relationship("SupplierTransaction", back_populates="supplier",
                                order_by="SupplierTransaction.created_at")


class SupplierTransaction(Base, AgencyMixin, TimestampMixin):
    """Mouvement de solde fournisseur ; ``operation_id`` quand de l'argent sort de la caisse."""
    __tablename__ = "supplier_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=False, index=True)
    operation_id = Column(UUID(as_uuid=True), ForeignKey("operations.id"), nullable=True, unique=True)
    reverses_id = Column(UUID(as_uuid=True), ForeignKey("supplier_transactions.id"), nullable=True)
    kind = Column(Enum(SupplierTransactionKind), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    # Effets réellement appliqués (signés), pour une annulation exacte
    debt_delta = Column(Numeric(15, 2), nullable=False, default=0)
    credit_delta = Column(Numeric(15, 2), nullable=False, default=0)
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    supplier = relationship("Supplier", back_populates="transactions")
