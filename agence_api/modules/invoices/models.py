from agence_api.database.database import Base
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, Numeric, Enum, Date, Text, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import date, datetime, timezone
from decimal import Decimal
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from agence_api.common.mixins import AgencyMixin, TimestampMixin
from agence_api.modules.cash.models import PaymentMethod
import enum


class InvoiceStatus(enum.Enum):
    DRAFT = "draft"                    # brouillon
    SENT = "sent"                      # envoyée, non payée
    PARTIALLY_PAID = "partially_paid"  # acompte(s) reçu(s)
    PAID = "paid"                      # soldée
    OVERDUE = "overdue"                # échéance dépassée sans paiement
    CANCELLED = "cancelled"            # annulée (terminal)


class PaymentKind(enum.Enum):
    PAYMENT = "payment"
    REFUND = "refund"
    CREDIT_NOTE = "credit_note"


class Invoice(Base, AgencyMixin, TimestampMixin):
    __tablename__ = "invoices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)

    # References
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)

    # Invoice data
    number = Column(String(50), nullable=False)
    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.DRAFT, index=True)

    # Dates
    issue_date = Column(Date, nullable=False, default=date.today)
    due_date = Column(Date, nullable=True)

    # Content
    notes = Column(Text, nullable=True)
    currency = Column(String(3), nullable=False, default="DZD")
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Totals
    amount_excl_tax = Column(Numeric(15, 2), nullable=False, default=0)
    amount_incl_tax = Column(Numeric(15, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(15, 2), nullable=False, default=0)
    credited_amount = Column(Numeric(15, 2), nullable=False, default=0)  # avoirs cumulés

    # Relationships
    client = relationship("Client")
    line_items = relationship("InvoiceLineItem", back_populates="invoice",
                              cascade="all, delete-orphan", order_by="InvoiceLineItem.position")
    payments = relationship("InvoicePayment", back_populates="invoice",
                            order_by="InvoicePayment.created_at")

    __table_args__ = (
        UniqueConstraint("agency_id", "number", name="uq_invoice_agency_number"),
        CheckConstraint("amount_paid >= 0", name="ck_invoice_amount_paid_positive"),
        CheckConstraint("amount_paid <= amount_incl_tax", name="ck_invoice_amount_paid_le_total"),
    )

    @property
    def amount_remaining(self) -> Decimal:
        """Reste à payer, jamais négatif"""
        remaining = Decimal(self.amount_incl_tax or 0) - Decimal(self.amount_paid or 0)
        return max(remaining, Decimal("0.00"))

    @property
    def creditable_amount(self) -> Decimal:
        """Montant encore disponible pour un avoir"""
        available = Decimal(self.amount_paid or 0) - Decimal(self.credited_amount or 0)
        return max(available, Decimal("0.00"))

    def __repr__(self):
        return f"<Invoice({self.number} {self.status} {self.amount_paid}/{self.amount_incl_tax})>"


class InvoiceLineItem(Base, TimestampMixin):
    __tablename__ = "invoice_line_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    description = Column(String(255), nullable=False)
    quantity = Column(Numeric(10, 3), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)   # HT
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)  # en pourcentage
    line_amount = Column(Numeric(15, 2), nullable=False)  # quantity * unit_price
    line_total = Column(Numeric(15, 2), nullable=False)   # line_amount + TVA

    # Relationships
    invoice = relationship("Invoice", back_populates="line_items")


class InvoicePayment(Base, AgencyMixin, TimestampMixin):
    """
    Trace, côté facture, de chaque écriture de caisse qui la concerne
    (paiement, remboursement, avoir). ``reverses_id`` pointe sur la trace
    annulée lorsqu'elle provient d'une annulation d'opération.
    """
    __tablename__ = "invoice_payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id"), nullable=False, index=True)
    operation_id = Column(UUID(as_uuid=True), ForeignKey("operations.id"), nullable=False, unique=True)
    reverses_id = Column(UUID(as_uuid=True), ForeignKey("invoice_payments.id"), nullable=True)

    kind = Column(Enum(PaymentKind), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    method = Column(Enum(PaymentMethod), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    notes = Column(Text, nullable=True)

    # Relationships
    invoice = relationship("Invoice", back_populates="payments")


class InvoiceSequence(Base, AgencyMixin):
    """Numérotation des factures, une ligne par agence"""
    __tablename__ = "invoice_sequences"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    current_number = Column(Integer, nullable=False, default=0)
    prefix = Column(String(10), nullable=True)  # Ex: "FAC-"

    __table_args__ = (
        UniqueConstraint("agency_id", name="uq_invoice_sequence_agency"),
    )
