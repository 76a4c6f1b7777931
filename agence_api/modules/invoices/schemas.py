from pydantic import BaseModel, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime

from agence_api.modules.cash.models import PaymentMethod
from agence_api.modules.cash.schemas import OperationOut
from agence_api.modules.invoices.models import InvoiceStatus, PaymentKind


# Invoice Line Item Schemas
class InvoiceLineItemCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(..., gt=0, description="Quantité strictement positive")
    unit_price: Decimal = Field(..., ge=0, description="Prix unitaire HT")
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100, description="Taux de TVA en %")


class InvoiceLineItemOut(BaseModel):
    id: UUID
    position: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    line_amount: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True


# Invoice Schemas
class InvoiceCreate(BaseModel):
    client_id: UUID
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    line_items: List[InvoiceLineItemCreate] = Field(..., min_length=1)
    send: bool = Field(False, description="Envoyer immédiatement (statut sent)")

    @model_validator(mode='after')
    def validate_dates(self):
        if self.issue_date and self.due_date and self.due_date < self.issue_date:
            raise ValueError("La date d'échéance doit être postérieure à la date d'émission")
        return self


class InvoiceLinesUpdate(BaseModel):
    line_items: List[InvoiceLineItemCreate] = Field(..., min_length=1)
    due_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceOut(BaseModel):
    id: UUID
    agency_id: UUID
    client_id: UUID
    number: str
    status: InvoiceStatus
    issue_date: date
    due_date: Optional[date] = None
    currency: str
    notes: Optional[str] = None
    amount_excl_tax: Decimal
    amount_incl_tax: Decimal
    amount_paid: Decimal
    credited_amount: Decimal
    amount_remaining: Decimal
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvoicePaymentOut(BaseModel):
    id: UUID
    operation_id: UUID
    reverses_id: Optional[UUID] = None
    kind: PaymentKind
    amount: Decimal
    method: PaymentMethod
    paid_at: datetime
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class InvoiceDetail(InvoiceOut):
    line_items: List[InvoiceLineItemOut] = []
    payments: List[InvoicePaymentOut] = []


class InvoiceList(BaseModel):
    items: List[InvoiceOut]
    total: int
    limit: int
    offset: int


# Payment Schemas
class FullPaymentRequest(BaseModel):
    method: PaymentMethod = PaymentMethod.ESPECES
    notes: Optional[str] = None


class AmountRequest(BaseModel):
    """Versement partiel, avoir ou remboursement"""
    amount: Decimal = Field(..., gt=0, description="Montant strictement positif")
    method: PaymentMethod = PaymentMethod.ESPECES
    notes: Optional[str] = None

    @field_validator('amount')
    @classmethod
    def validate_amount_precision(cls, v):
        if v.as_tuple().exponent < -2:
            raise ValueError('Le montant ne peut pas avoir plus de 2 décimales')
        return v


class InvoiceCancelRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)


class PaymentResult(BaseModel):
    invoice: InvoiceOut
    operation: OperationOut


class OperationCancelResult(BaseModel):
    original: OperationOut
    reversal: OperationOut
    invoice: Optional[InvoiceOut] = None
