from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
from datetime import datetime

from agence_api.modules.cash.models import OperationCategory, OperationDirection, PaymentMethod

# Saisie manuelle : ni facture ni fournisseur
MANUAL_CATEGORIES = frozenset({
    OperationCategory.CLIENT_RECHARGE,
    OperationCategory.FREE_SALE,
    OperationCategory.AGENT_SALARY,
    OperationCategory.MISC_EXPENSE,
    OperationCategory.OTHER,
})


class OperationCreate(BaseModel):
    """Saisie manuelle d'une entrée ou d'une sortie de caisse"""
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Montant positif")
    description: str = Field(..., min_length=1, max_length=255)
    category: OperationCategory = OperationCategory.OTHER
    method: PaymentMethod = PaymentMethod.ESPECES
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    client_id: Optional[UUID] = None
    agent_id: Optional[UUID] = None
    occurred_at: Optional[datetime] = None

    @field_validator('category')
    @classmethod
    def validate_manual_category(cls, v):
        if v not in MANUAL_CATEGORIES:
            allowed = ", ".join(sorted(c.value for c in MANUAL_CATEGORIES))
            raise ValueError(f"Catégorie réservée aux opérations liées (autorisées : {allowed})")
        return v


class OperationOut(BaseModel):
    id: UUID
    agency_id: UUID
    direction: OperationDirection
    amount: Decimal
    signed_amount: Decimal
    description: str
    category: OperationCategory
    method: PaymentMethod
    reference: Optional[str] = None
    notes: Optional[str] = None
    occurred_at: datetime
    invoice_id: Optional[UUID] = None
    client_id: Optional[UUID] = None
    agent_id: Optional[UUID] = None
    supplier_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    reversal_of_id: Optional[UUID] = None
    is_reversal: bool

    class Config:
        from_attributes = True


class OperationList(BaseModel):
    items: List[OperationOut]
    total: int
    limit: int
    offset: int


class ReversalOut(BaseModel):
    original: OperationOut
    reversal: OperationOut

    class Config:
        from_attributes = True


class BalanceOut(BaseModel):
    balance: Decimal
    total_inflows: Decimal
    total_outflows: Decimal
    operation_count: int
    currency: str


class ReportSummaryOut(BaseModel):
    balance: Decimal
    total_inflows: Decimal
    total_outflows: Decimal
    operation_count: int
    reversal_count: int


class ReportGroupOut(BaseModel):
    key: str
    total_inflows: Decimal
    total_outflows: Decimal
    balance: Decimal
    operation_count: int


class CashReportOut(BaseModel):
    agency_id: UUID
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    currency: str
    summary: ReportSummaryOut
    by_category: List[ReportGroupOut]
    by_method: List[ReportGroupOut]
    operations: List[OperationOut]
