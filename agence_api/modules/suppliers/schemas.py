from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from agence_api.modules.cash.models import PaymentMethod
from agence_api.modules.cash.schemas import OperationOut
from agence_api.modules.suppliers.models import SupplierTransactionKind


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    contact_name: Optional[str] = Field(None, max_length=150)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=255)
    service_type: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class SupplierUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    contact_name: Optional[str] = Field(None, max_length=150)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=255)
    service_type: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class SupplierOut(BaseModel):
    id: UUID
    name: str
    contact_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    service_type: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool
    debt_balance: Decimal
    credit_balance: Decimal
    schema_version: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SupplierList(BaseModel):
    items: List[SupplierOut]
    total: int
    limit: int
    offset: int


class SupplierAmountRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod = PaymentMethod.ESPECES
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class SupplierDebtRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class SupplierCreditApplyRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, description="Par défaut : min(crédit, dette)")
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class SupplierTransactionOut(BaseModel):
    id: UUID
    supplier_id: UUID
    operation_id: Optional[UUID] = None
    reverses_id: Optional[UUID] = None
    kind: SupplierTransactionKind
    amount: Decimal
    debt_delta: Decimal
    credit_delta: Decimal
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SupplierMovementOut(BaseModel):
    supplier: SupplierOut
    transaction: SupplierTransactionOut
    operation: Optional[OperationOut] = None

    class Config:
        from_attributes = True
