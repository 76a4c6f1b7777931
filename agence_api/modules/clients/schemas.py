from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from agence_api.modules.clients.models import ClientStatus, ClientType


class ClientBase(BaseModel):
    last_name: str = Field(..., min_length=1, max_length=100)
    first_name: Optional[str] = Field(None, max_length=100)
    company_name: Optional[str] = Field(None, max_length=150)
    client_type: ClientType = ClientType.PARTICULIER
    email: Optional[EmailStr] = None
    phone: str = Field(..., min_length=4, max_length=30)
    address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field("Algérie", max_length=100)
    notes: Optional[str] = None


class ClientCreate(ClientBase):
    pass


class ClientUpdate(BaseModel):
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    first_name: Optional[str] = Field(None, max_length=100)
    company_name: Optional[str] = Field(None, max_length=150)
    client_type: Optional[ClientType] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, min_length=4, max_length=30)
    address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    status: Optional[ClientStatus] = None
    notes: Optional[str] = None


class ClientOut(ClientBase):
    id: UUID
    email: Optional[str] = None
    status: ClientStatus
    display_name: str
    outstanding_balance: Decimal = Decimal("0.00")
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ClientList(BaseModel):
    items: List[ClientOut]
    total: int
    limit: int
    offset: int
