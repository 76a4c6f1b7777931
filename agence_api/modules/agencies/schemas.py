from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class AgencyAdminCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)


class AgencyCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=150)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=255)
    active_modules: List[str] = Field(default_factory=list)
    admin: Optional[AgencyAdminCreate] = None


class AgencyOut(BaseModel):
    id: UUID
    name: str
    email: Optional[str]
    phone: Optional[str]
    address: Optional[str]
    is_active: bool
    active_modules: List[str]
    requested_modules: List[str]
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ModuleIdsRequest(BaseModel):
    modules: List[str] = Field(..., min_length=1)


class ModuleApprovalRequest(BaseModel):
    # None : approuver / rejeter toutes les demandes en attente
    modules: Optional[List[str]] = None
