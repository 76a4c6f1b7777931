from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from agence_api.modules.permissions.models import AgencyContext, Principal
from agence_api.modules.registry.models import Action, Role


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class PermissionIn(BaseModel):
    module: str = Field(..., min_length=1, max_length=50)
    actions: List[Action] = Field(default_factory=list)


class PermissionOut(BaseModel):
    module: str
    actions: List[Action]

    class Config:
        from_attributes = True


class UserOut(BaseModel):
    id: UUID
    email: str
    first_name: str
    last_name: str
    role: Role
    agency_id: Optional[UUID]
    is_active: bool
    last_login: Optional[datetime] = None
    permissions: List[PermissionOut] = []

    class Config:
        from_attributes = True


class AgentCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    permissions: List[PermissionIn] = Field(default_factory=list)

    @field_validator('permissions')
    @classmethod
    def validate_unique_modules(cls, v):
        modules = [p.module for p in v]
        if len(modules) != len(set(modules)):
            raise ValueError('Un module ne peut apparaître qu\'une fois')
        return v


class AgentPermissionsUpdate(BaseModel):
    permissions: List[PermissionIn]


@dataclass(frozen=True)
class AuthContext:
    """Contexte d'authentification résolu pour une requête."""
    user_id: UUID
    role: Role
    principal: Principal
    agency_id: Optional[UUID] = None
    agency: Optional[AgencyContext] = None
