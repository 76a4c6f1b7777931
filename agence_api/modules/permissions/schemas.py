from pydantic import BaseModel
from typing import List, Optional
from uuid import UUID

from agence_api.modules.registry.models import Action, ModuleStatus, Role


class ModuleAccessOut(BaseModel):
    id: str
    name: str
    status: ModuleStatus
    actions: List[Action]


class MyPermissionsOut(BaseModel):
    user_id: UUID
    role: Role
    agency_id: Optional[UUID] = None
    accessible_modules: List[str]
    modules: List[ModuleAccessOut]
