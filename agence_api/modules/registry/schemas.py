from pydantic import BaseModel
from typing import List

from agence_api.modules.registry.models import Action, ModuleCategory, Role


class ModuleOut(BaseModel):
    id: str
    name: str
    description: str
    category: ModuleCategory
    essential: bool
    roles: List[Role]
    actions: List[Action]

    class Config:
        from_attributes = True


class ModuleList(BaseModel):
    modules: List[ModuleOut]
    total: int
