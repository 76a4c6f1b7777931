from typing import Optional

from fastapi import APIRouter, Depends

from agence_api.common.exceptions import NotFoundError
from agence_api.modules.auth.dependencies import get_auth_context
from agence_api.modules.registry.models import ModuleCategory, ModuleDefinition, Role
from agence_api.modules.registry.schemas import ModuleList, ModuleOut
from agence_api.modules.registry.service import ModuleRegistry, get_module_registry

registry_router = APIRouter(
    prefix="/modules",
    tags=["Modules"],
    dependencies=[Depends(get_auth_context)],
)


def _to_out(module: ModuleDefinition) -> ModuleOut:
    return ModuleOut(
        id=module.id,
        name=module.name,
        description=module.description,
        category=module.category,
        essential=module.essential,
        roles=sorted(module.roles, key=lambda r: r.value),
        actions=list(module.actions),
    )


@registry_router.get("", response_model=ModuleList)
def list_modules(
    role: Optional[Role] = None,
    category: Optional[ModuleCategory] = None,
    essential: Optional[bool] = None,
    registry: ModuleRegistry = Depends(get_module_registry),
):
    """Catalogue des modules, filtrable par rôle, catégorie ou caractère essentiel."""
    modules = list(registry)
    if role is not None:
        modules = [m for m in modules if m.is_available_to(role)]
    if category is not None:
        modules = [m for m in modules if m.category == category]
    if essential is not None:
        modules = [m for m in modules if m.essential == essential]
    return ModuleList(modules=[_to_out(m) for m in modules], total=len(modules))


@registry_router.get("/{module_id}", response_model=ModuleOut)
def get_module(module_id: str, registry: ModuleRegistry = Depends(get_module_registry)):
    module = registry.get(module_id)
    if module is None:
        raise NotFoundError("Module", module_id)
    return _to_out(module)
