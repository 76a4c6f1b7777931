from functools import lru_cache
from types import MappingProxyType
from typing import Iterable, List, Optional, Tuple
import logging

from agence_api.modules.registry.catalog import BASE_MODULES, MODULES_CATALOG
from agence_api.modules.registry.models import ModuleCategory, ModuleDefinition, Role

logger = logging.getLogger(__name__)


class ModuleRegistry:
    """
    Registre immuable des modules, construit une seule fois au démarrage.

    Injecté dans le PermissionResolver et les routers via
    ``get_module_registry`` ; le catalogue n'est jamais lu directement.
    """

    def __init__(self, modules: Iterable[ModuleDefinition], base_modules: Iterable[str] = BASE_MODULES):
        ordered: Tuple[ModuleDefinition, ...] = tuple(modules)
        index = {}
        for module in ordered:
            if module.id in index:
                raise ValueError(f"Module déclaré deux fois : {module.id}")
            index[module.id] = module
        self._modules = ordered
        self._index = MappingProxyType(index)
        self._base = frozenset(base_modules)
        unknown_base = self._base - set(index)
        if unknown_base:
            raise ValueError(f"Modules de base inconnus : {sorted(unknown_base)}")

    @classmethod
    def from_catalog(cls, catalog=MODULES_CATALOG) -> "ModuleRegistry":
        modules = [
            ModuleDefinition(
                id=module_id,
                name=name,
                description=description,
                category=category,
                essential=essential,
                roles=frozenset(roles),
                actions=tuple(actions),
            )
            for module_id, name, description, category, essential, roles, actions in catalog
        ]
        return cls(modules)

    @property
    def base_modules(self) -> frozenset:
        return self._base

    def get(self, module_id: str) -> Optional[ModuleDefinition]:
        return self._index.get(module_id)

    def __contains__(self, module_id: str) -> bool:
        return module_id in self._index

    def __iter__(self):
        return iter(self._modules)

    def __len__(self) -> int:
        return len(self._modules)

    def all_ids(self) -> List[str]:
        return [m.id for m in self._modules]

    def by_role(self, role: Role) -> List[ModuleDefinition]:
        return [m for m in self._modules if m.is_available_to(role)]

    def by_category(self, category: ModuleCategory) -> List[ModuleDefinition]:
        return [m for m in self._modules if m.category == category]

    def essentials(self) -> List[ModuleDefinition]:
        return [m for m in self._modules if m.essential]

    def superadmin_modules(self) -> List[ModuleDefinition]:
        return self.by_role(Role.SUPERADMIN)

    def agency_modules(self) -> List[ModuleDefinition]:
        """Modules activables par une agence (hors administration plateforme)."""
        superadmin_only = {m.id for m in self._modules if m.roles == frozenset({Role.SUPERADMIN})}
        return [m for m in self.by_role(Role.AGENCE) if m.id not in superadmin_only]

    def unknown_ids(self, module_ids: Iterable[str]) -> List[str]:
        return sorted({mid for mid in module_ids if mid not in self._index})


@lru_cache
def get_module_registry() -> ModuleRegistry:
    registry = ModuleRegistry.from_catalog()
    logger.info(f"Module registry loaded with {len(registry)} modules")
    return registry
