from typing import FrozenSet, Optional
import logging

from agence_api.modules.permissions.models import (
    Agent, AgencyAdmin, AgencyContext, Principal, Superadmin,
)
from agence_api.modules.registry.models import Action, ModuleStatus, Role
from agence_api.modules.registry.service import ModuleRegistry

logger = logging.getLogger(__name__)


class PermissionResolver:
    """
    Calcule l'accès d'un principal aux modules du registre.

    Fonctions pures : aucune lecture en base. Le contexte d'agence
    (modules actifs / demandés) est fourni déjà chargé par l'appelant.

    Règles :
      - dashboard et profile sont toujours accessibles ;
      - superadmin : modules ouverts au rôle superadmin, toutes actions déclarées ;
      - agence : modules de base + modules actifs de l'agence ouverts au rôle agence ;
      - agent : modules de base + modules dont l'enregistrement contient "lire",
        et uniquement les actions listées dans cet enregistrement.
    Un module inconnu renvoie False, jamais d'exception.
    """

    def __init__(self, registry: ModuleRegistry):
        self.registry = registry

    def accessible_modules(self, principal: Principal,
                           agency: Optional[AgencyContext] = None) -> FrozenSet[str]:
        base = set(self.registry.base_modules)

        match principal:
            case Superadmin():
                return frozenset(base | {m.id for m in self.registry.superadmin_modules()})
            case AgencyAdmin():
                if agency is None:
                    return frozenset(base)
                if agency.agency_id != principal.agency_id:
                    logger.warning(
                        f"Agency context {agency.agency_id} does not match admin {principal.user_id}"
                    )
                    return frozenset(base)
                eligible = {m.id for m in self.registry.by_role(Role.AGENCE)}
                return frozenset(base | (set(agency.active_modules) & eligible))
            case Agent():
                readable = {
                    p.module for p in principal.permissions
                    if Action.READ in p.actions and p.module in self.registry
                }
                return frozenset(base | readable)
            case _:
                raise TypeError(f"Unsupported principal type: {type(principal).__name__}")

    def has_permission(self, principal: Principal, agency: Optional[AgencyContext],
                       module_id: str, action: Action) -> bool:
        module = self.registry.get(module_id)
        if module is None:
            return False
        if module_id not in self.accessible_modules(principal, agency):
            return False

        match principal:
            case Agent() if module_id not in self.registry.base_modules:
                record = principal.permission_for(module_id)
                return record is not None and action in record.actions
            case _:
                return module.allows(action)

    def module_actions(self, principal: Principal, agency: Optional[AgencyContext],
                       module_id: str) -> FrozenSet[Action]:
        module = self.registry.get(module_id)
        if module is None:
            return frozenset()
        return frozenset(
            a for a in module.actions if self.has_permission(principal, agency, module_id, a)
        )

    def module_status(self, principal: Principal, agency: Optional[AgencyContext],
                      module_id: str) -> ModuleStatus:
        module = self.registry.get(module_id)
        if module is None:
            return ModuleStatus.INACTIVE

        if module_id in self.accessible_modules(principal, agency):
            return ModuleStatus.ACTIVE
        # modules essentiels toujours actifs côté administrateur d'agence
        if isinstance(principal, AgencyAdmin) and agency is not None and module.essential:
            return ModuleStatus.ACTIVE
        if agency is not None and module_id in agency.requested_modules:
            return ModuleStatus.PENDING
        return ModuleStatus.INACTIVE

    def ordered(self, module_ids) -> list:
        """Identifiants triés dans l'ordre du registre."""
        wanted = set(module_ids)
        return [m.id for m in self.registry if m.id in wanted]
