"""
Principals and agency context consumed by the PermissionResolver.

A principal is a tagged union over the three roles; each variant only
carries the data its rules need (an Agent carries its permission records,
an AgencyAdmin only its agency).
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Tuple, Union
from uuid import UUID
import logging

from agence_api.modules.registry.models import Action

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModulePermission:
    module: str
    actions: FrozenSet[Action]

    @classmethod
    def from_record(cls, module: str, actions: Iterable[str]) -> "ModulePermission":
        parsed = set()
        for raw in actions or []:
            try:
                parsed.add(Action(raw))
            except ValueError:
                logger.warning(f"Ignoring unknown action '{raw}' on module '{module}'")
        return cls(module=module, actions=frozenset(parsed))


@dataclass(frozen=True)
class Superadmin:
    user_id: UUID


@dataclass(frozen=True)
class AgencyAdmin:
    user_id: UUID
    agency_id: UUID


@dataclass(frozen=True)
class Agent:
    user_id: UUID
    agency_id: UUID
    permissions: Tuple[ModulePermission, ...] = ()

    def permission_for(self, module_id: str) -> Optional[ModulePermission]:
        return next((p for p in self.permissions if p.module == module_id), None)


Principal = Union[Superadmin, AgencyAdmin, Agent]


@dataclass(frozen=True)
class AgencyContext:
    """Already loaded agency state; the resolver never fetches it."""
    agency_id: UUID
    active_modules: FrozenSet[str] = field(default_factory=frozenset)
    requested_modules: FrozenSet[str] = field(default_factory=frozenset)
