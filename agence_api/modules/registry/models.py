"""
Types du registre des modules.

Le registre est une configuration statique du processus : il n'est jamais
persisté. Seul le sous-ensemble des modules actifs d'une agence est stocké
sur l'entité Agency.
"""
from dataclasses import dataclass
from typing import FrozenSet, Tuple
import enum


class Role(str, enum.Enum):
    SUPERADMIN = "superadmin"
    AGENCE = "agence"      # propriétaire / administrateur d'agence
    AGENT = "agent"        # employé avec permissions fines par module


class Action(str, enum.Enum):
    READ = "lire"
    CREATE = "creer"
    UPDATE = "modifier"
    DELETE = "supprimer"
    EXPORT = "exporter"


class ModuleCategory(str, enum.Enum):
    PRINCIPAL = "principal"
    CLIENT = "client"
    FOURNISSEUR = "fournisseur"
    PRESTATIONS = "prestations"
    VOYAGE = "voyage"
    COMPTABILITE = "comptabilite"
    ANALYSE = "analyse"
    ADMINISTRATION = "administration"
    SYSTEME = "systeme"


class ModuleStatus(str, enum.Enum):
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class ModuleDefinition:
    id: str
    name: str
    description: str
    category: ModuleCategory
    essential: bool
    roles: FrozenSet[Role]
    actions: Tuple[Action, ...]

    def is_available_to(self, role: Role) -> bool:
        return role in self.roles

    def allows(self, action: Action) -> bool:
        return action in self.actions
