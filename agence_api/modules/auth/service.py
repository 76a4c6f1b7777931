from datetime import datetime, timezone
from typing import Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session, selectinload

from agence_api.common.exceptions import (
    NotFoundError, PermissionDeniedError, ValidationError,
)
from agence_api.modules.auth.models import AgentPermission, User
from agence_api.modules.auth.schemas import PermissionIn, TokenResponse
from agence_api.modules.auth.utils import (
    ACCESS_TOKEN_EXPIRE_MINUTES, create_access_token, hash_password, verify_password,
)
from agence_api.modules.permissions.models import (
    Agent, AgencyAdmin, ModulePermission, Principal, Superadmin,
)
from agence_api.modules.registry.models import Role
from agence_api.modules.registry.service import ModuleRegistry, get_module_registry

logger = logging.getLogger(__name__)


def build_principal(user: User) -> Principal:
    """Construit le principal correspondant au rôle de l'utilisateur."""
    match user.role:
        case Role.SUPERADMIN:
            return Superadmin(user_id=user.id)
        case Role.AGENCE | Role.AGENT if user.agency_id is None:
            raise PermissionDeniedError("Utilisateur sans agence", user_id=user.id)
        case Role.AGENCE:
            return AgencyAdmin(user_id=user.id, agency_id=user.agency_id)
        case Role.AGENT:
            return Agent(
                user_id=user.id,
                agency_id=user.agency_id,
                permissions=tuple(
                    ModulePermission.from_record(p.module, p.actions) for p in user.permissions
                ),
            )
        case _:
            raise TypeError(f"Unsupported role: {user.role}")


class AuthService:
    """Authentification et gestion des comptes (administrateurs d'agence, agents)."""

    def __init__(self, db: Session, registry: Optional[ModuleRegistry] = None):
        self.db = db
        self.registry = registry or get_module_registry()

    def get_user(self, user_id: UUID) -> Optional[User]:
        return self.db.query(User).options(
            selectinload(User.permissions)
        ).filter(User.id == user_id).first()

    def authenticate(self, email: str, password: str) -> TokenResponse:
        user = self.db.query(User).filter(User.email == email.lower()).first()
        if user is None or not verify_password(password, user.password):
            logger.warning(f"Failed login attempt for {email}")
            raise PermissionDeniedError("Email ou mot de passe incorrect")
        if not user.is_active:
            raise PermissionDeniedError("Compte désactivé", user_id=user.id)

        user.last_login = datetime.now(timezone.utc)
        self.db.commit()

        token = create_access_token({
            "sub": str(user.id),
            "role": user.role.value,
            "agency_id": str(user.agency_id) if user.agency_id else None,
        })
        logger.info(f"User {user.id} logged in")
        return TokenResponse(access_token=token, expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60)

    def create_user(self, email: str, password: str, first_name: str, last_name: str,
                    role: Role, agency_id: Optional[UUID] = None) -> User:
        if role != Role.SUPERADMIN and agency_id is None:
            raise ValidationError("Une agence est requise pour ce rôle", role=role.value)
        if role == Role.SUPERADMIN and agency_id is not None:
            raise ValidationError("Le superadmin n'appartient à aucune agence")
        if self.db.query(User).filter(User.email == email.lower()).first():
            raise ValidationError("Cet email est déjà utilisé", email=email)

        user = User(
            email=email.lower(),
            password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=role,
            agency_id=agency_id,
            is_active=True,
        )
        self.db.add(user)
        self.db.flush()
        return user

    def create_agent(self, agency_id: UUID, email: str, password: str, first_name: str,
                     last_name: str, permissions: Iterable[PermissionIn] = ()) -> User:
        records = self._validate_permissions(permissions)
        user = self.create_user(email, password, first_name, last_name, Role.AGENT, agency_id)
        for module_id, actions in records:
            self.db.add(AgentPermission(user_id=user.id, module=module_id, actions=actions))
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"Agent {user.id} created in agency {agency_id} with {len(records)} module records")
        return user

    def list_agents(self, agency_id: UUID) -> List[User]:
        return self.db.query(User).options(selectinload(User.permissions)).filter(
            User.agency_id == agency_id,
            User.role == Role.AGENT,
        ).order_by(User.last_name, User.first_name).all()

    def set_agent_permissions(self, agency_id: UUID, agent_id: UUID,
                              permissions: Iterable[PermissionIn]) -> User:
        """Remplace l'ensemble des enregistrements (module, actions) d'un agent."""
        agent = self.db.query(User).filter(
            User.id == agent_id,
            User.agency_id == agency_id,
            User.role == Role.AGENT,
        ).first()
        if agent is None:
            raise NotFoundError("Agent", agent_id)

        records = self._validate_permissions(permissions)
        agent.permissions.clear()
        self.db.flush()
        for module_id, actions in records:
            agent.permissions.append(AgentPermission(module=module_id, actions=actions))
        self.db.commit()
        self.db.refresh(agent)
        logger.info(f"Permissions of agent {agent_id} replaced ({len(records)} modules)")
        return agent

    def _validate_permissions(self, permissions: Iterable[PermissionIn]):
        records = []
        seen = set()
        for perm in permissions:
            module = self.registry.get(perm.module)
            if module is None:
                raise ValidationError(f"Module inconnu : {perm.module}", module=perm.module)
            if not module.is_available_to(Role.AGENT):
                raise ValidationError(
                    f"Le module {perm.module} n'est pas attribuable à un agent", module=perm.module
                )
            if perm.module in seen:
                raise ValidationError(f"Module en double : {perm.module}", module=perm.module)
            seen.add(perm.module)
            undeclared = [a for a in perm.actions if not module.allows(a)]
            if undeclared:
                raise ValidationError(
                    f"Actions non disponibles sur {perm.module}",
                    module=perm.module,
                    actions=",".join(a.value for a in undeclared),
                )
            records.append((perm.module, sorted({a.value for a in perm.actions})))
        return records
