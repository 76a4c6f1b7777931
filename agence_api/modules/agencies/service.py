from typing import Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from agence_api.common.exceptions import InvalidStateError, NotFoundError, ValidationError
from agence_api.modules.agencies.models import Agency
from agence_api.modules.agencies.schemas import AgencyCreate
from agence_api.modules.auth.service import AuthService
from agence_api.modules.permissions.models import AgencyContext
from agence_api.modules.registry.models import Role
from agence_api.modules.registry.service import ModuleRegistry, get_module_registry

logger = logging.getLogger(__name__)


class AgencyService:
    """
    Agences et cycle de vie de leurs modules :
    demande (agence) -> approbation ou rejet (superadmin) -> désactivation.
    """

    def __init__(self, db: Session, registry: Optional[ModuleRegistry] = None):
        self.db = db
        self.registry = registry or get_module_registry()

    def get_agency(self, agency_id: UUID) -> Agency:
        agency = self.db.query(Agency).filter(Agency.id == agency_id).first()
        if agency is None:
            raise NotFoundError("Agence", agency_id)
        return agency

    def list_agencies(self, limit: int = 100, offset: int = 0) -> List[Agency]:
        return self.db.query(Agency).order_by(Agency.name).offset(offset).limit(limit).all()

    def load_context(self, agency_id: UUID) -> AgencyContext:
        return self.get_agency(agency_id).to_context()

    def create_agency(self, data: AgencyCreate) -> Agency:
        """Les modules essentiels sont activés d'office, en plus de ceux choisis."""
        essentials = [m.id for m in self.registry.essentials()
                      if m.is_available_to(Role.AGENCE) and m.id not in self.registry.base_modules]
        active = self._validate_ids(essentials + list(data.active_modules))
        agency = Agency(
            name=data.name,
            email=data.email,
            phone=data.phone,
            address=data.address,
            active_modules=active,
            requested_modules=[],
        )
        self.db.add(agency)
        self.db.flush()

        if data.admin is not None:
            AuthService(self.db, self.registry).create_user(
                email=data.admin.email,
                password=data.admin.password,
                first_name=data.admin.first_name,
                last_name=data.admin.last_name,
                role=Role.AGENCE,
                agency_id=agency.id,
            )

        self.db.commit()
        self.db.refresh(agency)
        logger.info(f"Agency {agency.id} created with modules {active}")
        return agency

    def request_modules(self, agency_id: UUID, module_ids: Iterable[str]) -> Agency:
        """
        Demande d'activation. Les identifiants inconnus sont rejetés ;
        ceux déjà actifs ou déjà demandés sont ignorés.
        """
        requested = self._validate_ids(module_ids)
        agency = self.get_agency(agency_id)

        active = set(agency.active_modules or [])
        pending = list(agency.requested_modules or [])
        added = [m for m in requested
                 if m not in active and m not in pending and m not in self.registry.base_modules]
        if added:
            agency.requested_modules = pending + added
            self.db.commit()
            self.db.refresh(agency)
            logger.info(f"Agency {agency_id} requested modules {added}")
        return agency

    def approve_modules(self, agency_id: UUID, module_ids: Optional[Iterable[str]] = None) -> Agency:
        agency = self.get_agency(agency_id)
        pending = list(agency.requested_modules or [])
        to_approve = self._select_pending(pending, module_ids)

        active = list(agency.active_modules or [])
        agency.active_modules = active + [m for m in to_approve if m not in active]
        agency.requested_modules = [m for m in pending if m not in to_approve]
        self.db.commit()
        self.db.refresh(agency)
        logger.info(f"Agency {agency_id}: modules approved {to_approve}")
        return agency

    def reject_modules(self, agency_id: UUID, module_ids: Optional[Iterable[str]] = None) -> Agency:
        agency = self.get_agency(agency_id)
        pending = list(agency.requested_modules or [])
        to_reject = self._select_pending(pending, module_ids)

        agency.requested_modules = [m for m in pending if m not in to_reject]
        self.db.commit()
        self.db.refresh(agency)
        logger.info(f"Agency {agency_id}: module requests rejected {to_reject}")
        return agency

    def deactivate_module(self, agency_id: UUID, module_id: str) -> Agency:
        if module_id in self.registry.base_modules:
            raise ValidationError("Un module de base ne peut pas être désactivé", module=module_id)
        self._validate_ids([module_id])
        if self.registry.get(module_id).essential:
            raise ValidationError("Un module essentiel ne peut pas être désactivé", module=module_id)
        agency = self.get_agency(agency_id)
        active = list(agency.active_modules or [])
        if module_id not in active:
            raise InvalidStateError("Module non actif pour cette agence", module=module_id)

        agency.active_modules = [m for m in active if m != module_id]
        self.db.commit()
        self.db.refresh(agency)
        logger.info(f"Agency {agency_id}: module {module_id} deactivated")
        return agency

    def _validate_ids(self, module_ids: Iterable[str]) -> List[str]:
        ids = list(dict.fromkeys(module_ids))
        unknown = self.registry.unknown_ids(ids)
        if unknown:
            raise ValidationError(f"Modules inconnus : {', '.join(unknown)}", modules=",".join(unknown))
        eligible = {m.id for m in self.registry.agency_modules()}
        not_eligible = [m for m in ids if m not in eligible]
        if not_eligible:
            raise ValidationError(
                f"Modules non disponibles pour une agence : {', '.join(not_eligible)}",
                modules=",".join(not_eligible),
            )
        return ids

    @staticmethod
    def _select_pending(pending: List[str], module_ids: Optional[Iterable[str]]) -> List[str]:
        if module_ids is None:
            return list(pending)
        selected = list(dict.fromkeys(module_ids))
        missing = [m for m in selected if m not in pending]
        if missing:
            raise InvalidStateError(
                f"Aucune demande en attente pour : {', '.join(missing)}",
                modules=",".join(missing),
            )
        return selected
