from sqlalchemy import Column, String, Text, Enum, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
import enum

from agence_api.database.database import Base
from agence_api.common.mixins import AgencyMixin, TimestampMixin


class ClientType(enum.Enum):
    PARTICULIER = "particulier"
    ENTREPRISE = "entreprise"
    PARTENAIRE = "partenaire"


class ClientStatus(enum.Enum):
    ACTIF = "actif"
    INACTIF = "inactif"
    SUSPENDU = "suspendu"


class Client(Base, AgencyMixin, TimestampMixin):
    __tablename__ = "clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    last_name = Column(String(100), nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    company_name = Column(String(150), nullable=True)
    client_type = Column(Enum(ClientType), nullable=False, default=ClientType.PARTICULIER)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=False)
    address = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True, default="Algérie")
    status = Column(Enum(ClientStatus), nullable=False, default=ClientStatus.ACTIF, index=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("agency_id", "email", name="uq_client_agency_email"),
    )

    @property
    def display_name(self) -> str:
        if self.client_type == ClientType.ENTREPRISE and self.company_name:
            return self.company_name
        return " ".join(p for p in (self.first_name, self.last_name) if p)
