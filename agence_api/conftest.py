"""
Fixtures partagées : base SQLite en mémoire, agences, utilisateurs,
client HTTP avec jetons JWT réels.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")

from decimal import Decimal
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agence_api.database.database import Base, get_db
from agence_api.main import app
from agence_api.modules.agencies.models import Agency
from agence_api.modules.auth.models import AgentPermission, User
from agence_api.modules.auth.utils import create_access_token
from agence_api.modules.clients.models import Client
from agence_api.modules.invoices.schemas import InvoiceCreate, InvoiceLineItemCreate
from agence_api.modules.invoices.service import InvoiceService
from agence_api.modules.registry.models import Role

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Hash bcrypt de "secret123", calculé une fois
_PASSWORD_HASH = None


def password_hash():
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        from agence_api.modules.auth.utils import hash_password
        _PASSWORD_HASH = hash_password("secret123")
    return _PASSWORD_HASH


def token_for(user: User) -> str:
    return create_access_token({
        "sub": str(user.id),
        "role": user.role.value,
        "agency_id": str(user.agency_id) if user.agency_id else None,
    })


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def http_client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_agency(db, name="Sahara Voyages", active_modules=("caisse", "factures", "clients", "fournisseurs")):
    agency = Agency(name=name, email=f"{name.split()[0].lower()}@agence.dz",
                    active_modules=list(active_modules), requested_modules=[])
    db.add(agency)
    db.commit()
    db.refresh(agency)
    return agency


def make_user(db, email, role, agency=None, permissions=None, is_active=True):
    user = User(
        email=email,
        password=password_hash(),
        first_name="Test",
        last_name=email.split("@")[0].capitalize(),
        role=role,
        agency_id=agency.id if agency else None,
        is_active=is_active,
    )
    db.add(user)
    db.flush()
    for module_id, actions in (permissions or {}).items():
        db.add(AgentPermission(user_id=user.id, module=module_id, actions=list(actions)))
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def agency(db_session):
    return make_agency(db_session)


@pytest.fixture
def other_agency(db_session):
    return make_agency(db_session, name="Atlas Tours")


@pytest.fixture
def superadmin(db_session):
    return make_user(db_session, "root@agence.dz", Role.SUPERADMIN)


@pytest.fixture
def agency_admin(db_session, agency):
    return make_user(db_session, "admin@sahara.dz", Role.AGENCE, agency)


@pytest.fixture
def agent(db_session, agency):
    return make_user(db_session, "agent@sahara.dz", Role.AGENT, agency, permissions={"clients": ["lire"]})


@pytest.fixture
def sample_client(db_session, agency):
    client = Client(agency_id=agency.id, last_name="Benali", first_name="Karim",
                    phone="0550 12 34 56", email="karim.benali@mail.dz")
    db_session.add(client)
    db_session.commit()
    db_session.refresh(client)
    return client


def make_invoice(db, agency, client, total=Decimal("1200.00"), send=True, due_date=None):
    data = InvoiceCreate(
        client_id=client.id,
        issue_date=date.today() - timedelta(days=10),
        due_date=due_date,
        line_items=[InvoiceLineItemCreate(description="Billet Alger-Paris", quantity=1, unit_price=total)],
        send=send,
    )
    return InvoiceService(db).create_invoice(data, agency.id)


@pytest.fixture
def sample_invoice(db_session, agency, sample_client):
    return make_invoice(db_session, agency, sample_client)
