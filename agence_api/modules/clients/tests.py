"""
Tests du module Clients (cloisonnement par agence, désactivation)
"""
from decimal import Decimal

import pytest

from agence_api.common.exceptions import NotFoundError, ValidationError
from agence_api.conftest import auth_headers, make_invoice
from agence_api.modules.clients.models import ClientStatus, ClientType
from agence_api.modules.clients.schemas import ClientCreate, ClientUpdate
from agence_api.modules.clients.service import ClientService
from agence_api.modules.invoices.payments import InvoicePaymentService


@pytest.fixture
def sample_client_data():
    return {
        "last_name": "Meziane",
        "first_name": "Lina",
        "email": "lina.meziane@mail.dz",
        "phone": "0770 11 22 33",
        "city": "Constantine",
    }


class TestClientService:

    def test_create_and_get(self, db_session, agency, sample_client_data):
        service = ClientService(db_session)
        client = service.create_client(ClientCreate(**sample_client_data), agency.id)
        assert client.status == ClientStatus.ACTIF
        assert client.country == "Algérie"
        assert client.display_name == "Lina Meziane"
        assert service.get_client(client.id, agency.id).id == client.id

    def test_company_display_name(self, db_session, agency):
        client = ClientService(db_session).create_client(ClientCreate(
            last_name="Touati", company_name="Sonatrach Voyages", client_type=ClientType.ENTREPRISE,
            phone="021 55 66 77",
        ), agency.id)
        assert client.display_name == "Sonatrach Voyages"

    def test_duplicate_email_in_agency(self, db_session, agency, sample_client_data):
        service = ClientService(db_session)
        service.create_client(ClientCreate(**sample_client_data), agency.id)
        with pytest.raises(ValidationError):
            service.create_client(ClientCreate(**sample_client_data), agency.id)

    def test_same_email_in_other_agency(self, db_session, agency, other_agency, sample_client_data):
        service = ClientService(db_session)
        service.create_client(ClientCreate(**sample_client_data), agency.id)
        service.create_client(ClientCreate(**sample_client_data), other_agency.id)

    def test_isolation(self, db_session, other_agency, sample_client):
        with pytest.raises(NotFoundError):
            ClientService(db_session).get_client(sample_client.id, other_agency.id)

    def test_search(self, db_session, agency, sample_client, sample_client_data):
        service = ClientService(db_session)
        service.create_client(ClientCreate(**sample_client_data), agency.id)
        clients, total = service.list_clients(agency.id, search="menia")
        assert total == 0
        clients, total = service.list_clients(agency.id, search="mez")
        assert [c.last_name for c in clients] == ["Meziane"]

    def test_update_and_deactivate(self, db_session, agency, sample_client):
        service = ClientService(db_session)
        client = service.update_client(sample_client.id, ClientUpdate(city="Tlemcen"), agency.id)
        assert client.city == "Tlemcen"
        client = service.deactivate_client(sample_client.id, agency.id)
        assert client.status == ClientStatus.INACTIF
        clients, total = service.list_clients(agency.id, status=ClientStatus.ACTIF)
        assert total == 0


class TestOutstandingBalance:

    def test_balance_counts_open_invoices_only(self, db_session, agency, sample_client):
        payments = InvoicePaymentService(db_session)
        partial = make_invoice(db_session, agency, sample_client, total=Decimal("1200.00"))
        payments.pay_partial(partial.id, 500, agency_id=agency.id)
        make_invoice(db_session, agency, sample_client, total=Decimal("300.00"), send=False)
        settled = make_invoice(db_session, agency, sample_client, total=Decimal("400.00"))
        payments.pay_full(settled.id, agency_id=agency.id)
        cancelled = make_invoice(db_session, agency, sample_client, total=Decimal("900.00"))
        payments.cancel_invoice(cancelled.id, agency.id, "Voyage annulé")

        assert ClientService(db_session).outstanding_balance(sample_client.id, agency.id) == Decimal("700.00")

    def test_balance_without_invoices(self, db_session, agency, sample_client):
        assert ClientService(db_session).outstanding_balance(sample_client.id, agency.id) == Decimal("0.00")
        assert ClientService(db_session).outstanding_balances(agency.id, []) == {}

    def test_balance_in_client_routes(self, http_client, db_session, agency_admin, agency, sample_client):
        make_invoice(db_session, agency, sample_client, total=Decimal("650.00"))
        headers = auth_headers(agency_admin)

        response = http_client.get(f"/clients/{sample_client.id}", headers=headers)
        assert Decimal(response.json()["outstanding_balance"]) == Decimal("650.00")

        items = http_client.get("/clients", headers=headers).json()["items"]
        assert [Decimal(c["outstanding_balance"]) for c in items] == [Decimal("650.00")]


class TestClientRoutes:

    def test_crud(self, http_client, agency_admin, sample_client_data):
        headers = auth_headers(agency_admin)
        response = http_client.post("/clients", headers=headers, json=sample_client_data)
        assert response.status_code == 201
        client_id = response.json()["id"]

        response = http_client.get("/clients", headers=headers, params={"search": "lina"})
        assert response.json()["total"] == 1

        response = http_client.delete(f"/clients/{client_id}", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "inactif"

    def test_invalid_email(self, http_client, agency_admin, sample_client_data):
        sample_client_data["email"] = "pas-un-email"
        response = http_client.post("/clients", headers=auth_headers(agency_admin), json=sample_client_data)
        assert response.status_code == 422
