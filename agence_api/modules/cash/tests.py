"""
Tests du grand livre de caisse

- écriture, validations et immuabilité
- annulation par écriture compensatoire (une seule fois)
- solde commutatif et rapport par catégorie / mode de paiement
- cloisonnement par agence
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import permutations
from uuid import uuid4

import pytest

from agence_api.common.exceptions import (
    ImmutableRecordError, InvalidStateError, NotFoundError, ValidationError,
)
from agence_api.conftest import auth_headers, make_user
from agence_api.modules.cash.models import (
    Operation, OperationCategory, OperationDirection, PaymentMethod,
)
from agence_api.modules.cash.service import CashLedgerService, to_amount
from agence_api.modules.clients.models import Client
from agence_api.modules.registry.models import Role

ENTREE = OperationDirection.ENTREE
SORTIE = OperationDirection.SORTIE


@pytest.fixture
def ledger(db_session):
    return CashLedgerService(db_session)


class TestAmounts:

    def test_to_amount_rounds_to_cent(self):
        assert to_amount("10.006") == Decimal("10.01")
        assert to_amount(15) == Decimal("15.00")

    @pytest.mark.parametrize("value", [0, -5, "abc", None, "NaN"])
    def test_to_amount_rejects(self, value):
        with pytest.raises(ValidationError):
            to_amount(value)


class TestRecordOperation:

    def test_record_inflow(self, ledger, agency):
        op = ledger.record_operation(ENTREE, "250.00", "Vente billet", agency.id,
                                     OperationCategory.FREE_SALE, PaymentMethod.CHEQUE)
        assert op.id is not None
        assert op.amount == Decimal("250.00")
        assert op.signed_amount == Decimal("250.00")
        assert op.category == OperationCategory.FREE_SALE
        assert op.is_reversal is False

    def test_accepts_raw_values(self, ledger, agency):
        op = ledger.record_operation("sortie", 40, "Fournitures", agency.id, "misc_expense", "virement")
        assert op.direction == SORTIE
        assert op.method == PaymentMethod.VIREMENT
        assert op.signed_amount == Decimal("-40.00")

    def test_rejects_non_positive_amount(self, ledger, agency):
        with pytest.raises(ValidationError):
            ledger.record_operation(ENTREE, 0, "Rien", agency.id)

    def test_rejects_missing_agency(self, ledger):
        with pytest.raises(ValidationError):
            ledger.record_operation(ENTREE, 10, "Sans agence", None)

    def test_rejects_unknown_method(self, ledger, agency):
        with pytest.raises(ValidationError):
            ledger.record_operation(ENTREE, 10, "Carte", agency.id, method="carte_bleue")

    def test_rejects_empty_description(self, ledger, agency):
        with pytest.raises(ValidationError):
            ledger.record_operation(ENTREE, 10, "   ", agency.id)

    def test_client_of_another_agency_is_rejected(self, db_session, ledger, agency, other_agency):
        foreign = Client(agency_id=other_agency.id, last_name="Amrani", phone="0661 00 00 00")
        db_session.add(foreign)
        db_session.commit()
        with pytest.raises(NotFoundError):
            ledger.record_operation(ENTREE, 10, "Recharge", agency.id,
                                    OperationCategory.CLIENT_RECHARGE, client_id=foreign.id)
        assert db_session.query(Operation).count() == 0

    def test_client_of_same_agency(self, ledger, agency, sample_client):
        op = ledger.record_operation(ENTREE, 10, "Recharge", agency.id,
                                     OperationCategory.CLIENT_RECHARGE, client_id=sample_client.id)
        assert op.client_id == sample_client.id

    def test_agent_of_another_agency_is_rejected(self, db_session, ledger, agency, other_agency):
        foreign_agent = make_user(db_session, "agent@atlas.dz", Role.AGENT, other_agency)
        with pytest.raises(NotFoundError):
            ledger.record_operation(SORTIE, 30000, "Salaire", agency.id,
                                    OperationCategory.AGENT_SALARY, agent_id=foreign_agent.id)

    def test_agent_of_same_agency(self, ledger, agency, agent):
        op = ledger.record_operation(SORTIE, 30000, "Salaire", agency.id,
                                     OperationCategory.AGENT_SALARY, agent_id=agent.id)
        assert op.agent_id == agent.id


class TestImmutability:

    def test_update_is_rejected(self, db_session, ledger, agency):
        op = ledger.record_operation(ENTREE, 100, "Vente", agency.id)
        op.amount = Decimal("1.00")
        with pytest.raises(ImmutableRecordError):
            db_session.commit()
        db_session.rollback()
        db_session.refresh(op)
        assert op.amount == Decimal("100.00")

    def test_delete_is_rejected(self, db_session, ledger, agency):
        op = ledger.record_operation(ENTREE, 100, "Vente", agency.id)
        db_session.delete(op)
        with pytest.raises(ImmutableRecordError):
            db_session.commit()
        db_session.rollback()
        assert db_session.query(Operation).count() == 1


class TestCancelOperation:

    def test_reversal_leaves_original_untouched(self, ledger, agency):
        op = ledger.record_operation(ENTREE, 300, "Vente", agency.id, OperationCategory.FREE_SALE)
        result = ledger.cancel_operation(op.id, agency.id)

        assert result.original.id == op.id
        assert result.original.amount == Decimal("300.00")
        assert result.original.direction == ENTREE
        assert result.reversal.direction == SORTIE
        assert result.reversal.amount == Decimal("300.00")
        assert result.reversal.reversal_of_id == op.id
        assert ledger.compute_balance(agency.id)["balance"] == Decimal("0.00")

    def test_second_cancellation_is_rejected(self, ledger, agency):
        op = ledger.record_operation(ENTREE, 300, "Vente", agency.id)
        ledger.cancel_operation(op.id, agency.id)
        with pytest.raises(InvalidStateError):
            ledger.cancel_operation(op.id, agency.id)

        balance = ledger.compute_balance(agency.id)
        assert balance["operation_count"] == 2
        assert balance["balance"] == Decimal("0.00")

    def test_reversal_cannot_be_cancelled(self, ledger, agency):
        op = ledger.record_operation(ENTREE, 300, "Vente", agency.id)
        reversal = ledger.cancel_operation(op.id, agency.id).reversal
        with pytest.raises(InvalidStateError):
            ledger.cancel_operation(reversal.id, agency.id)

    def test_other_agency_operation_not_found(self, ledger, agency, other_agency):
        op = ledger.record_operation(ENTREE, 300, "Vente", agency.id)
        with pytest.raises(NotFoundError):
            ledger.cancel_operation(op.id, other_agency.id)

    def test_invoice_linked_operation_requires_invoice_flow(self, ledger, agency, sample_invoice):
        op = ledger.record_operation(ENTREE, 100, "Paiement", agency.id, OperationCategory.INVOICE_PAYMENT,
                                     invoice_id=sample_invoice.id)
        with pytest.raises(InvalidStateError):
            ledger.cancel_operation(op.id, agency.id)


class TestBalance:

    MOVEMENTS = [
        (ENTREE, "500.00"),
        (SORTIE, "120.50"),
        (ENTREE, "75.25"),
        (SORTIE, "10.00"),
    ]

    def test_balance(self, ledger, agency):
        for direction, amount in self.MOVEMENTS:
            ledger.record_operation(direction, amount, "Mouvement", agency.id)
        balance = ledger.compute_balance(agency.id)
        assert balance == {
            "balance": Decimal("444.75"),
            "total_inflows": Decimal("575.25"),
            "total_outflows": Decimal("130.50"),
            "operation_count": 4,
        }

    def test_balance_independent_of_insertion_order(self, ledger):
        results = set()
        for order in list(permutations(self.MOVEMENTS))[:6]:
            # un grand livre vide par ordre d'insertion
            agency_id = uuid4()
            for direction, amount in order:
                ledger.record_operation(direction, amount, "Mouvement", agency_id)
            results.add(ledger.compute_balance(agency_id)["balance"])
        assert results == {Decimal("444.75")}

    def test_empty_ledger(self, ledger):
        assert ledger.compute_balance(uuid4())["balance"] == Decimal("0.00")

    def test_tenant_isolation(self, ledger, agency, other_agency):
        ledger.record_operation(ENTREE, 1000, "Vente A", agency.id)
        ledger.record_operation(ENTREE, 40, "Vente B", other_agency.id)

        assert ledger.compute_balance(other_agency.id)["balance"] == Decimal("40.00")
        report = ledger.generate_report(other_agency.id)
        assert [op.description for op in report["operations"]] == ["Vente B"]
        operations, total = ledger.list_operations(other_agency.id)
        assert total == 1

    def test_period_filter(self, ledger, agency):
        now = datetime.now(timezone.utc)
        ledger.record_operation(ENTREE, 100, "Ancienne", agency.id, occurred_at=now - timedelta(days=40))
        ledger.record_operation(ENTREE, 50, "Récente", agency.id, occurred_at=now - timedelta(days=1))

        balance = ledger.compute_balance(agency.id, date_from=now - timedelta(days=7))
        assert balance["balance"] == Decimal("50.00")
        with pytest.raises(ValidationError):
            ledger.compute_balance(agency.id, date_from=now, date_to=now - timedelta(days=1))


class TestReport:

    def test_breakdowns(self, ledger, agency):
        ledger.record_operation(ENTREE, 200, "Vente", agency.id, OperationCategory.FREE_SALE, PaymentMethod.ESPECES)
        ledger.record_operation(ENTREE, 300, "Vente", agency.id, OperationCategory.FREE_SALE, PaymentMethod.CHEQUE)
        salary = ledger.record_operation(SORTIE, 150, "Salaire", agency.id, OperationCategory.AGENT_SALARY)
        ledger.cancel_operation(salary.id, agency.id)

        report = ledger.generate_report(agency.id)
        summary = report["summary"]
        assert summary["balance"] == Decimal("500.00")
        assert summary["operation_count"] == 4
        assert summary["reversal_count"] == 1

        by_category = {g["key"]: g for g in report["by_category"]}
        assert by_category["free_sale"]["total_inflows"] == Decimal("500.00")
        assert by_category["agent_salary"]["balance"] == Decimal("0.00")

        by_method = {g["key"]: g for g in report["by_method"]}
        assert by_method["cheque"]["operation_count"] == 1
        assert by_method["especes"]["operation_count"] == 3


class TestCashRoutes:

    def test_entries_and_balance(self, http_client, agency_admin):
        headers = auth_headers(agency_admin)
        response = http_client.post("/caisse/entree", headers=headers,
                                    json={"amount": "800.00", "description": "Vente omra", "category": "free_sale"})
        assert response.status_code == 201
        response = http_client.post("/caisse/sortie", headers=headers,
                                    json={"amount": "300.00", "description": "Loyer", "category": "misc_expense"})
        assert response.status_code == 201
        assert response.json()["signed_amount"] == "-300.00"

        balance = http_client.get("/caisse/solde", headers=headers).json()
        assert Decimal(balance["balance"]) == Decimal("500.00")
        assert balance["currency"] == "DZD"

    def test_invalid_amount(self, http_client, agency_admin):
        response = http_client.post("/caisse/entree", headers=auth_headers(agency_admin),
                                    json={"amount": "-5", "description": "Erreur"})
        assert response.status_code == 422

    def test_cancel_route(self, http_client, agency_admin):
        headers = auth_headers(agency_admin)
        op = http_client.post("/caisse/entree", headers=headers,
                              json={"amount": "50.00", "description": "Vente"}).json()
        response = http_client.put(f"/caisse/operations/{op['id']}/annuler", headers=headers)
        assert response.status_code == 200
        assert response.json()["reversal"]["reversal_of_id"] == op["id"]

        response = http_client.put(f"/caisse/operations/{op['id']}/annuler", headers=headers)
        assert response.status_code == 409
        assert response.json()["code"] == "invalid_state"

    def test_report_route(self, http_client, agency_admin):
        headers = auth_headers(agency_admin)
        http_client.post("/caisse/entree", headers=headers, json={"amount": "50.00", "description": "Vente"})
        response = http_client.get("/caisse/rapport", headers=headers)
        assert response.status_code == 200
        assert response.json()["summary"]["operation_count"] == 1

    def test_agent_without_caisse_record(self, http_client, agent):
        response = http_client.get("/caisse/solde", headers=auth_headers(agent))
        assert response.status_code == 403

    @pytest.mark.parametrize("category", ["invoice_payment", "refund", "credit_note", "supplier_payment"])
    def test_linked_categories_refused_for_manual_entries(self, http_client, agency_admin, category):
        response = http_client.post("/caisse/sortie", headers=auth_headers(agency_admin),
                                    json={"amount": "20.00", "description": "Saisie", "category": category})
        assert response.status_code == 422

    def test_foreign_client_refused_by_route(self, http_client, db_session, agency_admin, other_agency):
        foreign = Client(agency_id=other_agency.id, last_name="Amrani", phone="0661 00 00 00")
        db_session.add(foreign)
        db_session.commit()
        response = http_client.post("/caisse/entree", headers=auth_headers(agency_admin),
                                    json={"amount": "20.00", "description": "Recharge",
                                          "category": "client_recharge", "client_id": str(foreign.id)})
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"
