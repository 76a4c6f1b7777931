"""
Tests des fournisseurs : dette, avances, règlements et migration de schéma
"""
from decimal import Decimal

import pytest

from agence_api.common.exceptions import InvalidStateError, NotFoundError, ValidationError
from agence_api.conftest import auth_headers
from agence_api.modules.cash.models import Operation, OperationCategory, OperationDirection, PaymentMethod
from agence_api.modules.cash.service import CashLedgerService
from agence_api.modules.suppliers.migrations import needs_upgrade, upgrade_all_suppliers, upgrade_supplier
from agence_api.modules.suppliers.models import SUPPLIER_SCHEMA_VERSION, Supplier, SupplierTransactionKind
from agence_api.modules.suppliers.schemas import SupplierCreate, SupplierUpdate
from agence_api.modules.suppliers.service import SupplierService


@pytest.fixture
def service(db_session):
    return SupplierService(db_session)


@pytest.fixture
def supplier(service, agency):
    return service.create_supplier(SupplierCreate(name="Air Algérie", service_type="billetterie"), agency.id)


def legacy_supplier(db_session, agency, balance="750.00", name="Hôtel El Djazair"):
    supplier = Supplier(agency_id=agency.id, name=name, schema_version=1,
                        legacy_balance=Decimal(balance), debt_balance=None, credit_balance=None)
    db_session.add(supplier)
    db_session.commit()
    return supplier


def balance(db_session, agency):
    return CashLedgerService(db_session).compute_balance(agency.id)["balance"]


class TestSchemaMigration:

    def test_upgrade_moves_legacy_balance_into_debt(self, db_session, agency):
        supplier = legacy_supplier(db_session, agency)
        assert needs_upgrade(supplier)
        assert upgrade_supplier(supplier) is True

        assert supplier.debt_balance == Decimal("750.00")
        assert supplier.credit_balance == Decimal("0.00")
        assert supplier.legacy_balance is None
        assert supplier.schema_version == SUPPLIER_SCHEMA_VERSION
        assert upgrade_supplier(supplier) is False

    def test_upgrade_on_read(self, db_session, service, agency):
        supplier = legacy_supplier(db_session, agency)
        loaded = service.get_supplier(supplier.id, agency.id)
        assert loaded.schema_version == SUPPLIER_SCHEMA_VERSION
        assert loaded.debt_balance == Decimal("750.00")

        db_session.expire_all()
        assert db_session.get(Supplier, supplier.id).legacy_balance is None

    def test_bulk_upgrade(self, db_session, agency, supplier):
        legacy_supplier(db_session, agency, "100.00", name="Transport Sud")
        legacy_supplier(db_session, agency, "0.00", name="Guide Tassili")
        assert upgrade_all_suppliers(db_session, batch_size=1) == 2
        assert upgrade_all_suppliers(db_session) == 0

    def test_new_suppliers_start_at_current_version(self, supplier):
        assert supplier.schema_version == SUPPLIER_SCHEMA_VERSION
        assert not needs_upgrade(supplier)


class TestSupplierBalances:

    def test_debt_does_not_touch_cash(self, db_session, service, agency, supplier):
        movement = service.record_debt(supplier.id, "1500.00", agency.id, reference="FR-88")
        assert movement.supplier.debt_balance == Decimal("1500.00")
        assert movement.operation is None
        assert db_session.query(Operation).count() == 0

    def test_payment_reduces_debt(self, db_session, service, agency, supplier):
        service.record_debt(supplier.id, 1000, agency.id)
        movement = service.pay_supplier(supplier.id, 400, PaymentMethod.VIREMENT, agency.id)

        assert movement.supplier.debt_balance == Decimal("600.00")
        assert movement.operation.direction == OperationDirection.SORTIE
        assert movement.operation.category == OperationCategory.SUPPLIER_PAYMENT
        assert movement.operation.supplier_id == supplier.id
        assert movement.transaction.kind == SupplierTransactionKind.PAYMENT
        assert balance(db_session, agency) == Decimal("-400.00")

    def test_overpayment_becomes_credit(self, db_session, service, agency, supplier):
        service.record_debt(supplier.id, 100, agency.id)
        movement = service.pay_supplier(supplier.id, 250, PaymentMethod.ESPECES, agency.id)
        assert movement.supplier.debt_balance == Decimal("0.00")
        assert movement.supplier.credit_balance == Decimal("150.00")
        assert movement.transaction.debt_delta == Decimal("-100.00")
        assert movement.transaction.credit_delta == Decimal("150.00")
        assert balance(db_session, agency) == Decimal("-250.00")

    def test_cancel_overpayment_restores_both_balances(self, service, agency, supplier):
        service.record_debt(supplier.id, 100, agency.id)
        payment = service.pay_supplier(supplier.id, 250, PaymentMethod.ESPECES, agency.id)
        movement = service.cancel_operation(payment.operation.id, agency.id)
        assert movement.supplier.debt_balance == Decimal("100.00")
        assert movement.supplier.credit_balance == Decimal("0.00")

    def test_advance_is_kept_separate(self, service, agency, supplier):
        service.record_debt(supplier.id, 300, agency.id)
        movement = service.record_advance(supplier.id, 500, PaymentMethod.ESPECES, agency.id)
        assert movement.supplier.credit_balance == Decimal("500.00")
        assert movement.supplier.debt_balance == Decimal("300.00")

    def test_invalid_amount(self, service, agency, supplier):
        with pytest.raises(ValidationError):
            service.pay_supplier(supplier.id, -1, PaymentMethod.ESPECES, agency.id)

    def test_other_agency(self, service, other_agency, supplier):
        with pytest.raises(NotFoundError):
            service.record_debt(supplier.id, 10, other_agency.id)

    def test_update_and_list(self, service, agency, supplier):
        service.update_supplier(supplier.id, SupplierUpdate(phone="021 00 00 00"), agency.id)
        suppliers, total = service.list_suppliers(agency.id)
        assert total == 1
        assert suppliers[0].phone == "021 00 00 00"


class TestSupplierCredit:

    def test_apply_credit_to_debt(self, db_session, service, agency, supplier):
        service.record_advance(supplier.id, 500, PaymentMethod.ESPECES, agency.id)
        service.record_debt(supplier.id, 300, agency.id)

        movement = service.apply_credit(supplier.id, agency.id)
        assert movement.supplier.debt_balance == Decimal("0.00")
        assert movement.supplier.credit_balance == Decimal("200.00")
        assert movement.transaction.kind == SupplierTransactionKind.CREDIT_APPLIED
        assert movement.operation is None
        assert balance(db_session, agency) == Decimal("-500.00")

    def test_apply_partial_credit(self, service, agency, supplier):
        service.record_advance(supplier.id, 500, PaymentMethod.ESPECES, agency.id)
        service.record_debt(supplier.id, 300, agency.id)
        movement = service.apply_credit(supplier.id, agency.id, "120.00")
        assert movement.supplier.debt_balance == Decimal("180.00")
        assert movement.supplier.credit_balance == Decimal("380.00")

        with pytest.raises(ValidationError):
            service.apply_credit(supplier.id, agency.id, 181)

    def test_apply_credit_without_credit(self, service, agency, supplier):
        service.record_debt(supplier.id, 300, agency.id)
        with pytest.raises(InvalidStateError):
            service.apply_credit(supplier.id, agency.id)

    def test_refund_credit_is_an_inflow(self, db_session, service, agency, supplier):
        service.record_advance(supplier.id, 500, PaymentMethod.ESPECES, agency.id)
        movement = service.refund_credit(supplier.id, 200, PaymentMethod.VIREMENT, agency.id)

        assert movement.supplier.credit_balance == Decimal("300.00")
        assert movement.operation.direction == OperationDirection.ENTREE
        assert movement.operation.category == OperationCategory.SUPPLIER_REFUND
        assert movement.transaction.kind == SupplierTransactionKind.CREDIT_REFUND
        assert balance(db_session, agency) == Decimal("-300.00")

    def test_refund_limited_to_credit(self, service, agency, supplier):
        service.record_advance(supplier.id, 100, PaymentMethod.ESPECES, agency.id)
        with pytest.raises(ValidationError):
            service.refund_credit(supplier.id, "100.01", PaymentMethod.ESPECES, agency.id)

    def test_cancel_refund_restores_credit(self, db_session, service, agency, supplier):
        service.record_advance(supplier.id, 500, PaymentMethod.ESPECES, agency.id)
        refund = service.refund_credit(supplier.id, 200, PaymentMethod.ESPECES, agency.id)
        movement = service.cancel_operation(refund.operation.id, agency.id)
        assert movement.supplier.credit_balance == Decimal("500.00")
        assert movement.operation.direction == OperationDirection.SORTIE
        assert balance(db_session, agency) == Decimal("-500.00")


class TestSupplierCancellation:

    def test_cancel_payment_restores_debt(self, db_session, service, agency, supplier):
        service.record_debt(supplier.id, 1000, agency.id)
        payment = service.pay_supplier(supplier.id, 400, PaymentMethod.ESPECES, agency.id)

        movement = service.cancel_operation(payment.operation.id, agency.id)
        assert movement.supplier.debt_balance == Decimal("1000.00")
        assert movement.operation.reversal_of_id == payment.operation.id
        assert movement.transaction.reverses_id == payment.transaction.id
        assert balance(db_session, agency) == Decimal("0.00")

        with pytest.raises(InvalidStateError):
            service.cancel_operation(payment.operation.id, agency.id)

    def test_cancel_advance_after_consumption_is_refused(self, db_session, service, agency, supplier):
        advance = service.record_advance(supplier.id, 500, PaymentMethod.ESPECES, agency.id)
        service.record_debt(supplier.id, 400, agency.id)
        service.apply_credit(supplier.id, agency.id)
        with pytest.raises(InvalidStateError):
            service.cancel_operation(advance.operation.id, agency.id)
        assert balance(db_session, agency) == Decimal("-500.00")

    def test_ledger_refuses_direct_cancellation(self, db_session, service, agency, supplier):
        advance = service.record_advance(supplier.id, 500, PaymentMethod.ESPECES, agency.id)
        with pytest.raises(InvalidStateError):
            CashLedgerService(db_session).cancel_operation(advance.operation.id, agency.id)


class TestSupplierRoutes:

    def test_supplier_flow(self, http_client, agency_admin):
        headers = auth_headers(agency_admin)
        response = http_client.post("/fournisseurs", headers=headers, json={"name": "Turkish Airlines"})
        assert response.status_code == 201
        supplier_id = response.json()["id"]

        response = http_client.post(f"/fournisseurs/{supplier_id}/dette", headers=headers, json={"amount": "900.00"})
        assert response.status_code == 200
        assert Decimal(response.json()["supplier"]["debt_balance"]) == Decimal("900.00")

        response = http_client.post(f"/fournisseurs/{supplier_id}/paiement", headers=headers,
                                    json={"amount": "300.00", "method": "cheque"})
        assert response.status_code == 200
        operation_id = response.json()["operation"]["id"]

        response = http_client.post(f"/fournisseurs/{supplier_id}/avance", headers=headers, json={"amount": "50.00"})
        assert Decimal(response.json()["supplier"]["credit_balance"]) == Decimal("50.00")

        response = http_client.put(f"/caisse/operations/{operation_id}/annuler", headers=headers)
        assert response.status_code == 200
        supplier = http_client.get(f"/fournisseurs/{supplier_id}", headers=headers).json()
        assert Decimal(supplier["debt_balance"]) == Decimal("900.00")

        transactions = http_client.get(f"/fournisseurs/{supplier_id}/transactions", headers=headers).json()
        assert len(transactions) == 4

    def test_credit_routes(self, http_client, agency_admin):
        headers = auth_headers(agency_admin)
        supplier_id = http_client.post("/fournisseurs", headers=headers, json={"name": "Hôtel Sofitel"}).json()["id"]
        http_client.post(f"/fournisseurs/{supplier_id}/dette", headers=headers, json={"amount": "100.00"})
        http_client.post(f"/fournisseurs/{supplier_id}/paiement", headers=headers, json={"amount": "400.00"})

        response = http_client.post(f"/fournisseurs/{supplier_id}/credit/remboursement", headers=headers,
                                    json={"amount": "100.00", "method": "virement"})
        assert response.status_code == 200
        assert Decimal(response.json()["supplier"]["credit_balance"]) == Decimal("200.00")

        http_client.post(f"/fournisseurs/{supplier_id}/dette", headers=headers, json={"amount": "50.00"})
        response = http_client.post(f"/fournisseurs/{supplier_id}/credit/imputation", headers=headers, json={})
        assert response.status_code == 200
        supplier = response.json()["supplier"]
        assert Decimal(supplier["debt_balance"]) == Decimal("0.00")
        assert Decimal(supplier["credit_balance"]) == Decimal("150.00")

        response = http_client.post(f"/fournisseurs/{supplier_id}/credit/remboursement", headers=headers,
                                    json={"amount": "500.00"})
        assert response.status_code == 422

        balance = http_client.get("/caisse/solde", headers=headers).json()
        assert Decimal(balance["balance"]) == Decimal("-300.00")
