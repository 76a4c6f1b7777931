"""
Tests du journal d'audit des écritures de caisse
"""
import pytest

from agence_api.common.exceptions import ConsistencyError
from agence_api.conftest import auth_headers
from agence_api.modules.audit.models import AuditLog
from agence_api.modules.audit.service import AuditService
from agence_api.modules.cash.models import OperationCategory, OperationDirection, PaymentMethod
from agence_api.modules.cash.service import CashLedgerService
from agence_api.modules.invoices import payments
from agence_api.modules.invoices.payments import InvoicePaymentService


class TestLedgerAudit:

    def test_ledger_write_is_audited(self, db_session, agency, agency_admin):
        operation = CashLedgerService(db_session).record_operation(
            OperationDirection.ENTREE, "150.00", "Vente libre", agency.id,
            category=OperationCategory.FREE_SALE, created_by=agency_admin.id,
        )

        entries, total = AuditService(db_session).list_entries(agency_id=agency.id)
        assert total == 1
        entry = entries[0]
        assert entry.module == "caisse"
        assert entry.action == "entree"
        assert entry.entity_type == "operation"
        assert entry.entity_id == operation.id
        assert entry.user_id == agency_admin.id
        assert entry.details == {"amount": "150.00", "category": "free_sale"}

    def test_reversal_is_audited_as_cancellation(self, db_session, agency):
        ledger = CashLedgerService(db_session)
        operation = ledger.record_operation(OperationDirection.SORTIE, 80, "Frais divers", agency.id)
        result = ledger.cancel_operation(operation.id, agency.id)

        entries, total = AuditService(db_session).list_entries(agency_id=agency.id, action="annulation")
        assert total == 1
        assert entries[0].entity_id == result.reversal.id

    def test_failed_payment_leaves_no_audit_entry(self, db_session, agency, sample_invoice, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("disque plein")

        monkeypatch.setattr(payments, "derive_status", broken)
        with pytest.raises(ConsistencyError):
            InvoicePaymentService(db_session).pay_partial(
                sample_invoice.id, 600, PaymentMethod.ESPECES, agency.id
            )

        assert db_session.query(AuditLog).count() == 0

    def test_filters_by_agency(self, db_session, agency, other_agency):
        ledger = CashLedgerService(db_session)
        ledger.record_operation(OperationDirection.ENTREE, 10, "Recharge", agency.id)
        ledger.record_operation(OperationDirection.ENTREE, 20, "Recharge", other_agency.id)

        service = AuditService(db_session)
        assert service.list_entries(agency_id=agency.id)[1] == 1
        assert service.list_entries(module="caisse")[1] == 2


class TestAuditRoutes:

    def test_superadmin_lists_entries(self, http_client, db_session, agency, superadmin):
        CashLedgerService(db_session).record_operation(OperationDirection.ENTREE, 40, "Vente", agency.id)

        response = http_client.get(
            "/audit", params={"agency_id": str(agency.id)}, headers=auth_headers(superadmin)
        )
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["module"] == "caisse"
        assert body["items"][0]["details"]["amount"] == "40.00"

    def test_agency_admin_is_refused(self, http_client, agency_admin):
        response = http_client.get("/audit", headers=auth_headers(agency_admin))
        assert response.status_code == 403
