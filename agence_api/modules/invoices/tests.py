"""
Tests des factures et de la machine à états des paiements

Chaque mouvement d'argent doit laisser la facture et le grand livre
cohérents : amount_paid dans [0, TTC], statut déduit du montant payé,
solde de caisse égal à la somme des écritures.
"""
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from agence_api.common.exceptions import (
    ConsistencyError, InvalidStateError, NotFoundError, ValidationError,
)
from agence_api.conftest import auth_headers, make_invoice
from agence_api.modules.cash.models import Operation, OperationCategory, OperationDirection, PaymentMethod
from agence_api.modules.cash.service import CashLedgerService
from agence_api.modules.invoices import payments
from agence_api.modules.invoices.models import Invoice, InvoicePayment, InvoiceStatus, PaymentKind
from agence_api.modules.invoices.payments import InvoicePaymentService, derive_status
from agence_api.modules.invoices.schemas import InvoiceCreate, InvoiceLineItemCreate, InvoiceLinesUpdate
from agence_api.modules.invoices.service import InvoiceService
from agence_api.modules.invoices.tasks import mark_overdue_invoices_task


@pytest.fixture
def payment_service(db_session):
    return InvoicePaymentService(db_session)


def balance(db_session, agency):
    return CashLedgerService(db_session).compute_balance(agency.id)["balance"]


def assert_invariants(invoice: Invoice):
    assert Decimal("0") <= invoice.amount_paid <= invoice.amount_incl_tax
    assert invoice.status == derive_status(invoice.status, invoice.amount_paid, invoice.amount_incl_tax)


class TestDeriveStatus:

    @pytest.mark.parametrize("current, paid, expected", [
        (InvoiceStatus.SENT, "0", InvoiceStatus.SENT),
        (InvoiceStatus.DRAFT, "0", InvoiceStatus.DRAFT),
        (InvoiceStatus.SENT, "100", InvoiceStatus.PARTIALLY_PAID),
        (InvoiceStatus.OVERDUE, "100", InvoiceStatus.PARTIALLY_PAID),
        (InvoiceStatus.PARTIALLY_PAID, "1200", InvoiceStatus.PAID),
        (InvoiceStatus.PAID, "0", InvoiceStatus.SENT),
        (InvoiceStatus.CANCELLED, "600", InvoiceStatus.CANCELLED),
    ])
    def test_status_from_amount_paid(self, current, paid, expected):
        assert derive_status(current, Decimal(paid), Decimal("1200")) == expected


class TestInvoiceService:

    def test_totals_and_number(self, db_session, agency, sample_client):
        data = InvoiceCreate(client_id=sample_client.id, line_items=[
            InvoiceLineItemCreate(description="Hôtel Istanbul", quantity=2, unit_price="450.00", tax_rate=19),
            InvoiceLineItemCreate(description="Frais de dossier", quantity=1, unit_price="100.00"),
        ])
        invoice = InvoiceService(db_session).create_invoice(data, agency.id)

        assert invoice.number == "FAC-000001"
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.amount_excl_tax == Decimal("1000.00")
        assert invoice.amount_incl_tax == Decimal("1171.00")
        assert invoice.amount_remaining == Decimal("1171.00")
        assert [line.position for line in invoice.line_items] == [0, 1]

    def test_numbers_are_per_agency(self, db_session, agency, other_agency, sample_client):
        from agence_api.modules.clients.models import Client
        foreign_client = Client(agency_id=other_agency.id, last_name="Amrani", phone="0661 00 00 00")
        db_session.add(foreign_client)
        db_session.commit()

        first = make_invoice(db_session, agency, sample_client)
        second = make_invoice(db_session, agency, sample_client)
        foreign = make_invoice(db_session, other_agency, foreign_client)
        assert (first.number, second.number, foreign.number) == ("FAC-000001", "FAC-000002", "FAC-000001")

    def test_client_of_another_agency(self, db_session, other_agency, sample_client):
        with pytest.raises(NotFoundError):
            make_invoice(db_session, other_agency, sample_client)

    def test_zero_total_rejected(self, db_session, agency, sample_client):
        with pytest.raises(ValidationError):
            make_invoice(db_session, agency, sample_client, total=Decimal("0"))

    def test_send(self, db_session, agency, sample_client):
        invoice = make_invoice(db_session, agency, sample_client, send=False)
        invoice = InvoiceService(db_session).send_invoice(invoice.id, agency.id)
        assert invoice.status == InvoiceStatus.SENT
        with pytest.raises(InvalidStateError):
            InvoiceService(db_session).send_invoice(invoice.id, agency.id)

    def test_update_lines_only_while_unpaid(self, db_session, agency, sample_invoice, payment_service):
        service = InvoiceService(db_session)
        update = InvoiceLinesUpdate(line_items=[
            InvoiceLineItemCreate(description="Billet Alger-Lyon", quantity=1, unit_price="900.00"),
        ])
        invoice = service.update_lines(sample_invoice.id, update, agency.id)
        assert invoice.amount_incl_tax == Decimal("900.00")
        assert len(invoice.line_items) == 1

        payment_service.pay_partial(sample_invoice.id, 100, PaymentMethod.ESPECES, agency.id)
        with pytest.raises(InvalidStateError):
            service.update_lines(sample_invoice.id, update, agency.id)

    def test_update_lines_reads_the_locked_row(self, db_session, agency, sample_invoice):
        assert sample_invoice.amount_paid == Decimal("0.00")
        # paiement validé par une autre transaction, invisible pour l'objet en mémoire
        db_session.execute(
            update(Invoice)
            .where(Invoice.id == sample_invoice.id)
            .values(amount_paid=Decimal("300.00"), status=InvoiceStatus.PARTIALLY_PAID)
            .execution_options(synchronize_session=False)
        )
        update_data = InvoiceLinesUpdate(line_items=[
            InvoiceLineItemCreate(description="Billet Alger-Lyon", quantity=1, unit_price="900.00"),
        ])
        with pytest.raises(InvalidStateError):
            InvoiceService(db_session).update_lines(sample_invoice.id, update_data, agency.id)

    def test_list_filters(self, db_session, agency, sample_client):
        make_invoice(db_session, agency, sample_client, send=False)
        make_invoice(db_session, agency, sample_client)
        invoices, total = InvoiceService(db_session).list_invoices(agency.id, status=InvoiceStatus.SENT)
        assert total == 1
        assert invoices[0].status == InvoiceStatus.SENT


class TestPayments:

    def test_end_to_end_partial_payments_and_refund(self, db_session, agency, sample_invoice, payment_service):
        invoice_id = sample_invoice.id
        assert sample_invoice.amount_incl_tax == Decimal("1200.00")

        outcome = payment_service.pay_partial(invoice_id, 600, PaymentMethod.ESPECES, agency.id)
        assert outcome.invoice.amount_paid == Decimal("600.00")
        assert outcome.invoice.status == InvoiceStatus.PARTIALLY_PAID
        assert outcome.operation.direction == OperationDirection.ENTREE
        assert balance(db_session, agency) == Decimal("600.00")

        outcome = payment_service.pay_partial(invoice_id, 600, PaymentMethod.CHEQUE, agency.id)
        assert outcome.invoice.amount_paid == Decimal("1200.00")
        assert outcome.invoice.amount_remaining == Decimal("0.00")
        assert outcome.invoice.status == InvoiceStatus.PAID

        outcome = payment_service.refund(invoice_id, 100, PaymentMethod.ESPECES, agency.id)
        assert outcome.invoice.amount_paid == Decimal("1100.00")
        assert outcome.invoice.status == InvoiceStatus.PARTIALLY_PAID
        assert outcome.operation.direction == OperationDirection.SORTIE
        assert outcome.operation.category == OperationCategory.REFUND
        assert balance(db_session, agency) == Decimal("1100.00")
        assert_invariants(outcome.invoice)

        kinds = [p.kind for p in db_session.query(InvoicePayment).filter(InvoicePayment.invoice_id == invoice_id)]
        assert sorted(k.value for k in kinds) == ["payment", "payment", "refund"]

    def test_pay_full(self, db_session, agency, sample_invoice, payment_service):
        payment_service.pay_partial(sample_invoice.id, "200.50", PaymentMethod.ESPECES, agency.id)
        outcome = payment_service.pay_full(sample_invoice.id, PaymentMethod.VIREMENT, agency.id)
        assert outcome.operation.amount == Decimal("999.50")
        assert outcome.invoice.status == InvoiceStatus.PAID

        with pytest.raises(InvalidStateError):
            payment_service.pay_full(sample_invoice.id, PaymentMethod.VIREMENT, agency.id)

    def test_overpayment_rejected(self, db_session, agency, sample_invoice, payment_service):
        with pytest.raises(ValidationError):
            payment_service.pay_partial(sample_invoice.id, "1200.01", PaymentMethod.ESPECES, agency.id)
        assert db_session.query(Operation).count() == 0

    def test_non_positive_amount_rejected(self, agency, sample_invoice, payment_service):
        with pytest.raises(ValidationError):
            payment_service.pay_partial(sample_invoice.id, 0, PaymentMethod.ESPECES, agency.id)

    def test_other_agency_cannot_pay(self, agency, other_agency, sample_invoice, payment_service):
        with pytest.raises(NotFoundError):
            payment_service.pay_partial(sample_invoice.id, 10, PaymentMethod.ESPECES, other_agency.id)

    def test_cancelled_invoice_cannot_be_paid(self, agency, sample_invoice, payment_service):
        payment_service.cancel_invoice(sample_invoice.id, agency.id, "Voyage annulé")
        with pytest.raises(InvalidStateError):
            payment_service.pay_partial(sample_invoice.id, 10, PaymentMethod.ESPECES, agency.id)

    def test_overdue_invoice_can_be_paid(self, db_session, agency, sample_client, payment_service):
        invoice = make_invoice(db_session, agency, sample_client, due_date=date.today() - timedelta(days=1))
        InvoiceService(db_session).mark_overdue_invoices(agency.id)
        outcome = payment_service.pay_partial(invoice.id, 100, PaymentMethod.ESPECES, agency.id)
        assert outcome.invoice.status == InvoiceStatus.PARTIALLY_PAID


class TestCreditNotesAndRefunds:

    def test_credit_note_keeps_amount_paid(self, db_session, agency, sample_invoice, payment_service):
        payment_service.pay_partial(sample_invoice.id, 500, PaymentMethod.ESPECES, agency.id)
        outcome = payment_service.issue_credit_note(sample_invoice.id, 200, PaymentMethod.ESPECES, agency.id)

        assert outcome.invoice.amount_paid == Decimal("500.00")
        assert outcome.invoice.credited_amount == Decimal("200.00")
        assert outcome.invoice.status == InvoiceStatus.PARTIALLY_PAID
        assert outcome.operation.direction == OperationDirection.SORTIE
        assert outcome.operation.category == OperationCategory.CREDIT_NOTE
        assert balance(db_session, agency) == Decimal("300.00")

    def test_credit_notes_are_cumulative(self, agency, sample_invoice, payment_service):
        payment_service.pay_partial(sample_invoice.id, 500, PaymentMethod.ESPECES, agency.id)
        payment_service.issue_credit_note(sample_invoice.id, 300, PaymentMethod.ESPECES, agency.id)
        with pytest.raises(ValidationError):
            payment_service.issue_credit_note(sample_invoice.id, 201, PaymentMethod.ESPECES, agency.id)
        payment_service.issue_credit_note(sample_invoice.id, 200, PaymentMethod.ESPECES, agency.id)

    def test_credit_note_on_unpaid_invoice(self, agency, sample_invoice, payment_service):
        with pytest.raises(ValidationError):
            payment_service.issue_credit_note(sample_invoice.id, 1, PaymentMethod.ESPECES, agency.id)

    def test_refund_limited_to_amount_paid(self, agency, sample_invoice, payment_service):
        payment_service.pay_partial(sample_invoice.id, 300, PaymentMethod.ESPECES, agency.id)
        with pytest.raises(ValidationError):
            payment_service.refund(sample_invoice.id, "300.01", PaymentMethod.ESPECES, agency.id)

    def test_refund_excludes_credit_notes_paid_out(self, db_session, agency, sample_invoice, payment_service):
        payment_service.pay_full(sample_invoice.id, PaymentMethod.ESPECES, agency.id)
        payment_service.issue_credit_note(sample_invoice.id, 1000, PaymentMethod.ESPECES, agency.id)
        with pytest.raises(ValidationError):
            payment_service.refund(sample_invoice.id, 1200, PaymentMethod.ESPECES, agency.id)

        outcome = payment_service.refund(sample_invoice.id, 200, PaymentMethod.ESPECES, agency.id)
        assert outcome.invoice.amount_paid == Decimal("1000.00")
        assert outcome.invoice.credited_amount == Decimal("1000.00")
        assert balance(db_session, agency) == Decimal("0.00")
        with pytest.raises(ValidationError):
            payment_service.refund(sample_invoice.id, "0.01", PaymentMethod.ESPECES, agency.id)

    def test_full_refund_reverts_to_sent(self, agency, sample_invoice, payment_service):
        payment_service.pay_full(sample_invoice.id, PaymentMethod.ESPECES, agency.id)
        outcome = payment_service.refund(sample_invoice.id, 1200, PaymentMethod.ESPECES, agency.id)
        assert outcome.invoice.amount_paid == Decimal("0.00")
        assert outcome.invoice.status == InvoiceStatus.SENT

    def test_refund_after_cancellation(self, agency, sample_invoice, payment_service):
        payment_service.pay_partial(sample_invoice.id, 400, PaymentMethod.ESPECES, agency.id)
        payment_service.cancel_invoice(sample_invoice.id, agency.id, "Client injoignable")
        outcome = payment_service.refund(sample_invoice.id, 400, PaymentMethod.ESPECES, agency.id)
        assert outcome.invoice.status == InvoiceStatus.CANCELLED
        assert outcome.invoice.amount_paid == Decimal("0.00")


class TestOperationCancellation:

    def test_cancel_payment_mirrors_invoice(self, db_session, agency, sample_invoice, payment_service):
        first = payment_service.pay_partial(sample_invoice.id, 700, PaymentMethod.ESPECES, agency.id)
        payment_service.pay_partial(sample_invoice.id, 500, PaymentMethod.ESPECES, agency.id)

        outcome = payment_service.cancel_operation(first.operation.id, agency.id)
        assert outcome.reversal.reversal_of_id == first.operation.id
        assert outcome.reversal.direction == OperationDirection.SORTIE
        assert outcome.invoice.amount_paid == Decimal("500.00")
        assert outcome.invoice.status == InvoiceStatus.PARTIALLY_PAID
        assert balance(db_session, agency) == Decimal("500.00")

        trace = db_session.query(InvoicePayment).filter(
            InvoicePayment.operation_id == outcome.reversal.id
        ).one()
        assert trace.kind == PaymentKind.PAYMENT
        assert trace.reverses_id is not None

    def test_cancel_twice(self, db_session, agency, sample_invoice, payment_service):
        first = payment_service.pay_partial(sample_invoice.id, 700, PaymentMethod.ESPECES, agency.id)
        payment_service.cancel_operation(first.operation.id, agency.id)
        with pytest.raises(InvalidStateError):
            payment_service.cancel_operation(first.operation.id, agency.id)

        db_session.expire_all()
        invoice = db_session.get(Invoice, sample_invoice.id)
        assert invoice.amount_paid == Decimal("0.00")
        assert balance(db_session, agency) == Decimal("0.00")

    def test_cancel_credit_note(self, agency, sample_invoice, payment_service):
        payment_service.pay_partial(sample_invoice.id, 500, PaymentMethod.ESPECES, agency.id)
        credit = payment_service.issue_credit_note(sample_invoice.id, 200, PaymentMethod.ESPECES, agency.id)
        outcome = payment_service.cancel_operation(credit.operation.id, agency.id)
        assert outcome.invoice.credited_amount == Decimal("0.00")
        assert outcome.invoice.amount_paid == Decimal("500.00")

    def test_cancel_payment_after_refund_is_refused(self, agency, sample_invoice, payment_service):
        payment = payment_service.pay_partial(sample_invoice.id, 500, PaymentMethod.ESPECES, agency.id)
        payment_service.refund(sample_invoice.id, 500, PaymentMethod.ESPECES, agency.id)
        with pytest.raises(InvalidStateError):
            payment_service.cancel_operation(payment.operation.id, agency.id)

    def test_cancel_payment_covered_by_credit_note_is_refused(self, db_session, agency, sample_invoice,
                                                              payment_service):
        payment = payment_service.pay_partial(sample_invoice.id, 500, PaymentMethod.ESPECES, agency.id)
        payment_service.issue_credit_note(sample_invoice.id, 200, PaymentMethod.ESPECES, agency.id)
        with pytest.raises(InvalidStateError):
            payment_service.cancel_operation(payment.operation.id, agency.id)
        assert balance(db_session, agency) == Decimal("300.00")

    def test_cancel_unlinked_operation(self, db_session, agency, payment_service):
        op = CashLedgerService(db_session).record_operation(
            OperationDirection.ENTREE, 80, "Vente libre", agency.id, OperationCategory.FREE_SALE
        )
        outcome = payment_service.cancel_operation(op.id, agency.id)
        assert outcome.invoice is None
        assert outcome.reversal.reversal_of_id == op.id


class TestConsistency:

    def test_failed_invoice_update_rolls_back_ledger(self, db_session, agency, sample_invoice,
                                                     payment_service, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("disque plein")

        monkeypatch.setattr(payments, "derive_status", broken)
        with pytest.raises(ConsistencyError):
            payment_service.pay_partial(sample_invoice.id, 600, PaymentMethod.ESPECES, agency.id)

        assert db_session.query(Operation).count() == 0
        assert db_session.query(InvoicePayment).count() == 0
        invoice = db_session.get(Invoice, sample_invoice.id)
        assert invoice.amount_paid == Decimal("0.00")
        assert invoice.status == InvoiceStatus.SENT


class TestInvoiceCancellation:

    def test_cancel_requires_reason(self, agency, sample_invoice, payment_service):
        with pytest.raises(ValidationError):
            payment_service.cancel_invoice(sample_invoice.id, agency.id, "  ")

    def test_cancel_is_terminal(self, agency, sample_invoice, payment_service):
        invoice = payment_service.cancel_invoice(sample_invoice.id, agency.id, "Doublon")
        assert invoice.status == InvoiceStatus.CANCELLED
        assert invoice.cancelled_at is not None
        with pytest.raises(InvalidStateError):
            payment_service.cancel_invoice(sample_invoice.id, agency.id, "Doublon")


class TestOverdueSweep:

    def test_only_sent_invoices_past_due(self, db_session, agency, sample_client):
        yesterday = date.today() - timedelta(days=1)
        late = make_invoice(db_session, agency, sample_client, due_date=yesterday)
        draft = make_invoice(db_session, agency, sample_client, send=False, due_date=yesterday)
        on_time = make_invoice(db_session, agency, sample_client, due_date=date.today() + timedelta(days=5))

        assert InvoiceService(db_session).mark_overdue_invoices() == 1
        assert late.status == InvoiceStatus.OVERDUE
        assert draft.status == InvoiceStatus.DRAFT
        assert on_time.status == InvoiceStatus.SENT

    def test_celery_task(self, db_session, agency, sample_client, monkeypatch):
        from agence_api.conftest import TestingSessionLocal
        from agence_api.modules.invoices import tasks

        make_invoice(db_session, agency, sample_client, due_date=date.today() - timedelta(days=3))
        monkeypatch.setattr(tasks, "SessionLocal", TestingSessionLocal)
        today = date.today().isoformat()
        result = mark_overdue_invoices_task.run(today=today)
        assert result == {"date": today, "updated": 1}


class TestInvoiceRoutes:

    def test_create_pay_and_refund(self, http_client, db_session, agency_admin, sample_client):
        headers = auth_headers(agency_admin)
        response = http_client.post("/factures", headers=headers, json={
            "client_id": str(sample_client.id),
            "send": True,
            "line_items": [{"description": "Omra 15 jours", "quantity": 1, "unit_price": "1200.00"}],
        })
        assert response.status_code == 201
        invoice_id = response.json()["id"]

        response = http_client.post(f"/factures/{invoice_id}/versement", headers=headers,
                                    json={"amount": "600.00", "method": "especes"})
        assert response.status_code == 200
        assert response.json()["invoice"]["status"] == "partially_paid"
        operation_id = response.json()["operation"]["id"]

        response = http_client.post(f"/factures/{invoice_id}/payer", headers=headers, json={"method": "cheque"})
        assert response.json()["invoice"]["status"] == "paid"

        response = http_client.post(f"/factures/{invoice_id}/refund", headers=headers, json={"amount": "100.00"})
        assert Decimal(response.json()["invoice"]["amount_paid"]) == Decimal("1100.00")

        # annulation via la caisse : la facture suit
        response = http_client.put(f"/caisse/operations/{operation_id}/annuler", headers=headers)
        assert response.status_code == 200
        detail = http_client.get(f"/factures/{invoice_id}", headers=headers).json()
        assert Decimal(detail["amount_paid"]) == Decimal("500.00")
        assert len(detail["payments"]) == 4

        balance = http_client.get("/caisse/solde", headers=headers).json()
        assert Decimal(balance["balance"]) == Decimal("500.00")

    def test_cancel_operation_through_invoice(self, http_client, agency_admin, sample_invoice):
        headers = auth_headers(agency_admin)
        payment = http_client.post(f"/factures/{sample_invoice.id}/versement", headers=headers,
                                   json={"amount": "200.00"}).json()
        response = http_client.put(
            f"/factures/{sample_invoice.id}/operations/{payment['operation']['id']}/annuler", headers=headers
        )
        assert response.status_code == 200
        assert Decimal(response.json()["invoice"]["amount_paid"]) == Decimal("0.00")

        response = http_client.put(
            f"/factures/{uuid4()}/operations/{payment['operation']['id']}/annuler", headers=headers
        )
        assert response.status_code == 404

    def test_errors_are_typed(self, http_client, agency_admin, sample_invoice):
        headers = auth_headers(agency_admin)
        response = http_client.post(f"/factures/{sample_invoice.id}/versement", headers=headers,
                                    json={"amount": "5000.00"})
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

        response = http_client.post(f"/factures/{sample_invoice.id}/annuler", headers=headers,
                                    json={"reason": "Erreur de saisie"})
        assert response.json()["status"] == "cancelled"
        response = http_client.post(f"/factures/{sample_invoice.id}/payer", headers=headers, json={})
        assert response.status_code == 409

    def test_three_decimals_rejected(self, http_client, agency_admin, sample_invoice):
        response = http_client.post(f"/factures/{sample_invoice.id}/versement", headers=auth_headers(agency_admin),
                                    json={"amount": "10.001"})
        assert response.status_code == 422
