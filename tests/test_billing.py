"""
Invoices, payment confirmation and the patient ledger.

Ledger fields (credit_balance, total_outstanding_dues) only move on payment
confirmation, cancellation of an invoiced session, and credit purchases.
"""

from datetime import date, time
from decimal import Decimal

import pytest

from therapy_center.errors import (
    ConflictError,
    InsufficientCreditError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from therapy_center.schemas import PaymentMethod, SessionCreate
from therapy_center.services.invoices import InvoiceService, format_invoice_number, next_invoice_number
from therapy_center.services.sessions import SessionService

from conftest import MONDAY, OTHER_TENANT, TENANT

TODAY = date(2026, 10, 19)


@pytest.fixture
def sessions(db):
    return SessionService(db, audit=lambda event: None)


@pytest.fixture
def invoices(db):
    return InvoiceService(db, audit=lambda event: None)


@pytest.fixture
def book(sessions, seed):
    def make(start=time(10, 0), cost=None, patient=None):
        return sessions.create_session(TENANT, SessionCreate(
            patient_id=(patient or seed.patient).id,
            therapist_id=seed.therapist.id,
            therapy_type_id=seed.therapy_type.id,
            scheduled_date=MONDAY,
            start_time=start,
            cost=cost,
        ))
    return make


def ledger(db, patient):
    db.refresh(patient)
    return patient.credit_balance, patient.total_outstanding_dues


def add_credit(invoices, patient, amount):
    invoices.record_payment(TENANT, patient.id, Decimal(amount), PaymentMethod.prepaid_credit, paid_on=TODAY)


class TestInvoiceNumbers:
    def test_format(self):
        assert format_invoice_number(2026, 7) == "INV-2026-007"

    def test_next_starts_at_one(self):
        assert next_invoice_number(None, 2026) == "INV-2026-001"

    def test_next_increments(self):
        assert next_invoice_number("INV-2026-041", 2026) == "INV-2026-042"
        assert next_invoice_number("INV-2026-999", 2026) == "INV-2026-1000"

    def test_sequence_per_tenant(self, invoices, book, seed):
        first, _ = invoices.create_invoice(TENANT, seed.patient.id, [book().id], today=TODAY)
        second, _ = invoices.create_invoice(TENANT, seed.patient.id, [book(start=time(11, 0)).id], today=TODAY)

        assert first.invoice_number == "INV-2026-001"
        assert second.invoice_number == "INV-2026-002"


class TestCreateInvoice:
    def test_lines_and_totals(self, db, invoices, book, seed):
        late = book(start=time(14, 0))
        early = book(start=time(9, 0), cost=Decimal("30"))

        invoice, lines = invoices.create_invoice(TENANT, seed.patient.id, [late.id, early.id], today=TODAY)

        assert invoice.total_amount == Decimal("70.00")
        assert invoice.outstanding_amount == Decimal("70.00")
        assert invoice.payment_status == "UNPAID"
        assert [line.session_id for line in lines] == [early.id, late.id]
        assert lines[0].description == "Speech Therapy - 2026-10-19 09:00"

    def test_creating_invoice_leaves_ledger_alone(self, db, invoices, book, seed):
        invoices.create_invoice(TENANT, seed.patient.id, [book().id], today=TODAY)

        assert ledger(db, seed.patient) == (Decimal("0"), Decimal("0"))

    def test_session_cannot_be_invoiced_twice(self, invoices, book, seed):
        session = book()
        invoices.create_invoice(TENANT, seed.patient.id, [session.id], today=TODAY)

        with pytest.raises(ConflictError) as exc_info:
            invoices.create_invoice(TENANT, seed.patient.id, [session.id], today=TODAY)
        assert exc_info.value.code == "SESSION_ALREADY_INVOICED"

    def test_cancelled_session_not_billable(self, sessions, invoices, book, seed):
        session = book()
        sessions.cancel_session(TENANT, session.id, "Called off")

        with pytest.raises(ValidationError) as exc_info:
            invoices.create_invoice(TENANT, seed.patient.id, [session.id], today=TODAY)
        assert exc_info.value.code == "SESSION_NOT_BILLABLE"

    def test_other_patients_session_refused(self, invoices, book, seed):
        session = book(patient=seed.second_patient)

        with pytest.raises(NotFoundError):
            invoices.create_invoice(TENANT, seed.patient.id, [session.id], today=TODAY)

    def test_duplicate_ids_refused(self, invoices, book, seed):
        session = book()

        with pytest.raises(ValidationError) as exc_info:
            invoices.create_invoice(TENANT, seed.patient.id, [session.id, session.id], today=TODAY)
        assert exc_info.value.code == "DUPLICATE_SESSIONS"


class TestConfirmPayment:
    def test_full_cash_payment(self, db, invoices, book, seed):
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [book().id], today=TODAY)

        invoice, payment = invoices.confirm_payment(TENANT, invoice.id, Decimal("40"))

        assert invoice.payment_status == "PAID"
        assert invoice.outstanding_amount == Decimal("0.00")
        assert payment.paid_amount == Decimal("40.00")
        assert ledger(db, seed.patient) == (Decimal("0.00"), Decimal("0.00"))

    def test_partial_payment_leaves_dues(self, db, invoices, book, seed):
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [book().id], today=TODAY)

        invoice, _ = invoices.confirm_payment(TENANT, invoice.id, Decimal("15"))

        assert invoice.payment_status == "PARTIALLY_PAID"
        assert invoice.outstanding_amount == Decimal("25.00")
        assert ledger(db, seed.patient) == (Decimal("0.00"), Decimal("25.00"))

    def test_credit_and_cash_together(self, db, invoices, book, seed):
        add_credit(invoices, seed.patient, "30")
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [book().id], today=TODAY)

        invoice, _ = invoices.confirm_payment(TENANT, invoice.id, Decimal("10"), use_credit_amount=Decimal("30"))

        assert invoice.credit_applied == Decimal("30.00")
        assert invoice.payment_status == "PAID"
        assert ledger(db, seed.patient) == (Decimal("0.00"), Decimal("0.00"))

    def test_insufficient_credit_changes_nothing(self, db, invoices, book, seed):
        add_credit(invoices, seed.patient, "10")
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [book().id], today=TODAY)

        with pytest.raises(InsufficientCreditError):
            invoices.confirm_payment(TENANT, invoice.id, Decimal("0"), use_credit_amount=Decimal("20"))

        assert ledger(db, seed.patient) == (Decimal("10.00"), Decimal("0.00"))
        db.refresh(invoice)
        assert invoice.payment_status == "UNPAID"
        assert invoice.credit_applied == Decimal("0.00")

    def test_overpayment_rejected(self, invoices, book, seed):
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [book().id], today=TODAY)

        with pytest.raises(ValidationError) as exc_info:
            invoices.confirm_payment(TENANT, invoice.id, Decimal("50"))
        assert exc_info.value.code == "OVERPAYMENT"

    def test_empty_payment_rejected(self, invoices, book, seed):
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [book().id], today=TODAY)

        with pytest.raises(ValidationError) as exc_info:
            invoices.confirm_payment(TENANT, invoice.id, Decimal("0"))
        assert exc_info.value.code == "EMPTY_PAYMENT"

    def test_paid_invoice_refuses_more(self, invoices, book, seed):
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [book().id], today=TODAY)
        invoices.confirm_payment(TENANT, invoice.id, Decimal("40"))

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            invoices.confirm_payment(TENANT, invoice.id, Decimal("1"))
        assert exc_info.value.code == "INVOICE_ALREADY_PAID"

    def test_idempotency_key_replays(self, db, invoices, book, seed):
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [book().id], today=TODAY)

        _, first = invoices.confirm_payment(TENANT, invoice.id, Decimal("15"), idempotency_key="pay-1")
        invoice, again = invoices.confirm_payment(TENANT, invoice.id, Decimal("15"), idempotency_key="pay-1")

        assert again.id == first.id
        assert invoice.paid_amount == Decimal("15.00")
        assert ledger(db, seed.patient) == (Decimal("0.00"), Decimal("25.00"))

    def test_invoice_of_other_tenant(self, invoices, book, seed):
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [book().id], today=TODAY)

        with pytest.raises(NotFoundError):
            invoices.confirm_payment(OTHER_TENANT, invoice.id, Decimal("10"))


class TestCancellationReversal:
    def test_uninvoiced_cancel_leaves_ledger(self, db, sessions, book, seed):
        session = book()

        _, reversal = sessions.cancel_session(TENANT, session.id, "Not needed")

        assert not reversal.applied
        assert ledger(db, seed.patient) == (Decimal("0"), Decimal("0"))

    def test_fully_paid_session_becomes_credit(self, db, sessions, invoices, book, seed):
        session = book()
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [session.id], today=TODAY)
        invoices.confirm_payment(TENANT, invoice.id, Decimal("40"))

        _, reversal = sessions.cancel_session(TENANT, session.id, "Therapist ill")

        assert reversal.credit_refund == Decimal("40.00")
        assert ledger(db, seed.patient) == (Decimal("40.00"), Decimal("0.00"))
        invoice, lines = invoices.get_invoice(TENANT, invoice.id)
        assert invoice.status == "VOID"
        assert lines[0].cancelled

    def test_unpaid_posted_line_leaves_dues(self, db, sessions, invoices, book, seed):
        first = book()
        second = book(start=time(11, 0))
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [first.id, second.id], today=TODAY)
        # settles the first line only
        invoices.confirm_payment(TENANT, invoice.id, Decimal("40"))
        assert ledger(db, seed.patient) == (Decimal("0.00"), Decimal("40.00"))

        _, reversal = sessions.cancel_session(TENANT, second.id, "Moved away")

        assert reversal.credit_refund == Decimal("0.00")
        assert reversal.dues_reduction == Decimal("40.00")
        assert ledger(db, seed.patient) == (Decimal("0.00"), Decimal("0.00"))
        invoice, _ = invoices.get_invoice(TENANT, invoice.id)
        assert invoice.total_amount == Decimal("40.00")
        assert invoice.payment_status == "PAID"

    def test_unposted_invoice_just_drops_the_line(self, db, sessions, invoices, book, seed):
        first = book()
        second = book(start=time(11, 0))
        invoice, _ = invoices.create_invoice(TENANT, seed.patient.id, [first.id, second.id], today=TODAY)

        sessions.cancel_session(TENANT, first.id, "Double booked")

        assert ledger(db, seed.patient) == (Decimal("0"), Decimal("0"))
        invoice, _ = invoices.get_invoice(TENANT, invoice.id)
        assert invoice.total_amount == Decimal("40.00")
        assert invoice.outstanding_amount == Decimal("40.00")
        assert invoice.status == "ACTIVE"


class TestBalanceAndCredit:
    def test_credit_purchase(self, db, invoices, seed):
        add_credit(invoices, seed.patient, "100")

        assert ledger(db, seed.patient) == (Decimal("100.00"), Decimal("0"))

    def test_cash_payment_does_not_add_credit(self, db, invoices, seed):
        invoices.record_payment(TENANT, seed.patient.id, Decimal("20"), PaymentMethod.cash, paid_on=TODAY)

        assert ledger(db, seed.patient) == (Decimal("0"), Decimal("0"))

    def test_invalid_amount(self, invoices, seed):
        with pytest.raises(ValidationError):
            invoices.record_payment(TENANT, seed.patient.id, Decimal("0"), PaymentMethod.cash)

    def test_net_payable(self, invoices, book, seed):
        add_credit(invoices, seed.patient, "30")
        book()
        book(start=time(11, 0))

        summary = invoices.patient_balance(TENANT, seed.patient.id)

        assert summary.uninvoiced_count == 2
        assert summary.uninvoiced_total == Decimal("80.00")
        assert summary.net_payable == Decimal("50.00")

    def test_net_payable_never_negative(self, invoices, seed):
        add_credit(invoices, seed.patient, "500")

        assert invoices.patient_balance(TENANT, seed.patient.id).net_payable == Decimal("0.00")


class TestPatientInvoices:
    def test_void_invoices_are_hidden(self, sessions, invoices, book, seed):
        kept_session = book()
        voided_session = book(start=time(11, 0))
        kept, _ = invoices.create_invoice(TENANT, seed.patient.id, [kept_session.id], today=TODAY)
        voided, _ = invoices.create_invoice(TENANT, seed.patient.id, [voided_session.id], today=TODAY)
        invoices.confirm_payment(TENANT, voided.id, Decimal("40"))
        sessions.cancel_session(TENANT, voided_session.id, "Therapist ill")

        rows, total = invoices.patient_invoices(TENANT, seed.patient.id)

        assert total == 1
        assert [i.id for i in rows] == [kept.id]
