# therapy_center/services/balances.py
# Nothing here commits; callers wrap these in atomic() with the triggering status change.

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from ..core import ZERO, money
from ..errors import (
    ConflictError,
    InsufficientCreditError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models import Invoice, InvoiceLineItem, InvoicePayment, Patient, Payment, TherapySession
from ..repositories import InvoiceRepository, PatientRepository, SessionRepository, TherapyTypeRepository
from ..schemas import InvoiceStatus, PaymentMethod, PaymentStatus, SessionStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerReversal:
    invoice_id: Optional[int] = None
    credit_refund: Decimal = ZERO
    dues_reduction: Decimal = ZERO

    @property
    def applied(self) -> bool:
        return self.invoice_id is not None


def _settled(invoice: Invoice) -> Decimal:
    return money(invoice.paid_amount + invoice.credit_applied - invoice.refunded_amount)


def _refresh_invoice_totals(invoice: Invoice, lines: Sequence[InvoiceLineItem]) -> None:
    invoice.outstanding_amount = money(
        invoice.total_amount - invoice.paid_amount - invoice.credit_applied + invoice.refunded_amount
    )
    settled = _settled(invoice)
    if invoice.outstanding_amount <= ZERO and settled > ZERO:
        invoice.payment_status = PaymentStatus.paid.value
    elif settled > ZERO:
        invoice.payment_status = PaymentStatus.partially_paid.value
    else:
        invoice.payment_status = PaymentStatus.unpaid.value

    if lines and all(line.cancelled for line in lines):
        invoice.status = InvoiceStatus.void.value


class BalanceReconciler:
    def __init__(
        self,
        patients: PatientRepository,
        sessions: SessionRepository,
        invoices: InvoiceRepository,
        therapy_types: TherapyTypeRepository,
    ):
        self.patients = patients
        self.sessions = sessions
        self.invoices = invoices
        self.therapy_types = therapy_types

    # ---- invoice creation ----

    def build_invoice(
        self,
        tenant_id: str,
        patient_id: int,
        session_ids: Sequence[int],
        invoice_number: str,
        invoice_date: date,
        created_by: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Tuple[Invoice, List[InvoiceLineItem]]:
        if not session_ids:
            raise ValidationError("NO_SESSIONS_SELECTED")
        if len(set(session_ids)) != len(session_ids):
            raise ValidationError("DUPLICATE_SESSIONS", session_ids=list(session_ids))

        if self.patients.get(tenant_id, patient_id) is None:
            raise NotFoundError("patient", patient_id)

        sessions = []
        for session_id in session_ids:
            s = self.sessions.get(tenant_id, session_id)
            if s is None or s.patient_id != patient_id:
                raise NotFoundError("session", session_id)
            if s.status == SessionStatus.cancelled.value:
                raise ValidationError("SESSION_NOT_BILLABLE", session_id=session_id, status=s.status)
            sessions.append(s)

        already = self.invoices.invoiced_session_ids(session_ids)
        if already:
            raise ConflictError("SESSION_ALREADY_INVOICED", session_ids=sorted(already))

        sessions.sort(key=lambda s: (s.scheduled_date, s.start_time))
        total = money(sum((s.cost for s in sessions), ZERO))

        invoice = Invoice(
            tenant_id=tenant_id,
            patient_id=patient_id,
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            total_amount=total,
            outstanding_amount=total,
            payment_status=PaymentStatus.unpaid.value,
            status=InvoiceStatus.active.value,
            ledger_posted=False,
            notes=notes,
            created_by=created_by,
        )
        lines = [
            InvoiceLineItem(
                session_id=s.id,
                description=self._describe(tenant_id, s),
                amount=money(s.cost),
            )
            for s in sessions
        ]
        return invoice, lines

    def _describe(self, tenant_id: str, s: TherapySession) -> str:
        therapy_type = self.therapy_types.get(tenant_id, s.therapy_type_id)
        name = therapy_type.name if therapy_type is not None else "Session"
        return f"{name} - {s.scheduled_date.isoformat()} {s.start_time.strftime('%H:%M')}"

    # ---- payment confirmation ----

    def confirm_payment(
        self,
        tenant_id: str,
        invoice_id: int,
        paid_amount: Decimal,
        use_credit_amount: Decimal = ZERO,
        method: PaymentMethod = PaymentMethod.cash,
        idempotency_key: Optional[str] = None,
        confirmed_by: Optional[int] = None,
    ) -> Tuple[Invoice, InvoicePayment, bool]:
        # replayed is True when the idempotency key was seen before
        invoice = self.invoices.get(tenant_id, invoice_id, for_update=True)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)

        if idempotency_key:
            previous = self.invoices.find_payment(invoice.id, idempotency_key)
            if previous is not None:
                return invoice, previous, True

        if invoice.status == InvoiceStatus.void.value:
            raise InvalidStateTransitionError(
                "INVOICE_VOID", invoice_id=invoice.id, status=invoice.status
            )
        if invoice.payment_status == PaymentStatus.paid.value:
            raise InvalidStateTransitionError(
                "INVOICE_ALREADY_PAID", invoice_id=invoice.id, payment_status=invoice.payment_status
            )

        paid = money(paid_amount or ZERO)
        credit = money(use_credit_amount or ZERO)
        if paid < ZERO or credit < ZERO:
            raise ValidationError("NEGATIVE_AMOUNT", paid_amount=str(paid), use_credit_amount=str(credit))
        if paid + credit == ZERO:
            raise ValidationError("EMPTY_PAYMENT")

        patient = self.patients.get(tenant_id, invoice.patient_id, for_update=True)
        if patient is None:
            raise NotFoundError("patient", invoice.patient_id)

        if credit > patient.credit_balance:
            raise InsufficientCreditError(
                requested=str(credit), available=str(money(patient.credit_balance))
            )
        if paid + credit > invoice.outstanding_amount:
            raise ValidationError(
                "OVERPAYMENT",
                amount=str(paid + credit),
                outstanding=str(money(invoice.outstanding_amount)),
            )

        # every check passed; mutate
        if not invoice.ledger_posted:
            patient.total_outstanding_dues = money(patient.total_outstanding_dues + invoice.outstanding_amount)
            invoice.ledger_posted = True

        patient.total_outstanding_dues = money(patient.total_outstanding_dues - paid - credit)
        patient.credit_balance = money(patient.credit_balance - credit)

        invoice.paid_amount = money(invoice.paid_amount + paid)
        invoice.credit_applied = money(invoice.credit_applied + credit)

        lines = list(self.invoices.line_items(invoice.id))
        remaining = paid + credit
        for line in lines:
            if remaining <= ZERO:
                break
            if line.cancelled:
                continue
            take = min(remaining, money(line.amount - line.settled_amount))
            if take > ZERO:
                line.settled_amount = money(line.settled_amount + take)
                remaining -= take
                self.invoices.add(line)

        _refresh_invoice_totals(invoice, lines)

        payment = InvoicePayment(
            invoice_id=invoice.id,
            paid_amount=paid,
            credit_amount=credit,
            method=method.value,
            idempotency_key=idempotency_key,
            confirmed_by=confirmed_by,
        )
        self.invoices.add(payment)
        self.invoices.add(invoice)
        self.patients.add(patient)

        logger.info(
            f"Invoice {invoice.invoice_number}: paid {paid} + credit {credit}, "
            f"outstanding {invoice.outstanding_amount} ({invoice.payment_status})"
        )
        return invoice, payment, False

    # ---- cancellation ----

    def reverse_session_charge(self, tenant_id: str, session: TherapySession) -> LedgerReversal:
        # settled part comes back as credit, unsettled part leaves the dues
        line = self.invoices.line_item_for_session(session.id)
        if line is None or line.cancelled:
            return LedgerReversal()

        invoice = self.invoices.get(tenant_id, line.invoice_id, for_update=True)
        if invoice is None:
            raise NotFoundError("invoice", line.invoice_id)

        refund = ZERO
        unsettled = ZERO
        if invoice.ledger_posted:
            refund = money(line.settled_amount)
            unsettled = money(line.amount - line.settled_amount)

            patient = self.patients.get(tenant_id, invoice.patient_id, for_update=True)
            if patient is None:
                raise NotFoundError("patient", invoice.patient_id)
            patient.credit_balance = money(patient.credit_balance + refund)
            patient.total_outstanding_dues = money(max(ZERO, patient.total_outstanding_dues - unsettled))
            invoice.refunded_amount = money(invoice.refunded_amount + refund)
            self.patients.add(patient)

        line.cancelled = True
        invoice.total_amount = money(invoice.total_amount - line.amount)
        self.invoices.add(line)

        _refresh_invoice_totals(invoice, list(self.invoices.line_items(invoice.id)))
        self.invoices.add(invoice)

        logger.info(
            f"Reversed session {session.id} on invoice {invoice.invoice_number}: "
            f"credit +{refund}, dues -{unsettled}"
        )
        return LedgerReversal(invoice_id=invoice.id, credit_refund=refund, dues_reduction=unsettled)

    # ---- credit purchase ----

    def record_payment(
        self,
        tenant_id: str,
        patient_id: int,
        amount: Decimal,
        method: PaymentMethod,
        paid_on: date,
        description: Optional[str] = None,
        confirmed_by: Optional[int] = None,
    ) -> Tuple[Patient, Payment]:
        amount = money(amount)
        if amount <= ZERO:
            raise ValidationError("INVALID_AMOUNT", amount=str(amount))

        patient = self.patients.get(tenant_id, patient_id, for_update=True)
        if patient is None or not patient.active:
            raise NotFoundError("patient", patient_id)

        payment = Payment(
            tenant_id=tenant_id,
            patient_id=patient_id,
            amount=amount,
            method=method.value,
            paid_on=paid_on,
            description=description,
            confirmed_by=confirmed_by,
        )
        self.patients.add(payment)

        if method == PaymentMethod.prepaid_credit:
            patient.credit_balance = money(patient.credit_balance + amount)
            self.patients.add(patient)
            logger.info(f"Patient {patient_id} credit +{amount} -> {patient.credit_balance}")

        return patient, payment
