# therapy_center/services/invoices.py

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..audit import AuditEvent, AuditSink, log_audit_event, snapshot
from ..core import ZERO, money
from ..db import atomic
from ..errors import ConflictError, NotFoundError
from ..models import Invoice, InvoiceLineItem, InvoicePayment, Patient, Payment
from ..repositories import Repositories
from ..schemas import PaymentMethod
from .balances import BalanceReconciler

logger = logging.getLogger(__name__)

INVOICE_NUMBER_ATTEMPTS = 5


@dataclass(frozen=True)
class PatientBalanceSummary:
    patient_id: int
    credit_balance: Decimal
    total_outstanding_dues: Decimal
    uninvoiced_count: int
    uninvoiced_total: Decimal
    net_payable: Decimal


def format_invoice_number(year: int, sequence: int) -> str:
    return f"INV-{year}-{sequence:03d}"


def next_invoice_number(latest: Optional[str], year: int) -> str:
    """INV-YYYY-NNN, restarting at 001 every year."""
    if latest is None:
        return format_invoice_number(year, 1)
    return format_invoice_number(year, int(latest.rsplit("-", 1)[1]) + 1)


class InvoiceService:
    def __init__(self, db: Session, audit: AuditSink = log_audit_event):
        self.db = db
        self.repos = Repositories.for_session(db)
        self.reconciler = BalanceReconciler(
            self.repos.patients,
            self.repos.sessions,
            self.repos.invoices,
            self.repos.therapy_types,
        )
        self.audit = audit

    def create_invoice(
        self,
        tenant_id: str,
        patient_id: int,
        session_ids: Sequence[int],
        actor_id: Optional[int] = None,
        notes: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Tuple[Invoice, List[InvoiceLineItem]]:
        today = today or date.today()
        prefix = f"INV-{today.year}-"

        for attempt in range(INVOICE_NUMBER_ATTEMPTS):
            number = next_invoice_number(self.repos.invoices.latest_number(tenant_id, prefix), today.year)
            invoice, lines = self.reconciler.build_invoice(
                tenant_id, patient_id, list(session_ids), number, today,
                created_by=actor_id, notes=notes,
            )
            try:
                with atomic(self.db):
                    self.repos.invoices.add(invoice)
                    self.repos.invoices.flush()
                    for line in lines:
                        line.invoice_id = invoice.id
                        self.repos.invoices.add(line)
            except IntegrityError:
                # another request took the number (or one of the sessions) first
                logger.warning(f"Invoice number {number} collided, attempt {attempt + 1}")
                if self.repos.invoices.invoiced_session_ids(session_ids):
                    raise ConflictError("SESSION_ALREADY_INVOICED", session_ids=sorted(
                        self.repos.invoices.invoiced_session_ids(session_ids)
                    ))
                continue

            self.db.refresh(invoice)
            logger.info(f"Created invoice {invoice.invoice_number} for patient {patient_id}: {invoice.total_amount}")
            self.audit(AuditEvent(tenant_id, actor_id, "CREATE", "invoice", invoice.id, after=snapshot(invoice)))
            return invoice, list(self.repos.invoices.line_items(invoice.id))

        raise ConflictError("INVOICE_NUMBER_UNAVAILABLE", prefix=prefix)

    def confirm_payment(
        self,
        tenant_id: str,
        invoice_id: int,
        paid_amount: Decimal,
        use_credit_amount: Decimal = ZERO,
        method: PaymentMethod = PaymentMethod.cash,
        idempotency_key: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> Tuple[Invoice, InvoicePayment]:
        existing = self.repos.invoices.get(tenant_id, invoice_id)
        before = snapshot(existing)

        try:
            with atomic(self.db):
                invoice, payment, replayed = self.reconciler.confirm_payment(
                    tenant_id,
                    invoice_id,
                    paid_amount,
                    use_credit_amount,
                    method=method,
                    idempotency_key=idempotency_key,
                    confirmed_by=actor_id,
                )
        except IntegrityError:
            # concurrent confirmation with the same idempotency key won the race
            previous = self.repos.invoices.find_payment(invoice_id, idempotency_key) if idempotency_key else None
            if previous is None:
                raise
            return self.repos.invoices.get(tenant_id, invoice_id), previous

        self.db.refresh(invoice)
        if not replayed:
            self.audit(AuditEvent(
                tenant_id, actor_id, "UPDATE", "invoice", invoice.id,
                before=before, after=snapshot(invoice),
                extra={"payment_id": payment.id},
            ))
        return invoice, payment

    def get_invoice(self, tenant_id: str, invoice_id: int) -> Tuple[Invoice, List[InvoiceLineItem]]:
        invoice = self.repos.invoices.get(tenant_id, invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice, list(self.repos.invoices.line_items(invoice.id))

    def patient_invoices(self, tenant_id: str, patient_id: int, offset: int = 0, limit: int = 20):
        if self.repos.patients.get(tenant_id, patient_id) is None:
            raise NotFoundError("patient", patient_id)
        return self.repos.invoices.for_patient(tenant_id, patient_id, offset=offset, limit=limit)

    def patient_balance(self, tenant_id: str, patient_id: int) -> PatientBalanceSummary:
        patient = self.repos.patients.get(tenant_id, patient_id)
        if patient is None:
            raise NotFoundError("patient", patient_id)

        uninvoiced = self.repos.sessions.uninvoiced(tenant_id, patient_id)
        uninvoiced_total = money(sum((s.cost for s in uninvoiced), ZERO))
        net_payable = uninvoiced_total - patient.credit_balance + patient.total_outstanding_dues

        return PatientBalanceSummary(
            patient_id=patient.id,
            credit_balance=money(patient.credit_balance),
            total_outstanding_dues=money(patient.total_outstanding_dues),
            uninvoiced_count=len(uninvoiced),
            uninvoiced_total=uninvoiced_total,
            net_payable=money(max(ZERO, net_payable)),
        )

    def record_payment(
        self,
        tenant_id: str,
        patient_id: int,
        amount: Decimal,
        method: PaymentMethod,
        paid_on: Optional[date] = None,
        description: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> Tuple[Patient, Payment]:
        with atomic(self.db):
            patient, payment = self.reconciler.record_payment(
                tenant_id,
                patient_id,
                amount,
                method,
                paid_on or date.today(),
                description=description,
                confirmed_by=actor_id,
            )
        self.db.refresh(payment)
        self.db.refresh(patient)
        self.audit(AuditEvent(tenant_id, actor_id, "CREATE", "payment", payment.id, after=snapshot(payment)))
        return patient, payment
