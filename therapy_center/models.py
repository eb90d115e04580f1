# therapy_center/models.py

from typing import Optional
from datetime import datetime, timezone, date as Date, time
from decimal import Decimal

from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import SQLModel, Field

# Partial indexes: a cancelled session frees its start time.
_NOT_CANCELLED = text("status != 'CANCELLED'")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    email: str
    first_name: str
    last_name: str
    role: str  # WORKSPACE_ADMIN, OPERATOR, THERAPIST or ACCOUNTANT
    active: bool = True


class TherapyType(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    name: str
    default_duration: int  # minutes
    default_cost: Decimal = Field(max_digits=10, decimal_places=2)
    active: bool = True


class Patient(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    first_name: str
    last_name: str
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    active: bool = True

    # ledger, mutated only by the balance reconciler
    credit_balance: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_outstanding_dues: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)


class TherapistAvailability(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    therapist_id: int = Field(foreign_key="user.id", index=True)
    therapy_type_id: int = Field(foreign_key="therapytype.id")
    day_of_week: str  # MONDAY ... SUNDAY
    start_time: time
    end_time: time
    active: bool = True


class TherapistUnavailability(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    therapist_id: int = Field(foreign_key="user.id", index=True)
    start_date: Date
    end_date: Date
    # both None blocks the whole day
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: str  # SICK_LEAVE, VACATION, PERSONAL_LEAVE, EMERGENCY, TRAINING or OTHER
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)


class TherapistPricing(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("tenant_id", "therapist_id", "therapy_type_id", name="uq_pricing_pair"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    therapist_id: int = Field(foreign_key="user.id")
    therapy_type_id: int = Field(foreign_key="therapytype.id")
    session_cost: Decimal = Field(max_digits=10, decimal_places=2)
    session_duration: int  # minutes
    active: bool = True


class TherapySession(SQLModel, table=True):
    __table_args__ = (
        Index(
            "uq_therapist_slot",
            "therapist_id", "scheduled_date", "start_time",
            unique=True,
            sqlite_where=_NOT_CANCELLED,
            postgresql_where=_NOT_CANCELLED,
        ),
        Index(
            "uq_patient_slot",
            "patient_id", "scheduled_date", "start_time",
            unique=True,
            sqlite_where=_NOT_CANCELLED,
            postgresql_where=_NOT_CANCELLED,
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    patient_id: int = Field(foreign_key="patient.id", index=True)
    therapist_id: int = Field(foreign_key="user.id", index=True)
    therapy_type_id: int = Field(foreign_key="therapytype.id")

    scheduled_date: Date = Field(index=True)
    start_time: time
    end_time: time
    cost: Decimal = Field(max_digits=10, decimal_places=2)
    status: str = "SCHEDULED"
    cancel_reason: Optional[str] = None
    notes: Optional[str] = None


class Invoice(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoice_number"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    patient_id: int = Field(foreign_key="patient.id", index=True)
    invoice_number: str
    invoice_date: Date

    total_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    paid_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    credit_applied: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    refunded_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    outstanding_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)

    payment_status: str = "UNPAID"  # UNPAID, PARTIALLY_PAID, PAID
    status: str = "ACTIVE"  # ACTIVE or VOID
    # set by the first payment confirmation, when the invoice hits the patient's dues
    ledger_posted: bool = False
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)


class InvoiceLineItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    invoice_id: int = Field(foreign_key="invoice.id", index=True)
    session_id: int = Field(foreign_key="therapysession.id", unique=True)
    description: str
    amount: Decimal = Field(max_digits=10, decimal_places=2)
    settled_amount: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    cancelled: bool = False


class InvoicePayment(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("invoice_id", "idempotency_key", name="uq_invoice_payment_key"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    invoice_id: int = Field(foreign_key="invoice.id", index=True)
    paid_amount: Decimal = Field(max_digits=12, decimal_places=2)
    credit_amount: Decimal = Field(max_digits=12, decimal_places=2)
    method: str
    idempotency_key: Optional[str] = None
    confirmed_by: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)


class Payment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    patient_id: int = Field(foreign_key="patient.id", index=True)
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    method: str  # CASH, CARD, BANK_TRANSFER or PREPAID_CREDIT
    description: Optional[str] = None
    confirmed_by: Optional[int] = None
    paid_on: Date
