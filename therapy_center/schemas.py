# therapy_center/schemas.py

from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

T = TypeVar("T")


class UserRole(str, Enum):
    workspace_admin = "WORKSPACE_ADMIN"
    operator = "OPERATOR"
    therapist = "THERAPIST"
    accountant = "ACCOUNTANT"


class DayOfWeek(str, Enum):
    monday = "MONDAY"
    tuesday = "TUESDAY"
    wednesday = "WEDNESDAY"
    thursday = "THURSDAY"
    friday = "FRIDAY"
    saturday = "SATURDAY"
    sunday = "SUNDAY"

    @classmethod
    def for_date(cls, on_date: date) -> "DayOfWeek":
        return list(cls)[on_date.weekday()]  # 0=Mon, 1=Tues....


class SessionStatus(str, Enum):
    scheduled = "SCHEDULED"
    completed = "COMPLETED"
    cancelled = "CANCELLED"
    no_show = "NO_SHOW"


class PaymentStatus(str, Enum):
    unpaid = "UNPAID"
    partially_paid = "PARTIALLY_PAID"
    paid = "PAID"


class InvoiceStatus(str, Enum):
    active = "ACTIVE"
    void = "VOID"


class PaymentMethod(str, Enum):
    cash = "CASH"
    card = "CARD"
    bank_transfer = "BANK_TRANSFER"
    prepaid_credit = "PREPAID_CREDIT"


class UnavailabilityReason(str, Enum):
    sick_leave = "SICK_LEAVE"
    vacation = "VACATION"
    personal_leave = "PERSONAL_LEAVE"
    emergency = "EMERGENCY"
    training = "TRAINING"
    other = "OTHER"


# ---- envelope ----

class ApiError(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = {}


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    error: Optional[ApiError] = None


class Page(BaseModel, Generic[T]):
    items: List[T]
    page: int
    limit: int
    total: int
    total_pages: int


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


def _check_order(start: Optional[time], end: Optional[time]):
    if start is not None and end is not None and end <= start:
        raise ValueError("end_time must be after start_time")


# ---- patients ----

class PatientCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None


class PatientPublic(ORMModel):
    id: int
    first_name: str
    last_name: str
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    active: bool
    credit_balance: Decimal
    total_outstanding_dues: Decimal


class PatientBalance(BaseModel):
    patient_id: int
    credit_balance: Decimal
    total_outstanding_dues: Decimal
    uninvoiced_count: int
    uninvoiced_total: Decimal
    net_payable: Decimal


class PaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    method: PaymentMethod
    paid_on: Optional[date] = None
    description: Optional[str] = None


class PaymentPublic(ORMModel):
    id: int
    patient_id: int
    amount: Decimal
    method: PaymentMethod
    paid_on: date
    description: Optional[str] = None


# ---- availability ----

class AvailabilityCreate(BaseModel):
    therapy_type_id: int
    day_of_week: DayOfWeek
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def check_times(self):
        _check_order(self.start_time, self.end_time)
        return self


class AvailabilityUpdate(BaseModel):
    day_of_week: Optional[DayOfWeek] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    active: Optional[bool] = None

    @model_validator(mode="after")
    def check_times(self):
        _check_order(self.start_time, self.end_time)
        return self


class AvailabilityPublic(ORMModel):
    id: int
    therapist_id: int
    therapy_type_id: int
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    active: bool


class SlotPublic(BaseModel):
    start_time: time
    end_time: time
    is_available: bool
    occupying_session_id: Optional[int] = None


class SlotsResponse(BaseModel):
    therapist_id: int
    therapy_type_id: int
    date: date
    session_duration: int
    slots: List[SlotPublic]


# ---- unavailability ----

class UnavailabilityCreate(BaseModel):
    start_date: date
    end_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: UnavailabilityReason
    notes: Optional[str] = Field(default=None, max_length=500)
    # SCHEDULED sessions the caller has already moved out of the period
    reschedule_session_ids: Optional[List[int]] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time go together")
        _check_order(self.start_time, self.end_time)
        return self


class UnavailabilityUpdate(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: Optional[UnavailabilityReason] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        _check_order(self.start_time, self.end_time)
        return self


class UnavailabilityPublic(ORMModel):
    id: int
    therapist_id: int
    start_date: date
    end_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: UnavailabilityReason
    notes: Optional[str] = None


class RescheduleSlotPublic(BaseModel):
    date: date
    start_time: time
    end_time: time


# ---- pricing ----

class PricingCreate(BaseModel):
    therapy_type_id: int
    session_duration: int
    session_cost: Decimal


class PricingUpdate(BaseModel):
    session_duration: Optional[int] = None
    session_cost: Optional[Decimal] = None
    active: Optional[bool] = None


class PricingPublic(ORMModel):
    id: int
    therapist_id: int
    therapy_type_id: int
    session_duration: int
    session_cost: Decimal
    active: bool


class PricingQuotePublic(BaseModel):
    cost: Decimal
    duration: int
    is_custom_pricing: bool


# ---- sessions ----

class SessionCreate(BaseModel):
    patient_id: int
    therapist_id: int
    therapy_type_id: int
    scheduled_date: date
    start_time: time
    # when omitted, filled in from the resolved session duration / cost
    end_time: Optional[time] = None
    cost: Optional[Decimal] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def check_times(self):
        _check_order(self.start_time, self.end_time)
        return self


class SessionUpdate(BaseModel):
    scheduled_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    status: Optional[SessionStatus] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def check_times(self):
        _check_order(self.start_time, self.end_time)
        return self


class SessionCancel(BaseModel):
    cancel_reason: str = Field(min_length=5, max_length=500)


class SessionPublic(ORMModel):
    id: int
    patient_id: int
    therapist_id: int
    therapy_type_id: int
    scheduled_date: date
    start_time: time
    end_time: time
    cost: Decimal
    status: SessionStatus
    cancel_reason: Optional[str] = None
    notes: Optional[str] = None


class ConflictCheckResponse(BaseModel):
    therapist_conflict: bool
    patient_conflict: bool


# ---- invoices ----

class InvoiceCreate(BaseModel):
    patient_id: int
    session_ids: List[int] = Field(min_length=1)
    notes: Optional[str] = None


class InvoicePaymentCreate(BaseModel):
    paid_amount: Decimal = Field(default=Decimal("0"), ge=0)
    use_credit_amount: Decimal = Field(default=Decimal("0"), ge=0)
    method: PaymentMethod = PaymentMethod.cash
    idempotency_key: Optional[str] = Field(default=None, max_length=100)


class LineItemPublic(ORMModel):
    id: int
    session_id: int
    description: str
    amount: Decimal
    settled_amount: Decimal
    cancelled: bool


class InvoicePublic(ORMModel):
    id: int
    patient_id: int
    invoice_number: str
    invoice_date: date
    total_amount: Decimal
    paid_amount: Decimal
    credit_applied: Decimal
    refunded_amount: Decimal
    outstanding_amount: Decimal
    payment_status: PaymentStatus
    status: InvoiceStatus
    notes: Optional[str] = None
    line_items: List[LineItemPublic] = []
