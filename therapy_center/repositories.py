# therapy_center/repositories.py

from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from .models import (
    Invoice,
    InvoiceLineItem,
    InvoicePayment,
    Patient,
    Payment,
    TherapistAvailability,
    TherapistPricing,
    TherapistUnavailability,
    TherapySession,
    TherapyType,
    User,
)
from .schemas import InvoiceStatus, SessionStatus, UserRole


class PatientRepository(Protocol):
    def get(self, tenant_id: str, patient_id: int, for_update: bool = False) -> Optional[Patient]: ...
    def add(self, row) -> None: ...


class TherapistRepository(Protocol):
    def get_therapist(self, tenant_id: str, therapist_id: int) -> Optional[User]: ...


class TherapyTypeRepository(Protocol):
    def get(self, tenant_id: str, therapy_type_id: int) -> Optional[TherapyType]: ...


class SessionRepository(Protocol):
    def get(self, tenant_id: str, session_id: int, for_update: bool = False) -> Optional[TherapySession]: ...
    def list_on_date(
        self,
        tenant_id: str,
        on_date: date,
        therapist_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        include_cancelled: bool = False,
    ) -> Sequence[TherapySession]: ...
    def add(self, row) -> None: ...


class AvailabilityRepository(Protocol):
    def list_windows(
        self,
        tenant_id: str,
        therapist_id: int,
        day_of_week: Optional[str] = None,
        therapy_type_id: Optional[int] = None,
        active_only: bool = True,
    ) -> Sequence[TherapistAvailability]: ...


class UnavailabilityRepository(Protocol):
    def covering(self, tenant_id: str, therapist_id: int, on_date: date) -> Sequence[TherapistUnavailability]: ...


class PricingRepository(Protocol):
    def get_override(
        self, tenant_id: str, therapist_id: int, therapy_type_id: int
    ) -> Optional[TherapistPricing]: ...


class InvoiceRepository(Protocol):
    def get(self, tenant_id: str, invoice_id: int, for_update: bool = False) -> Optional[Invoice]: ...
    def line_items(self, invoice_id: int) -> Sequence[InvoiceLineItem]: ...
    def line_item_for_session(self, session_id: int) -> Optional[InvoiceLineItem]: ...
    def invoiced_session_ids(self, session_ids: Iterable[int]) -> set: ...
    def latest_number(self, tenant_id: str, prefix: str) -> Optional[str]: ...
    def find_payment(self, invoice_id: int, idempotency_key: str) -> Optional[InvoicePayment]: ...
    def add(self, row) -> None: ...


class _SqlRepository:
    def __init__(self, db: Session):
        self.db = db

    def add(self, row) -> None:
        self.db.add(row)

    def delete(self, row) -> None:
        self.db.delete(row)

    def flush(self) -> None:
        self.db.flush()


class SqlPatientRepository(_SqlRepository):
    def get(self, tenant_id, patient_id, for_update=False):
        stmt = select(Patient).where(Patient.tenant_id == tenant_id).where(Patient.id == patient_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.exec(stmt).first()

    def get_active(self, tenant_id, patient_id):
        patient = self.get(tenant_id, patient_id)
        if patient is None or not patient.active:
            return None
        return patient

    def list(self, tenant_id, offset=0, limit=20) -> Tuple[List[Patient], int]:
        stmt = select(Patient).where(Patient.tenant_id == tenant_id)
        total = self.db.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.db.exec(
            stmt.order_by(Patient.last_name, Patient.first_name).offset(offset).limit(limit)
        ).all()
        return list(rows), total

    def payments(self, tenant_id, patient_id) -> List[Payment]:
        return list(self.db.exec(
            select(Payment)
            .where(Payment.tenant_id == tenant_id)
            .where(Payment.patient_id == patient_id)
            .order_by(Payment.paid_on.desc(), Payment.id.desc())
        ).all())


class SqlTherapistRepository(_SqlRepository):
    def get_therapist(self, tenant_id, therapist_id):
        return self.db.exec(
            select(User)
            .where(User.tenant_id == tenant_id)
            .where(User.id == therapist_id)
            .where(User.role == UserRole.therapist.value)
            .where(User.active == True)  # noqa: E712
        ).first()


class SqlTherapyTypeRepository(_SqlRepository):
    def get(self, tenant_id, therapy_type_id):
        return self.db.exec(
            select(TherapyType)
            .where(TherapyType.tenant_id == tenant_id)
            .where(TherapyType.id == therapy_type_id)
            .where(TherapyType.active == True)  # noqa: E712
        ).first()


class SqlSessionRepository(_SqlRepository):
    def get(self, tenant_id, session_id, for_update=False):
        stmt = (
            select(TherapySession)
            .where(TherapySession.tenant_id == tenant_id)
            .where(TherapySession.id == session_id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.exec(stmt).first()

    def list_on_date(self, tenant_id, on_date, therapist_id=None, patient_id=None, include_cancelled=False):
        stmt = (
            select(TherapySession)
            .where(TherapySession.tenant_id == tenant_id)
            .where(TherapySession.scheduled_date == on_date)
        )
        if therapist_id is not None:
            stmt = stmt.where(TherapySession.therapist_id == therapist_id)
        if patient_id is not None:
            stmt = stmt.where(TherapySession.patient_id == patient_id)
        if not include_cancelled:
            stmt = stmt.where(TherapySession.status != SessionStatus.cancelled.value)
        return self.db.exec(stmt.order_by(TherapySession.start_time)).all()

    def search(
        self,
        tenant_id,
        patient_id=None,
        therapist_id=None,
        therapy_type_id=None,
        status=None,
        start_date=None,
        end_date=None,
        offset=0,
        limit=20,
    ) -> Tuple[List[TherapySession], int]:
        stmt = select(TherapySession).where(TherapySession.tenant_id == tenant_id)
        if patient_id is not None:
            stmt = stmt.where(TherapySession.patient_id == patient_id)
        if therapist_id is not None:
            stmt = stmt.where(TherapySession.therapist_id == therapist_id)
        if therapy_type_id is not None:
            stmt = stmt.where(TherapySession.therapy_type_id == therapy_type_id)
        if status is not None:
            stmt = stmt.where(TherapySession.status == status)
        if start_date is not None:
            stmt = stmt.where(TherapySession.scheduled_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(TherapySession.scheduled_date <= end_date)

        total = self.db.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.db.exec(
            stmt.order_by(TherapySession.scheduled_date.desc(), TherapySession.start_time)
            .offset(offset)
            .limit(limit)
        ).all()
        return list(rows), total

    def calendar(self, tenant_id, start_date, end_date, therapist_id=None) -> List[TherapySession]:
        stmt = (
            select(TherapySession)
            .where(TherapySession.tenant_id == tenant_id)
            .where(TherapySession.scheduled_date >= start_date)
            .where(TherapySession.scheduled_date <= end_date)
            .where(TherapySession.status.in_([
                SessionStatus.scheduled.value,
                SessionStatus.completed.value,
            ]))
        )
        if therapist_id is not None:
            stmt = stmt.where(TherapySession.therapist_id == therapist_id)
        return list(self.db.exec(
            stmt.order_by(TherapySession.scheduled_date, TherapySession.start_time)
        ).all())

    def scheduled_between(self, tenant_id, therapist_id, start_date, end_date) -> List[TherapySession]:
        return list(self.db.exec(
            select(TherapySession)
            .where(TherapySession.tenant_id == tenant_id)
            .where(TherapySession.therapist_id == therapist_id)
            .where(TherapySession.scheduled_date >= start_date)
            .where(TherapySession.scheduled_date <= end_date)
            .where(TherapySession.status == SessionStatus.scheduled.value)
            .order_by(TherapySession.scheduled_date, TherapySession.start_time)
        ).all())

    def uninvoiced(self, tenant_id, patient_id) -> List[TherapySession]:
        invoiced = select(InvoiceLineItem.session_id).where(InvoiceLineItem.cancelled == False)  # noqa: E712
        return list(self.db.exec(
            select(TherapySession)
            .where(TherapySession.tenant_id == tenant_id)
            .where(TherapySession.patient_id == patient_id)
            .where(TherapySession.status != SessionStatus.cancelled.value)
            .where(TherapySession.id.not_in(invoiced))
            .order_by(TherapySession.scheduled_date, TherapySession.start_time)
        ).all())


class SqlAvailabilityRepository(_SqlRepository):
    def get(self, tenant_id, window_id) -> Optional[TherapistAvailability]:
        return self.db.exec(
            select(TherapistAvailability)
            .where(TherapistAvailability.tenant_id == tenant_id)
            .where(TherapistAvailability.id == window_id)
        ).first()

    def list_windows(self, tenant_id, therapist_id, day_of_week=None, therapy_type_id=None, active_only=True):
        stmt = (
            select(TherapistAvailability)
            .where(TherapistAvailability.tenant_id == tenant_id)
            .where(TherapistAvailability.therapist_id == therapist_id)
        )
        if day_of_week is not None:
            stmt = stmt.where(TherapistAvailability.day_of_week == day_of_week)
        if therapy_type_id is not None:
            stmt = stmt.where(TherapistAvailability.therapy_type_id == therapy_type_id)
        if active_only:
            stmt = stmt.where(TherapistAvailability.active == True)  # noqa: E712
        return self.db.exec(
            stmt.order_by(TherapistAvailability.day_of_week, TherapistAvailability.start_time)
        ).all()


class SqlUnavailabilityRepository(_SqlRepository):
    def get(self, tenant_id, period_id) -> Optional[TherapistUnavailability]:
        return self.db.exec(
            select(TherapistUnavailability)
            .where(TherapistUnavailability.tenant_id == tenant_id)
            .where(TherapistUnavailability.id == period_id)
        ).first()

    def covering(self, tenant_id, therapist_id, on_date):
        return self.db.exec(
            select(TherapistUnavailability)
            .where(TherapistUnavailability.tenant_id == tenant_id)
            .where(TherapistUnavailability.therapist_id == therapist_id)
            .where(TherapistUnavailability.start_date <= on_date)
            .where(TherapistUnavailability.end_date >= on_date)
        ).all()

    def list_for_therapist(self, tenant_id, therapist_id, start_date=None, end_date=None):
        stmt = (
            select(TherapistUnavailability)
            .where(TherapistUnavailability.tenant_id == tenant_id)
            .where(TherapistUnavailability.therapist_id == therapist_id)
        )
        # periods that overlap the requested range
        if start_date is not None:
            stmt = stmt.where(TherapistUnavailability.end_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(TherapistUnavailability.start_date <= end_date)
        return list(self.db.exec(
            stmt.order_by(TherapistUnavailability.start_date, TherapistUnavailability.start_time)
        ).all())


class SqlPricingRepository(_SqlRepository):
    def get(self, tenant_id, pricing_id) -> Optional[TherapistPricing]:
        return self.db.exec(
            select(TherapistPricing)
            .where(TherapistPricing.tenant_id == tenant_id)
            .where(TherapistPricing.id == pricing_id)
        ).first()

    def get_override(self, tenant_id, therapist_id, therapy_type_id):
        return self.db.exec(
            select(TherapistPricing)
            .where(TherapistPricing.tenant_id == tenant_id)
            .where(TherapistPricing.therapist_id == therapist_id)
            .where(TherapistPricing.therapy_type_id == therapy_type_id)
            .where(TherapistPricing.active == True)  # noqa: E712
        ).first()

    def find_pair(self, tenant_id, therapist_id, therapy_type_id) -> Optional[TherapistPricing]:
        return self.db.exec(
            select(TherapistPricing)
            .where(TherapistPricing.tenant_id == tenant_id)
            .where(TherapistPricing.therapist_id == therapist_id)
            .where(TherapistPricing.therapy_type_id == therapy_type_id)
        ).first()

    def list_for_therapist(self, tenant_id, therapist_id) -> List[TherapistPricing]:
        return list(self.db.exec(
            select(TherapistPricing)
            .where(TherapistPricing.tenant_id == tenant_id)
            .where(TherapistPricing.therapist_id == therapist_id)
            .where(TherapistPricing.active == True)  # noqa: E712
            .order_by(TherapistPricing.therapy_type_id)
        ).all())


class SqlInvoiceRepository(_SqlRepository):
    def get(self, tenant_id, invoice_id, for_update=False):
        stmt = select(Invoice).where(Invoice.tenant_id == tenant_id).where(Invoice.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.exec(stmt).first()

    def line_items(self, invoice_id):
        return self.db.exec(
            select(InvoiceLineItem)
            .where(InvoiceLineItem.invoice_id == invoice_id)
            .order_by(InvoiceLineItem.id)
        ).all()

    def line_item_for_session(self, session_id):
        return self.db.exec(
            select(InvoiceLineItem).where(InvoiceLineItem.session_id == session_id)
        ).first()

    def invoiced_session_ids(self, session_ids):
        ids = list(session_ids)
        if not ids:
            return set()
        return set(self.db.exec(
            select(InvoiceLineItem.session_id).where(InvoiceLineItem.session_id.in_(ids))
        ).all())

    def latest_number(self, tenant_id, prefix):
        return self.db.exec(
            select(Invoice.invoice_number)
            .where(Invoice.tenant_id == tenant_id)
            .where(Invoice.invoice_number.startswith(prefix))
            .order_by(func.length(Invoice.invoice_number).desc(), Invoice.invoice_number.desc())
        ).first()

    def find_payment(self, invoice_id, idempotency_key):
        return self.db.exec(
            select(InvoicePayment)
            .where(InvoicePayment.invoice_id == invoice_id)
            .where(InvoicePayment.idempotency_key == idempotency_key)
        ).first()

    def for_patient(self, tenant_id, patient_id, offset=0, limit=20) -> Tuple[List[Invoice], int]:
        stmt = (
            select(Invoice)
            .where(Invoice.tenant_id == tenant_id)
            .where(Invoice.patient_id == patient_id)
            .where(Invoice.status == InvoiceStatus.active.value)
        )
        total = self.db.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.db.exec(
            stmt.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).offset(offset).limit(limit)
        ).all()
        return list(rows), total


@dataclass
class Repositories:
    patients: SqlPatientRepository
    therapists: SqlTherapistRepository
    therapy_types: SqlTherapyTypeRepository
    sessions: SqlSessionRepository
    availability: SqlAvailabilityRepository
    unavailability: SqlUnavailabilityRepository
    pricing: SqlPricingRepository
    invoices: SqlInvoiceRepository

    @classmethod
    def for_session(cls, db: Session) -> "Repositories":
        return cls(
            patients=SqlPatientRepository(db),
            therapists=SqlTherapistRepository(db),
            therapy_types=SqlTherapyTypeRepository(db),
            sessions=SqlSessionRepository(db),
            availability=SqlAvailabilityRepository(db),
            unavailability=SqlUnavailabilityRepository(db),
            pricing=SqlPricingRepository(db),
            invoices=SqlInvoiceRepository(db),
        )
