# therapy_center/services/sessions.py

import logging
from datetime import date, time
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..audit import AuditEvent, AuditSink, log_audit_event, snapshot
from ..core import add_minutes, money
from ..db import atomic
from ..errors import (
    InvalidStateTransitionError,
    NotFoundError,
    PatientSchedulingConflict,
    TherapistSchedulingConflict,
    ValidationError,
)
from ..models import TherapySession
from ..repositories import Repositories
from ..schemas import SessionCreate, SessionStatus, SessionUpdate
from .balances import BalanceReconciler, LedgerReversal
from .conflicts import ConflictChecker, ConflictResult
from .pricing import PricingResolver
from .slots import AvailabilityResolver, Slot, generate_slots

logger = logging.getLogger(__name__)

# CANCELLED is reachable only through cancel_session, which also settles the ledger.
ALLOWED_TRANSITIONS = {
    SessionStatus.scheduled: {SessionStatus.completed, SessionStatus.no_show, SessionStatus.cancelled},
    SessionStatus.no_show: {SessionStatus.cancelled},
    SessionStatus.completed: set(),
    SessionStatus.cancelled: set(),
}


def ensure_transition(current: SessionStatus, target: SessionStatus, session_id: Optional[int] = None):
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStateTransitionError(
            session_id=session_id, from_status=current.value, to_status=target.value
        )


class SessionService:
    def __init__(self, db: Session, audit: AuditSink = log_audit_event):
        self.db = db
        self.repos = Repositories.for_session(db)
        self.conflicts = ConflictChecker(self.repos.sessions)
        self.pricing = PricingResolver(self.repos.pricing, self.repos.therapy_types)
        self.availability = AvailabilityResolver(self.repos.availability, self.repos.unavailability)
        self.reconciler = BalanceReconciler(
            self.repos.patients,
            self.repos.sessions,
            self.repos.invoices,
            self.repos.therapy_types,
        )
        self.audit = audit

    # ---- reads ----

    def get_session(self, tenant_id: str, session_id: int) -> TherapySession:
        session = self.repos.sessions.get(tenant_id, session_id)
        if session is None:
            raise NotFoundError("session", session_id)
        return session

    def list_sessions(self, tenant_id: str, offset: int = 0, limit: int = 20, **filters):
        return self.repos.sessions.search(tenant_id, offset=offset, limit=limit, **filters)

    def calendar(self, tenant_id: str, start_date: date, end_date: date, therapist_id: Optional[int] = None):
        if end_date < start_date:
            raise ValidationError("INVALID_DATE_RANGE", start_date=start_date.isoformat(), end_date=end_date.isoformat())
        return self.repos.sessions.calendar(tenant_id, start_date, end_date, therapist_id=therapist_id)

    def check_conflict(
        self,
        tenant_id: str,
        therapist_id: int,
        patient_id: int,
        on_date: date,
        start_time: time,
        end_time: time,
        exclude_session_id: Optional[int] = None,
    ) -> ConflictResult:
        return self.conflicts.check_conflict(
            tenant_id, therapist_id, patient_id, on_date, start_time, end_time, exclude_session_id
        )

    def slots_for(
        self, tenant_id: str, therapist_id: int, therapy_type_id: int, on_date: date
    ) -> Tuple[int, List[Slot]]:
        if self.repos.therapists.get_therapist(tenant_id, therapist_id) is None:
            raise NotFoundError("therapist", therapist_id)

        quote = self.pricing.resolve_pricing(tenant_id, therapist_id, therapy_type_id)
        windows = self.availability.windows_for_date(tenant_id, therapist_id, on_date, therapy_type_id)
        booked = self.repos.sessions.list_on_date(tenant_id, on_date, therapist_id=therapist_id)
        blocked = self.availability.blocked_periods(tenant_id, therapist_id, on_date)
        return quote.duration, generate_slots(windows, quote.duration, booked, blocked)

    # ---- writes ----

    def create_session(self, tenant_id: str, data: SessionCreate, actor_id: Optional[int] = None) -> TherapySession:
        # 1) referenced rows exist in this tenant
        if self.repos.patients.get_active(tenant_id, data.patient_id) is None:
            raise NotFoundError("patient", data.patient_id)
        if self.repos.therapists.get_therapist(tenant_id, data.therapist_id) is None:
            raise NotFoundError("therapist", data.therapist_id)
        if self.repos.therapy_types.get(tenant_id, data.therapy_type_id) is None:
            raise NotFoundError("therapy_type", data.therapy_type_id)

        # 2) fill end time and cost from the resolved pricing
        quote = self.pricing.resolve_pricing(tenant_id, data.therapist_id, data.therapy_type_id)
        end_time = data.end_time or self._end_from_duration(data.start_time, quote.duration)
        cost = money(data.cost) if data.cost is not None else quote.cost

        # 3) therapist is free then and neither side is double booked
        self._ensure_available(
            tenant_id, data.therapist_id, data.therapy_type_id, data.scheduled_date, data.start_time, end_time
        )
        self.conflicts.ensure_no_conflict(
            tenant_id, data.therapist_id, data.patient_id, data.scheduled_date, data.start_time, end_time
        )

        # 4) persist; the slot indexes back up the overlap check
        session = TherapySession(
            tenant_id=tenant_id,
            patient_id=data.patient_id,
            therapist_id=data.therapist_id,
            therapy_type_id=data.therapy_type_id,
            scheduled_date=data.scheduled_date,
            start_time=data.start_time,
            end_time=end_time,
            cost=cost,
            status=SessionStatus.scheduled.value,
            notes=data.notes,
        )
        self._persist(session)

        logger.info(
            f"Booked session {session.id}: therapist {session.therapist_id}, patient {session.patient_id}, "
            f"{session.scheduled_date} {session.start_time}-{session.end_time}"
        )
        self.audit(AuditEvent(tenant_id, actor_id, "CREATE", "session", session.id, after=snapshot(session)))
        return session

    def update_session(
        self, tenant_id: str, session_id: int, data: SessionUpdate, actor_id: Optional[int] = None
    ) -> TherapySession:
        session = self.repos.sessions.get(tenant_id, session_id, for_update=True)
        if session is None:
            raise NotFoundError("session", session_id)

        current = SessionStatus(session.status)
        if current in (SessionStatus.completed, SessionStatus.cancelled):
            raise InvalidStateTransitionError(session_id=session_id, from_status=current.value)
        if data.status == SessionStatus.cancelled:
            # needs a reason and a ledger reversal
            raise ValidationError("USE_CANCEL_ENDPOINT", session_id=session_id)
        if data.status is not None and data.status != current:
            ensure_transition(current, data.status, session_id)

        before = snapshot(session)

        if data.scheduled_date or data.start_time or data.end_time:
            new_date = data.scheduled_date or session.scheduled_date
            new_start = data.start_time or session.start_time
            new_end = data.end_time or session.end_time
            if new_end <= new_start:
                raise ValidationError("INVALID_TIME_RANGE", start_time=str(new_start), end_time=str(new_end))

            self._ensure_available(
                tenant_id, session.therapist_id, session.therapy_type_id, new_date, new_start, new_end
            )
            self.conflicts.ensure_no_conflict(
                tenant_id, session.therapist_id, session.patient_id, new_date, new_start, new_end,
                exclude_session_id=session.id,
            )
            session.scheduled_date = new_date
            session.start_time = new_start
            session.end_time = new_end

        if data.status is not None:
            session.status = data.status.value
        if data.notes is not None:
            session.notes = data.notes or None

        self._persist(session)
        self.audit(AuditEvent(tenant_id, actor_id, "UPDATE", "session", session.id,
                              before=before, after=snapshot(session)))
        return session

    def cancel_session(
        self, tenant_id: str, session_id: int, cancel_reason: str, actor_id: Optional[int] = None
    ) -> Tuple[TherapySession, LedgerReversal]:
        if not cancel_reason or len(cancel_reason.strip()) < 5:
            raise ValidationError("CANCEL_REASON_REQUIRED")

        with atomic(self.db):
            session = self.repos.sessions.get(tenant_id, session_id, for_update=True)
            if session is None:
                raise NotFoundError("session", session_id)

            ensure_transition(SessionStatus(session.status), SessionStatus.cancelled, session_id)
            before = snapshot(session)

            reversal = self.reconciler.reverse_session_charge(tenant_id, session)
            session.status = SessionStatus.cancelled.value
            session.cancel_reason = cancel_reason.strip()
            self.repos.sessions.add(session)

        self.db.refresh(session)
        logger.info(f"Cancelled session {session.id} (credit refund {reversal.credit_refund})")
        self.audit(AuditEvent(
            tenant_id, actor_id, "CANCEL", "session", session.id,
            before=before, after=snapshot(session),
            extra={
                "invoice_id": reversal.invoice_id,
                "credit_refund": str(reversal.credit_refund),
                "dues_reduction": str(reversal.dues_reduction),
            },
        ))
        return session, reversal

    # ---- helpers ----

    @staticmethod
    def _end_from_duration(start: time, duration: int) -> time:
        try:
            return add_minutes(start, duration)
        except ValueError:
            raise ValidationError("INVALID_TIME_RANGE", start_time=str(start), duration=duration)

    def _ensure_available(self, tenant_id, therapist_id, therapy_type_id, on_date, start_time, end_time):
        if not self.availability.is_within_availability(
            tenant_id, therapist_id, therapy_type_id, on_date, start_time, end_time
        ):
            raise ValidationError(
                "THERAPIST_NOT_AVAILABLE",
                therapist_id=therapist_id,
                date=on_date.isoformat(),
                start_time=start_time.strftime("%H:%M"),
                end_time=end_time.strftime("%H:%M"),
            )

    def _persist(self, session: TherapySession) -> None:
        try:
            with atomic(self.db):
                self.repos.sessions.add(session)
        except IntegrityError as exc:
            # the unique slot indexes caught a booking that raced past the overlap check
            if "patient" in str(exc.orig):
                raise PatientSchedulingConflict(
                    patient_id=session.patient_id,
                    date=session.scheduled_date.isoformat(),
                    start_time=session.start_time.strftime("%H:%M"),
                )
            raise TherapistSchedulingConflict(
                therapist_id=session.therapist_id,
                date=session.scheduled_date.isoformat(),
                start_time=session.start_time.strftime("%H:%M"),
            )
        self.db.refresh(session)
