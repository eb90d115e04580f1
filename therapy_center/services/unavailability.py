# therapy_center/services/unavailability.py

import logging
from datetime import date, time, timedelta
from typing import List, Optional, Tuple

from sqlmodel import Session

from ..audit import AuditEvent, AuditSink, log_audit_event, snapshot
from ..db import atomic
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import TherapistUnavailability, TherapySession
from ..repositories import Repositories
from ..schemas import UnavailabilityCreate, UnavailabilityUpdate
from .pricing import PricingResolver
from .slots import AvailabilityResolver, generate_slots, is_blocked

logger = logging.getLogger(__name__)

MAX_RESCHEDULE_DAYS = 90


class UnavailabilityService:
    def __init__(self, db: Session, audit: AuditSink = log_audit_event):
        self.db = db
        self.repos = Repositories.for_session(db)
        self.availability = AvailabilityResolver(self.repos.availability, self.repos.unavailability)
        self.pricing = PricingResolver(self.repos.pricing, self.repos.therapy_types)
        self.audit = audit

    # ---- reads ----

    def list_periods(
        self,
        tenant_id: str,
        therapist_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[TherapistUnavailability]:
        return self.repos.unavailability.list_for_therapist(
            tenant_id, therapist_id, start_date=start_date, end_date=end_date
        )

    def get_period(self, tenant_id: str, therapist_id: int, period_id: int) -> TherapistUnavailability:
        period = self.repos.unavailability.get(tenant_id, period_id)
        if period is None or period.therapist_id != therapist_id:
            raise NotFoundError("unavailability", period_id)
        return period

    def affected_sessions(
        self,
        tenant_id: str,
        therapist_id: int,
        start_date: date,
        end_date: date,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
    ) -> List[TherapySession]:
        period = TherapistUnavailability(
            tenant_id=tenant_id,
            therapist_id=therapist_id,
            start_date=start_date,
            end_date=end_date,
            start_time=start_time,
            end_time=end_time,
            reason="OTHER",
        )
        _check_period(period)
        return self._affected(period)

    def reschedule_slots(
        self,
        tenant_id: str,
        therapist_id: int,
        therapy_type_id: int,
        start_date: date,
        days_ahead: int = 30,
    ) -> List[Tuple[date, time, time]]:
        """Free slots for moving a session, day by day from ``start_date``."""
        if not 1 <= days_ahead <= MAX_RESCHEDULE_DAYS:
            raise ValidationError("INVALID_DATE_RANGE", days_ahead=days_ahead)
        if self.repos.therapists.get_therapist(tenant_id, therapist_id) is None:
            raise NotFoundError("therapist", therapist_id)

        quote = self.pricing.resolve_pricing(tenant_id, therapist_id, therapy_type_id)
        free = []
        for offset in range(days_ahead):
            day = start_date + timedelta(days=offset)
            windows = self.availability.windows_for_date(tenant_id, therapist_id, day, therapy_type_id)
            if not windows:
                continue
            booked = self.repos.sessions.list_on_date(tenant_id, day, therapist_id=therapist_id)
            blocked = self.availability.blocked_periods(tenant_id, therapist_id, day)
            for slot in generate_slots(windows, quote.duration, booked, blocked):
                if slot.is_available:
                    free.append((day, slot.start_time, slot.end_time))
        return free

    # ---- writes ----

    def create_period(
        self, tenant_id: str, therapist_id: int, data: UnavailabilityCreate, actor_id: Optional[int] = None
    ) -> TherapistUnavailability:
        if self.repos.therapists.get_therapist(tenant_id, therapist_id) is None:
            raise NotFoundError("therapist", therapist_id)

        period = TherapistUnavailability(
            tenant_id=tenant_id,
            therapist_id=therapist_id,
            start_date=data.start_date,
            end_date=data.end_date,
            start_time=data.start_time,
            end_time=data.end_time,
            reason=data.reason.value,
            notes=data.notes,
            created_by=actor_id,
        )
        # listed sessions are being moved by the caller
        acknowledged = set(data.reschedule_session_ids or [])
        self._ensure_nothing_booked(period, acknowledged)

        with atomic(self.db):
            self.repos.unavailability.add(period)
        self.db.refresh(period)

        logger.info(
            f"Therapist {therapist_id} unavailable {period.start_date}..{period.end_date} ({period.reason})"
        )
        self.audit(AuditEvent(tenant_id, actor_id, "CREATE", "unavailability", period.id, after=snapshot(period)))
        return period

    def update_period(
        self,
        tenant_id: str,
        therapist_id: int,
        period_id: int,
        data: UnavailabilityUpdate,
        actor_id: Optional[int] = None,
    ) -> TherapistUnavailability:
        period = self.get_period(tenant_id, therapist_id, period_id)
        before = snapshot(period)
        changes = data.model_dump(exclude_unset=True)

        candidate = TherapistUnavailability(
            tenant_id=tenant_id,
            therapist_id=therapist_id,
            start_date=changes.get("start_date", period.start_date),
            end_date=changes.get("end_date", period.end_date),
            start_time=changes.get("start_time", period.start_time),
            end_time=changes.get("end_time", period.end_time),
            reason=period.reason,
        )
        _check_period(candidate)
        self._ensure_nothing_booked(candidate)

        with atomic(self.db):
            period.start_date = candidate.start_date
            period.end_date = candidate.end_date
            period.start_time = candidate.start_time
            period.end_time = candidate.end_time
            if data.reason is not None:
                period.reason = data.reason.value
            if "notes" in changes:
                period.notes = data.notes or None
            self.repos.unavailability.add(period)
        self.db.refresh(period)

        self.audit(AuditEvent(tenant_id, actor_id, "UPDATE", "unavailability", period.id,
                              before=before, after=snapshot(period)))
        return period

    def delete_period(self, tenant_id: str, therapist_id: int, period_id: int, actor_id: Optional[int] = None):
        period = self.get_period(tenant_id, therapist_id, period_id)
        before = snapshot(period)
        with atomic(self.db):
            self.repos.unavailability.delete(period)
        self.audit(AuditEvent(tenant_id, actor_id, "DELETE", "unavailability", period_id, before=before))

    # ---- helpers ----

    def _affected(self, period: TherapistUnavailability) -> List[TherapySession]:
        scheduled = self.repos.sessions.scheduled_between(
            period.tenant_id, period.therapist_id, period.start_date, period.end_date
        )
        return [s for s in scheduled if is_blocked([period], s.start_time, s.end_time)]

    def _ensure_nothing_booked(self, period: TherapistUnavailability, acknowledged=frozenset()):
        pending = [s.id for s in self._affected(period) if s.id not in acknowledged]
        if pending:
            raise ConflictError(
                "UNAVAILABILITY_AFFECTS_SESSIONS",
                therapist_id=period.therapist_id,
                session_ids=pending,
            )


def _check_period(period: TherapistUnavailability):
    if period.end_date < period.start_date:
        raise ValidationError(
            "INVALID_DATE_RANGE",
            start_date=period.start_date.isoformat(),
            end_date=period.end_date.isoformat(),
        )
    if (period.start_time is None) != (period.end_time is None):
        raise ValidationError("INVALID_TIME_RANGE", start_time=str(period.start_time), end_time=str(period.end_time))
    if period.start_time is not None and period.end_time <= period.start_time:
        raise ValidationError("INVALID_TIME_RANGE", start_time=str(period.start_time), end_time=str(period.end_time))
