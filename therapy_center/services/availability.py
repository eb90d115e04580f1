# therapy_center/services/availability.py

import logging
from typing import List, Optional

from sqlmodel import Session

from ..audit import AuditEvent, AuditSink, log_audit_event, snapshot
from ..db import atomic
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import TherapistAvailability
from ..repositories import Repositories
from ..schemas import AvailabilityCreate, AvailabilityUpdate, DayOfWeek
from .slots import find_overlapping_window

logger = logging.getLogger(__name__)


class AvailabilityService:
    def __init__(self, db: Session, audit: AuditSink = log_audit_event):
        self.db = db
        self.repos = Repositories.for_session(db)
        self.audit = audit

    def list_windows(
        self,
        tenant_id: str,
        therapist_id: int,
        day_of_week: Optional[DayOfWeek] = None,
        therapy_type_id: Optional[int] = None,
    ) -> List[TherapistAvailability]:
        return list(self.repos.availability.list_windows(
            tenant_id,
            therapist_id,
            day_of_week=day_of_week.value if day_of_week else None,
            therapy_type_id=therapy_type_id,
        ))

    def get_window(self, tenant_id: str, therapist_id: int, window_id: int) -> TherapistAvailability:
        window = self.repos.availability.get(tenant_id, window_id)
        if window is None or window.therapist_id != therapist_id:
            raise NotFoundError("availability", window_id)
        return window

    def create_window(
        self, tenant_id: str, therapist_id: int, data: AvailabilityCreate, actor_id: Optional[int] = None
    ) -> TherapistAvailability:
        if self.repos.therapists.get_therapist(tenant_id, therapist_id) is None:
            raise NotFoundError("therapist", therapist_id)
        if self.repos.therapy_types.get(tenant_id, data.therapy_type_id) is None:
            raise NotFoundError("therapy_type", data.therapy_type_id)

        self._ensure_no_overlap(
            tenant_id, therapist_id, data.therapy_type_id, data.day_of_week, data.start_time, data.end_time
        )

        window = TherapistAvailability(
            tenant_id=tenant_id,
            therapist_id=therapist_id,
            therapy_type_id=data.therapy_type_id,
            day_of_week=data.day_of_week.value,
            start_time=data.start_time,
            end_time=data.end_time,
            active=True,
        )
        with atomic(self.db):
            self.repos.availability.add(window)
        self.db.refresh(window)

        self.audit(AuditEvent(tenant_id, actor_id, "CREATE", "availability", window.id, after=snapshot(window)))
        return window

    def update_window(
        self,
        tenant_id: str,
        therapist_id: int,
        window_id: int,
        data: AvailabilityUpdate,
        actor_id: Optional[int] = None,
    ) -> TherapistAvailability:
        window = self.get_window(tenant_id, therapist_id, window_id)
        before = snapshot(window)

        day = data.day_of_week or DayOfWeek(window.day_of_week)
        start = data.start_time or window.start_time
        end = data.end_time or window.end_time
        active = window.active if data.active is None else data.active
        if end <= start:
            raise ValidationError("INVALID_TIME_RANGE", start_time=str(start), end_time=str(end))

        # an inactive window never blocks anything
        if active:
            self._ensure_no_overlap(
                tenant_id, therapist_id, window.therapy_type_id, day, start, end, exclude_window_id=window.id
            )

        with atomic(self.db):
            window.day_of_week = day.value
            window.start_time = start
            window.end_time = end
            window.active = active
            self.repos.availability.add(window)
        self.db.refresh(window)

        self.audit(AuditEvent(tenant_id, actor_id, "UPDATE", "availability", window.id,
                              before=before, after=snapshot(window)))
        return window

    def delete_window(self, tenant_id: str, therapist_id: int, window_id: int, actor_id: Optional[int] = None):
        window = self.get_window(tenant_id, therapist_id, window_id)
        before = snapshot(window)
        with atomic(self.db):
            self.repos.availability.delete(window)
        self.audit(AuditEvent(tenant_id, actor_id, "DELETE", "availability", window_id, before=before))

    def _ensure_no_overlap(
        self, tenant_id, therapist_id, therapy_type_id, day, start, end, exclude_window_id=None
    ):
        existing = self.repos.availability.list_windows(
            tenant_id, therapist_id, day_of_week=day.value, therapy_type_id=therapy_type_id
        )
        clash = find_overlapping_window(existing, start, end, exclude_window_id)
        if clash is not None:
            raise ConflictError(
                "AVAILABILITY_OVERLAP",
                day_of_week=day.value,
                conflicting_window_id=clash.id,
            )
