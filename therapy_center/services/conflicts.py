# therapy_center/services/conflicts.py

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Optional, Sequence

from ..core import overlaps
from ..errors import PatientSchedulingConflict, TherapistSchedulingConflict
from ..models import TherapySession
from ..repositories import SessionRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictResult:
    therapist_conflict: bool
    patient_conflict: bool

    @property
    def has_conflict(self) -> bool:
        return self.therapist_conflict or self.patient_conflict


def _clashes(
    existing: Sequence[TherapySession],
    start_time: time,
    end_time: time,
    exclude_session_id: Optional[int],
) -> Optional[TherapySession]:
    for s in existing:
        if exclude_session_id is not None and s.id == exclude_session_id:
            continue
        if overlaps(start_time, end_time, s.start_time, s.end_time):
            return s
    return None


class ConflictChecker:
    def __init__(self, sessions: SessionRepository):
        self.sessions = sessions

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
        therapist_sessions = self.sessions.list_on_date(tenant_id, on_date, therapist_id=therapist_id)
        patient_sessions = self.sessions.list_on_date(tenant_id, on_date, patient_id=patient_id)

        return ConflictResult(
            therapist_conflict=_clashes(therapist_sessions, start_time, end_time, exclude_session_id) is not None,
            patient_conflict=_clashes(patient_sessions, start_time, end_time, exclude_session_id) is not None,
        )

    def ensure_no_conflict(
        self,
        tenant_id: str,
        therapist_id: int,
        patient_id: int,
        on_date: date,
        start_time: time,
        end_time: time,
        exclude_session_id: Optional[int] = None,
    ) -> None:
        """Raise before any write if either party is already booked."""
        therapist_sessions = self.sessions.list_on_date(tenant_id, on_date, therapist_id=therapist_id)
        clash = _clashes(therapist_sessions, start_time, end_time, exclude_session_id)
        if clash is not None:
            logger.info(f"Therapist {therapist_id} already booked on {on_date} by session {clash.id}")
            raise TherapistSchedulingConflict(
                therapist_id=therapist_id,
                date=on_date.isoformat(),
                conflicting_session_id=clash.id,
            )

        patient_sessions = self.sessions.list_on_date(tenant_id, on_date, patient_id=patient_id)
        clash = _clashes(patient_sessions, start_time, end_time, exclude_session_id)
        if clash is not None:
            logger.info(f"Patient {patient_id} already booked on {on_date} by session {clash.id}")
            raise PatientSchedulingConflict(
                patient_id=patient_id,
                date=on_date.isoformat(),
                conflicting_session_id=clash.id,
            )
