# therapy_center/services/slots.py

from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, List, Optional, Sequence

from ..core import add_minutes, overlaps
from ..errors import ValidationError
from ..models import TherapistAvailability, TherapistUnavailability, TherapySession
from ..repositories import AvailabilityRepository, UnavailabilityRepository
from ..schemas import DayOfWeek, SessionStatus


@dataclass(frozen=True)
class Slot:
    start_time: time
    end_time: time
    is_available: bool
    occupying_session: Optional[TherapySession] = None


def is_blocked(periods: Iterable[TherapistUnavailability], start_time: time, end_time: time) -> bool:
    for p in periods:
        if p.start_time is None or p.end_time is None:
            return True
        if overlaps(start_time, end_time, p.start_time, p.end_time):
            return True
    return False


def generate_slots(
    windows: Iterable[TherapistAvailability],
    session_duration_minutes: int,
    booked_sessions: Iterable[TherapySession],
    unavailable: Sequence[TherapistUnavailability] = (),
) -> List[Slot]:
    # a slot is taken when a non-cancelled session starts exactly at its start
    if session_duration_minutes <= 0:
        raise ValidationError("INVALID_SESSION_DURATION", duration=session_duration_minutes)

    booked_by_start = {}
    for s in booked_sessions:
        if s.status == SessionStatus.cancelled.value:
            continue
        booked_by_start.setdefault(s.start_time, s)

    slots = []
    for window in sorted(windows, key=lambda w: (w.start_time, w.end_time)):
        current = window.start_time
        while current < window.end_time:
            try:
                slot_end = add_minutes(current, session_duration_minutes)
            except ValueError:
                break
            if slot_end > window.end_time:
                break

            taken = booked_by_start.get(current)
            slots.append(Slot(
                start_time=current,
                end_time=slot_end,
                is_available=taken is None and not is_blocked(unavailable, current, slot_end),
                occupying_session=taken,
            ))
            current = slot_end

    return slots


class AvailabilityResolver:
    def __init__(
        self,
        availability: AvailabilityRepository,
        unavailability: Optional[UnavailabilityRepository] = None,
    ):
        self.availability = availability
        self.unavailability = unavailability

    def blocked_periods(self, tenant_id: str, therapist_id: int, on_date: date) -> List[TherapistUnavailability]:
        if self.unavailability is None:
            return []
        return list(self.unavailability.covering(tenant_id, therapist_id, on_date))

    def windows_for_day(
        self,
        tenant_id: str,
        therapist_id: int,
        day_of_week: DayOfWeek,
        therapy_type_id: Optional[int] = None,
    ) -> List[TherapistAvailability]:
        rows = self.availability.list_windows(
            tenant_id,
            therapist_id,
            day_of_week=day_of_week.value,
            therapy_type_id=therapy_type_id,
        )
        return sorted(rows, key=lambda w: w.start_time)

    def windows_for_date(
        self,
        tenant_id: str,
        therapist_id: int,
        on_date: date,
        therapy_type_id: Optional[int] = None,
    ) -> List[TherapistAvailability]:
        return self.windows_for_day(tenant_id, therapist_id, DayOfWeek.for_date(on_date), therapy_type_id)

    def is_within_availability(
        self,
        tenant_id: str,
        therapist_id: int,
        therapy_type_id: int,
        on_date: date,
        start_time: time,
        end_time: time,
    ) -> bool:
        windows = self.windows_for_date(tenant_id, therapist_id, on_date, therapy_type_id)
        if not any(w.start_time <= start_time and end_time <= w.end_time for w in windows):
            return False
        return not is_blocked(self.blocked_periods(tenant_id, therapist_id, on_date), start_time, end_time)


def find_overlapping_window(
    existing: Sequence[TherapistAvailability],
    start_time: time,
    end_time: time,
    exclude_window_id: Optional[int] = None,
) -> Optional[TherapistAvailability]:
    for w in existing:
        if exclude_window_id is not None and w.id == exclude_window_id:
            continue
        if overlaps(start_time, end_time, w.start_time, w.end_time):
            return w
    return None
