# therapy_center/core.py

from datetime import datetime, date, time, timedelta
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def overlaps(start_a, end_a, start_b, end_b) -> bool:
    # half-open intervals: touching ends do not overlap
    return start_a < end_b and start_b < end_a


def add_minutes(start: time, minutes: int) -> time:
    """Shift a wall-clock time. Raises ValueError if the result leaves the day."""
    shifted = datetime.combine(date.min, start) + timedelta(minutes=minutes)
    if shifted.date() != date.min:
        raise ValueError("time range crosses midnight")
    return shifted.time()


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
