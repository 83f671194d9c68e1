"""
Pure heuristics behind preference learning and suggestion scoring.

Nothing here touches the database, so each rule can be unit tested in
isolation.
"""
from collections import Counter
from datetime import date
from typing import Hashable, Iterable, Optional, Sequence, TypeVar

from rebooking.models.preferences import TimeSlot

T = TypeVar("T", bound=Hashable)

BASE_CONFIDENCE = 50
MAX_CONFIDENCE = 100


def classify_time_slot(booking_time: Optional[str]) -> TimeSlot:
    """Bucket an "HH:MM" time: before 12 morning, 12-16 afternoon, 17+ evening."""
    try:
        hour = int((booking_time or "12:00").split(":")[0])
    except ValueError:
        hour = 12
    if hour < 12:
        return TimeSlot.MORNING
    if hour < 17:
        return TimeSlot.AFTERNOON
    return TimeSlot.EVENING


def median(values: Sequence[float]) -> float:
    """Median of a sequence; 0 for an empty one."""
    if not values:
        return 0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def booking_intervals(dates: Iterable[date], outlier_days: int = 180) -> list[int]:
    """
    Day gaps between consecutive visits, newest first.

    Gaps of zero (two visits on one day) and gaps of outlier_days or more
    are dropped as noise.
    """
    ordered = sorted(dates, reverse=True)
    gaps = []
    for newer, older in zip(ordered, ordered[1:]):
        gap = (newer - older).days
        if 0 < gap < outlier_days:
            gaps.append(gap)
    return gaps


def average_interval_days(dates: Iterable[date], outlier_days: int = 180, default: int = 30) -> int:
    """Median usable gap rounded to whole days, or default when none is usable."""
    gaps = booking_intervals(dates, outlier_days)
    if not gaps:
        return default
    # Python rounds .5 to even; the cycle should round half up
    return int(median(gaps) + 0.5)


def ranked(values: Iterable[Optional[T]], limit: Optional[int] = None) -> list[T]:
    """
    Values by descending frequency, None ignored.

    Ties keep first-seen order, so feeding newest-first history makes the
    most recent choice win a tie.
    """
    counts = Counter(v for v in values if v is not None)
    return [value for value, _ in counts.most_common(limit)]


def mode(values: Iterable[Optional[T]]) -> Optional[T]:
    """Most frequent non-None value, or None."""
    top = ranked(values, limit=1)
    return top[0] if top else None


def calculate_confidence_score(
    preferred_staff_id,
    preferred_time_exact: Optional[str],
    preferred_day_of_week: Optional[int],
    total_completed_bookings: int,
    slot_date: date,
    slot_time: str,
) -> int:
    """
    Heuristic 0-100 relevance of a slot for a profile.

    50 base, +10 preferred staff known, +10 exact preferred time,
    +5 preferred weekday, +15 for 5+ visits or +8 for 3+ visits.
    """
    score = BASE_CONFIDENCE

    if preferred_staff_id:
        score += 10

    if preferred_time_exact == slot_time:
        score += 10

    if preferred_day_of_week is not None and slot_date.weekday() == preferred_day_of_week:
        score += 5

    visits = total_completed_bookings or 0
    if visits >= 5:
        score += 15
    elif visits >= 3:
        score += 8

    return min(MAX_CONFIDENCE, score)


def suggestion_reason(days_to_due: int, interval_days: Optional[int]) -> str:
    """Customer-facing explanation for a suggestion, framed by how due they are."""
    interval = interval_days or 30

    if days_to_due < -7:
        return f"It's been over {interval + abs(days_to_due)} days since your last visit. We miss you!"
    if days_to_due < 0:
        return f"Your {interval}-day appointment cycle is {abs(days_to_due)} days overdue"
    if days_to_due == 0:
        return "Today is the perfect day for your next appointment!"
    return f"It's almost time for your next visit (in {days_to_due} days)"
