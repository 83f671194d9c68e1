"""
Slot availability queries shared by the generator, presenter and committer.

A slot is taken when a confirmed or pending booking sits at the same
location, date and time, and either matches the requested staff member or,
when no staff member is requested, belongs to anyone at all.
"""
from datetime import date, timedelta
from typing import Iterable, NamedTuple, Optional
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.orm import Session

from rebooking.models.bookings import Booking, ACTIVE_BOOKING_STATUSES


class Slot(NamedTuple):
    booking_date: date
    booking_time: str


def _slot_conditions(location_id: UUID, booking_time: str, staff_id: Optional[UUID]) -> list:
    conditions = [
        Booking.location_id == location_id,
        Booking.booking_time == booking_time,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
    ]
    if staff_id:
        conditions.append(Booking.staff_id == staff_id)
    return conditions


def find_conflicting_booking(
    db: Session,
    location_id: UUID,
    booking_date: date,
    booking_time: str,
    staff_id: Optional[UUID] = None,
) -> Optional[UUID]:
    """Id of a booking occupying the slot, or None when it is free."""
    stmt = (
        select(Booking.id)
        .where(
            and_(
                Booking.booking_date == booking_date,
                *_slot_conditions(location_id, booking_time, staff_id),
            )
        )
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


def booked_dates(
    db: Session,
    location_id: UUID,
    dates: list[date],
    booking_time: str,
    staff_id: Optional[UUID] = None,
) -> set[date]:
    """Dates among `dates` whose slot at booking_time is taken (one query)."""
    if not dates:
        return set()
    stmt = select(Booking.booking_date).where(
        and_(
            Booking.booking_date.in_(dates),
            *_slot_conditions(location_id, booking_time, staff_id),
        )
    )
    return set(db.execute(stmt).scalars().all())


def date_window(start: date, days: int) -> list[date]:
    """[start, start + days) as a list of dates."""
    return [start + timedelta(days=offset) for offset in range(days)]


def find_matching_slot(
    db: Session,
    location_id: UUID,
    start_date: date,
    lookahead_days: int,
    preferred_time: str,
    staff_id: Optional[UUID] = None,
    day_of_week: Optional[int] = None,
) -> Optional[Slot]:
    """
    First open slot in [start_date, start_date + lookahead_days).

    Dates on the preferred weekday are tried first; if none of them is open,
    the first open date of any weekday wins. The window is fixed, so the
    search always terminates.
    """
    dates = date_window(start_date, lookahead_days)
    taken = booked_dates(db, location_id, dates, preferred_time, staff_id)
    open_dates = [d for d in dates if d not in taken]

    if day_of_week is not None:
        for candidate in open_dates:
            if candidate.weekday() == day_of_week:
                return Slot(candidate, preferred_time)

    if open_dates:
        return Slot(open_dates[0], preferred_time)
    return None


class SlotConflictIndex:
    """
    In-memory view of taken slots, built from one batched query.

    Used on the read path only; the answer may be stale by the time the
    customer acts on it.
    """

    def __init__(self, bookings: Iterable[tuple]):
        self._taken: set[tuple] = set()
        self._taken_any_staff: set[tuple] = set()
        for location_id, booking_date, booking_time, staff_id in bookings:
            self._taken.add((location_id, booking_date, booking_time, staff_id))
            self._taken_any_staff.add((location_id, booking_date, booking_time))

    @classmethod
    def load(cls, db: Session, location_ids: set[UUID], dates: set[date]) -> "SlotConflictIndex":
        if not location_ids or not dates:
            return cls([])
        stmt = select(
            Booking.location_id,
            Booking.booking_date,
            Booking.booking_time,
            Booking.staff_id,
        ).where(
            and_(
                Booking.location_id.in_(location_ids),
                Booking.booking_date.in_(dates),
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
        )
        return cls(db.execute(stmt).all())

    def is_available(
        self,
        location_id: UUID,
        booking_date: date,
        booking_time: str,
        staff_id: Optional[UUID] = None,
    ) -> bool:
        if staff_id:
            return (location_id, booking_date, booking_time, staff_id) not in self._taken
        return (location_id, booking_date, booking_time) not in self._taken_any_staff
