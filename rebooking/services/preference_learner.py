"""
Preference learning from completed booking history.

Called whenever a booking completes. Recomputes the customer's habits at
that location (staff, services, weekday, time of day, visit cadence) from
their full completed history and upserts the preference profile.

Suggestion generation is not triggered from here; the daily sweep picks up
the updated profile.
"""
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.orm import Session

from rebooking.lib.clock import Clock, system_clock
from rebooking.lib.logging import get_logger, log_with_context
from rebooking.lib.metrics import get_metrics_collector
from rebooking.lib.settings import settings
from rebooking.models.bookings import Booking, BookingStatus
from rebooking.models.preferences import UserBookingPreference
from rebooking.services import heuristics

logger = get_logger(__name__)

TOP_SERVICES = 3


class PreferenceLearner:
    """Derives per (customer, location) preference profiles from booking history."""

    def __init__(self, db_session: Session, clock: Optional[Clock] = None):
        self.db = db_session
        self.clock = clock or system_clock
        self.metrics = get_metrics_collector()

    def on_booking_completed(self, booking_id: UUID) -> Optional[UserBookingPreference]:
        """
        Update the preference profile for the booking's (user, location).

        Returns the profile, or None when the booking is unknown, has no
        user or location, is not completed, or was already learned from.
        """
        booking = self.db.get(Booking, booking_id)
        if booking is None or not booking.user_id or not booking.location_id:
            logger.info(f"Booking {booking_id} has no user or location, skipping preference update")
            return None

        if booking.status != BookingStatus.COMPLETED:
            logger.info(f"Booking {booking_id} is {booking.status.value}, skipping preference update")
            return None

        profile = self._load_profile(booking.user_id, booking.location_id)
        history = self._completed_history(booking.user_id, booking.location_id)
        if profile is not None and self._is_current(profile, history):
            logger.info(f"Booking {booking_id} already applied to preferences")
            return profile

        created = profile is None
        if created:
            profile = UserBookingPreference(
                user_id=booking.user_id,
                location_id=booking.location_id,
                total_completed_bookings=0,
                total_spent=Decimal("0"),
            )
            self.db.add(profile)

        self._apply_history(profile, history)
        profile.updated_at = self.clock.now()

        self.db.commit()
        self.metrics.increment_preference_updates(created=created)

        log_with_context(
            logger,
            "info",
            "Preference profile updated",
            user_id=str(profile.user_id),
            location_id=str(profile.location_id),
            total_completed_bookings=profile.total_completed_bookings,
            average_booking_interval_days=profile.average_booking_interval_days,
            created=created,
        )
        return profile

    def _load_profile(self, user_id: UUID, location_id: UUID) -> Optional[UserBookingPreference]:
        stmt = (
            select(UserBookingPreference)
            .where(
                and_(
                    UserBookingPreference.user_id == user_id,
                    UserBookingPreference.location_id == location_id,
                )
            )
            .with_for_update()
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def _completed_history(self, user_id: UUID, location_id: UUID) -> list[Booking]:
        """Completed bookings for the pair, newest first."""
        stmt = (
            select(Booking)
            .where(
                and_(
                    Booking.user_id == user_id,
                    Booking.location_id == location_id,
                    Booking.status == BookingStatus.COMPLETED,
                )
            )
            .order_by(Booking.booking_date.desc(), Booking.booking_time.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    @staticmethod
    def _is_current(profile: UserBookingPreference, history: list[Booking]) -> bool:
        """True when the profile already reflects every completed booking in history."""
        return (
            bool(history)
            and profile.last_booking_id == history[0].id
            and profile.total_completed_bookings == len(history)
        )

    def _apply_history(self, profile: UserBookingPreference, history: list[Booking]) -> None:
        # Totals and the last visit are derived from the whole history on every call
        latest = history[0]
        preferred_staff = heuristics.mode(b.staff_id for b in history)
        top_services = heuristics.ranked(
            (service_id for b in history for service_id in b.all_service_ids),
            limit=TOP_SERVICES,
        )

        profile.preferred_staff_id = preferred_staff or latest.staff_id
        profile.preferred_service_ids = top_services or latest.all_service_ids[:1]
        profile.preferred_day_of_week = heuristics.mode(b.booking_date.weekday() for b in history)
        profile.preferred_time_slot = heuristics.classify_time_slot(latest.booking_time)
        profile.preferred_time_exact = latest.booking_time
        profile.average_booking_interval_days = heuristics.average_interval_days(
            [b.booking_date for b in history],
            outlier_days=settings.interval_outlier_days,
            default=settings.default_booking_interval_days,
        )

        profile.last_booking_id = latest.id
        profile.last_booking_date = latest.booking_date
        profile.total_completed_bookings = len(history)
        profile.total_spent = sum((b.total_price or Decimal("0") for b in history), Decimal("0"))
