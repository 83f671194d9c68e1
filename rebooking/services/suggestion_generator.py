"""
Daily rebooking suggestion sweep.

For every profile with enough history, work out when the customer is due
back, search a fixed window for an open slot at their usual time (their
usual weekday first), score it, and store a pending suggestion.

Re-running the sweep is safe: a profile that already has an active
suggestion is skipped, so at most one active suggestion exists per
(user, location). The check and the insert run under a per (user, location)
lock, so overlapping sweeps cannot both pass the check.
"""
from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.orm import Session

from rebooking.lib.clock import Clock, system_clock
from rebooking.lib.logging import get_logger, log_with_context
from rebooking.lib.metrics import get_metrics_collector
from rebooking.lib.settings import settings
from rebooking.lib.slot_lock import acquire_slot_lock, profile_lock_key
from rebooking.models.preferences import UserBookingPreference
from rebooking.models.suggestions import (
    RebookSuggestion,
    SuggestionStatus,
    ACTIVE_SUGGESTION_STATUSES,
)
from rebooking.services import heuristics
from rebooking.services.availability import find_matching_slot

logger = get_logger(__name__)


class SuggestionGenerator:
    """Creates scored rebook suggestions for customers who are due."""

    def __init__(self, db_session: Session, clock: Optional[Clock] = None):
        self.db = db_session
        self.clock = clock or system_clock
        self.metrics = get_metrics_collector()

    def run_daily_suggestion_sweep(self) -> int:
        """
        Generate suggestions for all eligible profiles.

        Each profile is handled in its own transaction; a failure is logged
        and rolled back without stopping the sweep.

        Returns:
            Number of suggestions created
        """
        profile_ids = self._eligible_profile_ids()
        logger.info(f"Suggestion sweep started for {len(profile_ids)} profiles")

        generated = 0
        for profile_id in profile_ids:
            try:
                suggestion = self.generate_for_profile(profile_id)
                if suggestion is None:
                    self.db.rollback()
                    continue
                self.db.commit()
                generated += 1
                self.metrics.increment_generated()
            except Exception as e:
                self.db.rollback()
                self.metrics.increment_skipped("error")
                log_with_context(
                    logger,
                    "error",
                    f"Failed to generate suggestion: {e}",
                    profile_id=str(profile_id),
                    exc_info=True,
                )

        logger.info(f"Suggestion sweep finished: {generated} generated from {len(profile_ids)} profiles")
        return generated

    def _eligible_profile_ids(self) -> list[UUID]:
        stmt = (
            select(UserBookingPreference.id)
            .where(UserBookingPreference.total_completed_bookings >= settings.min_bookings_for_suggestions)
            .order_by(UserBookingPreference.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def has_active_suggestion(self, user_id: UUID, location_id: UUID) -> bool:
        stmt = (
            select(RebookSuggestion.id)
            .where(
                and_(
                    RebookSuggestion.user_id == user_id,
                    RebookSuggestion.location_id == location_id,
                    RebookSuggestion.status.in_(ACTIVE_SUGGESTION_STATUSES),
                    RebookSuggestion.expires_at >= self.clock.now(),
                )
            )
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none() is not None

    def generate_for_profile(self, profile_id: UUID) -> Optional[RebookSuggestion]:
        """
        Build and stage (add, not commit) a suggestion for one profile.

        Takes the (user, location) generation lock for the current
        transaction; the caller ends it with commit or rollback.

        Returns None when the profile is skipped this cycle.
        """
        profile = self.db.get(UserBookingPreference, profile_id)
        if profile is None or profile.total_completed_bookings < settings.min_bookings_for_suggestions:
            return None

        acquire_slot_lock(self.db, profile_lock_key(profile.user_id, profile.location_id))
        if self.has_active_suggestion(profile.user_id, profile.location_id):
            self.metrics.increment_skipped("active_suggestion")
            return None

        if not profile.last_booking_date or not profile.average_booking_interval_days:
            self.metrics.increment_skipped("missing_history")
            return None

        today = self.clock.today()
        due_date = profile.last_booking_date + timedelta(days=profile.average_booking_interval_days)
        days_to_due = (due_date - today).days

        if days_to_due > settings.suggestion_due_window_days:
            self.metrics.increment_skipped("not_due")
            return None

        preferred_time = profile.preferred_time_exact or settings.default_preferred_time
        slot = find_matching_slot(
            self.db,
            location_id=profile.location_id,
            start_date=max(today, due_date),
            lookahead_days=settings.suggestion_lookahead_days,
            preferred_time=preferred_time,
            staff_id=profile.preferred_staff_id,
            day_of_week=profile.preferred_day_of_week,
        )
        if slot is None:
            self.metrics.increment_skipped("no_slot")
            log_with_context(
                logger,
                "info",
                "No open slot in search window",
                user_id=str(profile.user_id),
                location_id=str(profile.location_id),
                due_date=due_date.isoformat(),
            )
            return None

        suggestion = RebookSuggestion(
            user_id=profile.user_id,
            location_id=profile.location_id,
            suggested_date=slot.booking_date,
            suggested_time=slot.booking_time,
            suggested_service_ids=list(profile.preferred_service_ids or []),
            suggested_staff_id=profile.preferred_staff_id,
            confidence_score=heuristics.calculate_confidence_score(
                preferred_staff_id=profile.preferred_staff_id,
                preferred_time_exact=profile.preferred_time_exact,
                preferred_day_of_week=profile.preferred_day_of_week,
                total_completed_bookings=profile.total_completed_bookings,
                slot_date=slot.booking_date,
                slot_time=slot.booking_time,
            ),
            reason=heuristics.suggestion_reason(days_to_due, profile.average_booking_interval_days),
            status=SuggestionStatus.PENDING,
            expires_at=self.clock.now() + timedelta(days=settings.suggestion_expiry_days),
            created_at=self.clock.now(),
        )
        self.db.add(suggestion)

        log_with_context(
            logger,
            "info",
            "Suggestion generated",
            user_id=str(profile.user_id),
            location_id=str(profile.location_id),
            suggested_date=slot.booking_date.isoformat(),
            suggested_time=slot.booking_time,
            days_to_due=days_to_due,
            confidence_score=suggestion.confidence_score,
        )
        return suggestion
