"""
Read side of express rebooking.

Assembles a customer's live suggestions with fresh availability and prices,
moves pending suggestions to shown, and handles dismissal. Availability
here is advisory: it is read without locks and may be stale. Only the
committer's lock-guarded check decides whether a booking goes through.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update, and_
from sqlalchemy.orm import Session

from rebooking.lib.clock import Clock, system_clock
from rebooking.lib.logging import get_logger, log_with_context
from rebooking.lib.metrics import get_metrics_collector
from rebooking.lib.settings import settings
from rebooking.models.bookings import Booking, BookingStatus
from rebooking.models.preferences import UserBookingPreference
from rebooking.models.suggestions import (
    RebookSuggestion,
    SuggestionStatus,
    ACTIVE_SUGGESTION_STATUSES,
)
from rebooking.services.availability import SlotConflictIndex, booked_dates, date_window
from rebooking.services.directory import (
    parse_uuids,
    locations_by_id,
    services_by_id,
    staff_by_id,
)
from rebooking.services.errors import SuggestionNotFoundError, SuggestionAlreadyUsedError

logger = get_logger(__name__)


def _price(value: Optional[Decimal]) -> Decimal:
    return value if value is not None else Decimal("0")


class SuggestionPresenter:
    """Builds the suggestion feed for a customer and records their responses."""

    def __init__(self, db_session: Session, clock: Optional[Clock] = None):
        self.db = db_session
        self.clock = clock or system_clock
        self.metrics = get_metrics_collector()

    def get_suggestions(self, user_id: UUID) -> Dict[str, List[Dict[str, Any]]]:
        """
        Active suggestions (best first) plus informational last visits.

        Pending suggestions in the result become shown. Suggestions whose
        location no longer exists are left out.

        Returns:
            {"suggestions": [...], "last_visits": [...]}
        """
        now = self.clock.now()
        stmt = (
            select(RebookSuggestion)
            .where(
                and_(
                    RebookSuggestion.user_id == user_id,
                    RebookSuggestion.status.in_(ACTIVE_SUGGESTION_STATUSES),
                    RebookSuggestion.expires_at >= now,
                )
            )
            .order_by(RebookSuggestion.confidence_score.desc(), RebookSuggestion.created_at.desc())
            .limit(settings.max_active_suggestions)
        )
        active = list(self.db.execute(stmt).scalars().all())

        if not active:
            return {"suggestions": [], "last_visits": self.get_last_visits(user_id)}

        location_map = locations_by_id(self.db, {s.location_id for s in active})
        service_map = services_by_id(
            self.db,
            {sid for s in active for sid in parse_uuids(s.suggested_service_ids)},
        )
        staff_map = staff_by_id(self.db, {s.suggested_staff_id for s in active})
        conflicts = SlotConflictIndex.load(
            self.db,
            location_ids={s.location_id for s in active},
            dates={s.suggested_date for s in active},
        )

        self._mark_shown([s.id for s in active if s.status == SuggestionStatus.PENDING], now)

        suggestions = []
        for suggestion in active:
            location = location_map.get(suggestion.location_id)
            if location is None:
                continue

            services = [
                service_map[sid]
                for sid in parse_uuids(suggestion.suggested_service_ids)
                if sid in service_map
            ]
            staff = staff_map.get(suggestion.suggested_staff_id) if suggestion.suggested_staff_id else None

            suggestions.append({
                "id": suggestion.id,
                "location": {
                    "id": location.id,
                    "name": location.name,
                    "image_url": location.image_url,
                    "rating": float(location.rating) if location.rating is not None else None,
                },
                "suggested_date": suggestion.suggested_date,
                "suggested_time": suggestion.suggested_time,
                "services": [
                    {
                        "id": svc.id,
                        "name": svc.name,
                        "price": svc.price,
                        "duration_minutes": svc.duration_minutes,
                    }
                    for svc in services
                ],
                "staff": (
                    {"id": staff.id, "name": staff.name, "photo_url": staff.photo_url}
                    if staff else None
                ),
                "estimated_total": sum((_price(svc.price) for svc in services), Decimal("0")),
                "reason": suggestion.reason,
                "confidence_score": suggestion.confidence_score,
                "slot_available": conflicts.is_available(
                    suggestion.location_id,
                    suggestion.suggested_date,
                    suggestion.suggested_time,
                    suggestion.suggested_staff_id,
                ),
                "status": SuggestionStatus.SHOWN.value,
                "expires_at": suggestion.expires_at,
            })

        return {"suggestions": suggestions, "last_visits": self.get_last_visits(user_id)}

    def _mark_shown(self, suggestion_ids: List[UUID], now) -> None:
        """pending → shown; one-way, so rows already moved on are left alone."""
        if not suggestion_ids:
            return
        result = self.db.execute(
            update(RebookSuggestion)
            .where(
                and_(
                    RebookSuggestion.id.in_(suggestion_ids),
                    RebookSuggestion.status == SuggestionStatus.PENDING,
                )
            )
            .values(status=SuggestionStatus.SHOWN, shown_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.metrics.increment_shown(result.rowcount)

    def get_last_visits(self, user_id: UUID) -> List[Dict[str, Any]]:
        """Informational summaries of recent locations, straight from profiles."""
        stmt = (
            select(UserBookingPreference)
            .where(UserBookingPreference.user_id == user_id)
            .order_by(UserBookingPreference.updated_at.desc())
            .limit(settings.max_last_visits)
        )
        profiles = list(self.db.execute(stmt).scalars().all())
        if not profiles:
            return []

        location_map = locations_by_id(self.db, {p.location_id for p in profiles})
        service_map = services_by_id(
            self.db,
            {sid for p in profiles for sid in parse_uuids(p.preferred_service_ids)},
        )
        staff_map = staff_by_id(self.db, {p.preferred_staff_id for p in profiles})
        today = self.clock.today()

        visits = []
        for profile in profiles:
            location = location_map.get(profile.location_id)
            if location is None:
                continue
            staff = staff_map.get(profile.preferred_staff_id) if profile.preferred_staff_id else None
            visits.append({
                "location_id": location.id,
                "location_name": location.name,
                "location_image_url": location.image_url,
                "last_visit_date": profile.last_booking_date,
                "days_since": (today - profile.last_booking_date).days if profile.last_booking_date else 0,
                "services": [
                    service_map[sid].name
                    for sid in parse_uuids(profile.preferred_service_ids)
                    if sid in service_map
                ],
                "staff_name": staff.name if staff else None,
            })
        return visits

    def dismiss_suggestion(self, user_id: UUID, suggestion_id: UUID, reason: Optional[str] = None) -> None:
        """
        Mark a suggestion dismissed.

        Only pending or shown suggestions can be dismissed; accepted,
        dismissed and expired are terminal.

        Raises:
            SuggestionNotFoundError: unknown id or owned by someone else
            SuggestionAlreadyUsedError: suggestion already in a terminal state
        """
        values: Dict[str, Any] = {
            "status": SuggestionStatus.DISMISSED,
            "responded_at": self.clock.now(),
        }
        if reason:
            values["reason"] = f"Dismissed: {reason}"

        result = self.db.execute(
            update(RebookSuggestion)
            .where(
                and_(
                    RebookSuggestion.id == suggestion_id,
                    RebookSuggestion.user_id == user_id,
                    RebookSuggestion.status.in_(ACTIVE_SUGGESTION_STATUSES),
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            existing = self.db.get(RebookSuggestion, suggestion_id)
            if existing is None or existing.user_id != user_id:
                raise SuggestionNotFoundError(suggestion_id)
            raise SuggestionAlreadyUsedError(suggestion_id, existing.status.value)

        self.db.commit()
        self.metrics.increment_dismissed()
        log_with_context(
            logger,
            "info",
            "Suggestion dismissed",
            suggestion_id=str(suggestion_id),
            user_id=str(user_id),
        )

    def get_last_booking_for_location(self, user_id: UUID, location_id: UUID) -> Dict[str, Any]:
        """
        Last completed visit at a location with a quick rebook hint.

        Returns:
            {"last_booking": {...} | None,
             "next_available_slot": {"date", "time", "available"} | None,
             "suggested_rebook_date": date | None}
        """
        last_booking = self.db.execute(
            select(Booking)
            .where(
                and_(
                    Booking.user_id == user_id,
                    Booking.location_id == location_id,
                    Booking.status == BookingStatus.COMPLETED,
                )
            )
            .order_by(Booking.booking_date.desc(), Booking.booking_time.desc())
            .limit(1)
        ).scalar_one_or_none()

        if last_booking is None:
            return {"last_booking": None, "next_available_slot": None, "suggested_rebook_date": None}

        profile = self.db.execute(
            select(UserBookingPreference).where(
                and_(
                    UserBookingPreference.user_id == user_id,
                    UserBookingPreference.location_id == location_id,
                )
            )
        ).scalar_one_or_none()

        interval = (
            profile.average_booking_interval_days
            if profile and profile.average_booking_interval_days
            else settings.default_booking_interval_days
        )
        preferred_staff_id = profile.preferred_staff_id if profile else None

        service_ids = parse_uuids(last_booking.all_service_ids)
        service_map = services_by_id(self.db, service_ids)
        # Booking order, minus services removed since
        services = [service_map[sid] for sid in service_ids if sid in service_map]
        staff = staff_by_id(self.db, [last_booking.staff_id]).get(last_booking.staff_id)

        booking_time = last_booking.booking_time or settings.default_preferred_time
        window = date_window(self.clock.today(), settings.suggestion_lookahead_days)
        taken = booked_dates(self.db, location_id, window, booking_time, preferred_staff_id)
        open_date = next((d for d in window if d not in taken), None)

        return {
            "last_booking": {
                "id": last_booking.id,
                "date": last_booking.booking_date,
                "time": last_booking.booking_time,
                "services": [
                    {"id": svc.id, "name": svc.name, "price": svc.price}
                    for svc in services
                ],
                "staff": {"id": staff.id, "name": staff.name} if staff else None,
                "total_paid": last_booking.total_price,
            },
            "next_available_slot": (
                {"date": open_date, "time": booking_time, "available": True}
                if open_date else None
            ),
            "suggested_rebook_date": last_booking.booking_date + timedelta(days=interval),
        }
