"""
Booking committer - turns an accepted or customized suggestion into a
confirmed booking.

Execution flow (one transaction):
1. Load the suggestion for this user; check it is still open and unexpired
2. Resolve the final slot and service set
3. Take the slot lock for (location, date, time, staff-or-unassigned)
4. Under the lock: re-read the suggestion, re-check the slot
5. Insert the booking with live prices and close the suggestion

Any error raised along the way rolls the whole transaction back, so a
booking row never exists without its suggestion being accepted, and the
other way round. The check in step 4 is the only one that counts; the
availability shown to the customer earlier is advisory.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update, and_
from sqlalchemy.orm import Session

from rebooking.lib.clock import Clock, system_clock, ensure_utc
from rebooking.lib.logging import get_logger, log_with_context
from rebooking.lib.metrics import get_metrics_collector
from rebooking.lib.slot_lock import acquire_slot_lock, slot_lock_key
from rebooking.models.bookings import Booking, BookingStatus, BookingSource
from rebooking.models.locations import Location
from rebooking.models.suggestions import RebookSuggestion, SuggestionStatus
from rebooking.models.users import User
from rebooking.services.availability import find_conflicting_booking
from rebooking.services.directory import parse_uuids, services_by_id, staff_by_id
from rebooking.services.errors import (
    SuggestionNotFoundError,
    SuggestionAlreadyUsedError,
    SuggestionExpiredError,
    SlotUnavailableError,
    EmptyServiceSetError,
    ForeignLocationError,
    DependencyNotFoundError,
)
from rebooking.api.middleware.error_handler import AppException

logger = get_logger(__name__)

PAYMENT_METHOD = "pay_at_location"


@dataclass
class SuggestionModifications:
    """Changes a customer makes to a suggestion before booking it."""
    date: Optional[date] = None
    time: Optional[str] = None
    staff_id: Optional[UUID] = None
    add_service_ids: List[UUID] = field(default_factory=list)
    remove_service_ids: List[UUID] = field(default_factory=list)


@dataclass
class ResolvedSlot:
    location_id: UUID
    booking_date: date
    booking_time: str
    staff_id: Optional[UUID]
    service_ids: List[UUID]

    @property
    def lock_key(self) -> int:
        return slot_lock_key(self.location_id, self.booking_date, self.booking_time, self.staff_id)


def resolve_slot(suggestion: RebookSuggestion, modifications: Optional[SuggestionModifications] = None) -> ResolvedSlot:
    """
    Final slot for a commit: the suggestion as-is, with any modifications
    applied. Removed services go first, then added ones are appended
    (duplicates dropped, order kept).

    Raises:
        EmptyServiceSetError: nothing left to book
    """
    mods = modifications or SuggestionModifications()

    removed = set(parse_uuids(mods.remove_service_ids))
    service_ids = [sid for sid in parse_uuids(suggestion.suggested_service_ids) if sid not in removed]
    for sid in parse_uuids(mods.add_service_ids):
        if sid not in service_ids:
            service_ids.append(sid)

    if modifications is not None and not service_ids:
        raise EmptyServiceSetError()

    return ResolvedSlot(
        location_id=suggestion.location_id,
        booking_date=mods.date or suggestion.suggested_date,
        booking_time=mods.time or suggestion.suggested_time,
        staff_id=mods.staff_id or suggestion.suggested_staff_id,
        service_ids=service_ids,
    )


class BookingCommitter:
    """Race-safe commit of rebook suggestions into confirmed bookings."""

    def __init__(self, db_session: Session, clock: Optional[Clock] = None):
        self.db = db_session
        self.clock = clock or system_clock
        self.metrics = get_metrics_collector()

    def accept_suggestion(self, user_id: UUID, suggestion_id: UUID) -> Dict[str, Any]:
        """Book the suggestion exactly as proposed."""
        return self._commit(user_id, suggestion_id, None, BookingSource.EXPRESS_REBOOK)

    def customize_suggestion(
        self,
        user_id: UUID,
        suggestion_id: UUID,
        modifications: SuggestionModifications,
    ) -> Dict[str, Any]:
        """Book the suggestion with a different date, time, staff or services."""
        return self._commit(user_id, suggestion_id, modifications, BookingSource.EXPRESS_REBOOK_CUSTOM)

    def _commit(
        self,
        user_id: UUID,
        suggestion_id: UUID,
        modifications: Optional[SuggestionModifications],
        source: BookingSource,
    ) -> Dict[str, Any]:
        try:
            result = self._book(user_id, suggestion_id, modifications, source)
            self.db.commit()
        except AppException as e:
            self.db.rollback()
            self.metrics.increment_commits(source.value, e.code)
            log_with_context(
                logger,
                "info",
                f"Rebook rejected: {e.message}",
                suggestion_id=str(suggestion_id),
                user_id=str(user_id),
                source=source.value,
                outcome=e.code,
            )
            raise
        except Exception:
            self.db.rollback()
            self.metrics.increment_commits(source.value, "error")
            raise

        lock_key = result.pop("lock_key")
        self.metrics.increment_commits(source.value, "confirmed")
        log_with_context(
            logger,
            "info",
            "Rebook confirmed",
            suggestion_id=str(suggestion_id),
            booking_id=str(result["booking_id"]),
            source=source.value,
            lock_key=lock_key,
            outcome="confirmed",
        )
        return result

    def _load_suggestion(self, user_id: UUID, suggestion_id: UUID, lock_row: bool = False) -> RebookSuggestion:
        stmt = (
            select(RebookSuggestion)
            .where(
                and_(
                    RebookSuggestion.id == suggestion_id,
                    RebookSuggestion.user_id == user_id,
                )
            )
            .execution_options(populate_existing=True)
        )
        if lock_row:
            stmt = stmt.with_for_update()
        suggestion = self.db.execute(stmt).scalar_one_or_none()
        if suggestion is None:
            raise SuggestionNotFoundError(suggestion_id)
        return suggestion

    def _check_open(self, suggestion: RebookSuggestion, now: datetime) -> None:
        if suggestion.status == SuggestionStatus.EXPIRED:
            raise SuggestionExpiredError(suggestion.id)
        if suggestion.status in (SuggestionStatus.ACCEPTED, SuggestionStatus.DISMISSED):
            raise SuggestionAlreadyUsedError(suggestion.id, suggestion.status.value)
        if now > ensure_utc(suggestion.expires_at):
            raise SuggestionExpiredError(suggestion.id)

    def _book(
        self,
        user_id: UUID,
        suggestion_id: UUID,
        modifications: Optional[SuggestionModifications],
        source: BookingSource,
    ) -> Dict[str, Any]:
        now = self.clock.now()

        suggestion = self._load_suggestion(user_id, suggestion_id)
        self._check_open(suggestion, now)
        slot = resolve_slot(suggestion, modifications)

        acquire_slot_lock(self.db, slot.lock_key)

        # Re-read under the lock; another commit may have closed it meanwhile
        suggestion = self._load_suggestion(user_id, suggestion_id, lock_row=True)
        self._check_open(suggestion, now)

        if find_conflicting_booking(
            self.db, slot.location_id, slot.booking_date, slot.booking_time, slot.staff_id
        ):
            raise SlotUnavailableError(slot.location_id, slot.booking_date, slot.booking_time, slot.staff_id)

        user = self.db.get(User, user_id)
        if user is None:
            raise DependencyNotFoundError("User", user_id)
        location = self.db.get(Location, slot.location_id)
        if location is None:
            raise DependencyNotFoundError("Location", slot.location_id)

        service_map = services_by_id(self.db, slot.service_ids)
        services = [service_map[sid] for sid in slot.service_ids if sid in service_map]
        total = sum((svc.price or Decimal("0") for svc in services), Decimal("0"))
        staff = staff_by_id(self.db, [slot.staff_id]).get(slot.staff_id) if slot.staff_id else None

        foreign_services = [svc.id for svc in services if svc.location_id != location.id]
        foreign_staff = staff is not None and staff.location_id != location.id
        if foreign_services or foreign_staff:
            raise ForeignLocationError(location.id, staff.id if foreign_staff else None, foreign_services)

        booking = Booking(
            user_id=user.id,
            location_id=location.id,
            service_id=slot.service_ids[0] if slot.service_ids else None,
            service_ids=[str(sid) for sid in slot.service_ids],
            staff_id=slot.staff_id,
            booking_date=slot.booking_date,
            booking_time=slot.booking_time,
            status=BookingStatus.CONFIRMED,
            source=source,
            customer_name=user.display_name,
            customer_email=user.email or "",
            customer_phone=user.phone or "",
            total_price=total,
            payment_method=PAYMENT_METHOD,
        )
        self.db.add(booking)
        self.db.flush()

        closed = self.db.execute(
            update(RebookSuggestion)
            .where(
                and_(
                    RebookSuggestion.id == suggestion_id,
                    RebookSuggestion.status.in_((SuggestionStatus.PENDING, SuggestionStatus.SHOWN)),
                )
            )
            .values(
                status=SuggestionStatus.ACCEPTED,
                responded_at=now,
                resulting_booking_id=booking.id,
            )
            .execution_options(synchronize_session=False)
        )
        if closed.rowcount != 1:
            raise SuggestionAlreadyUsedError(suggestion_id)

        return {
            "booking_id": booking.id,
            "location_name": location.name,
            "date": slot.booking_date,
            "time": slot.booking_time,
            "services": [svc.name for svc in services],
            "staff_name": staff.name if staff else None,
            "total": total,
            "lock_key": slot.lock_key,
        }
