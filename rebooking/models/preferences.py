"""
Preference profile model - what a customer tends to book at a location.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import (
    String, Integer, Numeric, Date, DateTime, ForeignKey, Uuid,
    Enum as SQLEnum, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rebooking.lib.db import Base, JSONType


class TimeSlot(str, enum.Enum):
    """Coarse time-of-day bucket."""
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class UserBookingPreference(Base):
    """
    Learned per-customer-per-location booking preferences.

    Created on the first completed booking for a (user, location) pair and
    updated on every later one. Never deleted by this subsystem.
    preferred_day_of_week follows date.weekday(): Monday=0 ... Sunday=6.
    """
    __tablename__ = "user_booking_preferences"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    location_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Learned preferences
    preferred_staff_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    preferred_service_ids: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Top services by frequency, most frequent first",
    )
    preferred_day_of_week: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    preferred_time_slot: Mapped[Optional[TimeSlot]] = mapped_column(
        SQLEnum(TimeSlot, name="time_slot"),
        nullable=True,
    )
    preferred_time_exact: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    average_booking_interval_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # History
    last_booking_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    last_booking_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_completed_bookings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_spent: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "location_id", name="uq_preference_user_location"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserBookingPreference(user_id={self.user_id}, location_id={self.location_id}, "
            f"bookings={self.total_completed_bookings})>"
        )
