"""
Booking model - appointments at a location.

The booking system owns this table. The rebooking engine reads completed
history from it and inserts confirmed bookings on the rebook commit path.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import String, Numeric, Date, DateTime, ForeignKey, Uuid, Enum as SQLEnum, Index
from sqlalchemy.orm import Mapped, mapped_column

from rebooking.lib.db import Base, JSONType


class BookingStatus(str, enum.Enum):
    """Booking status state machine."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that occupy a slot
ACTIVE_BOOKING_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.PENDING)


class BookingSource(str, enum.Enum):
    """Where a booking came from."""
    DIRECT = "direct"
    EXPRESS_REBOOK = "express_rebook"
    EXPRESS_REBOOK_CUSTOM = "express_rebook_custom"


class Booking(Base):
    """
    Booking entity.
    State machine: pending → confirmed → completed (or cancelled).
    """
    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Guest bookings have no user
    user_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    location_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    service_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("services.id", ondelete="SET NULL"),
        nullable=True,
        comment="Primary service",
    )
    service_ids: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="All services in the appointment, primary first",
    )
    staff_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("staff.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    booking_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    booking_time: Mapped[str] = mapped_column(String(5), nullable=False, comment="HH:MM")

    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus, name="booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )
    source: Mapped[BookingSource] = mapped_column(
        SQLEnum(BookingSource, name="booking_source"),
        nullable=False,
        default=BookingSource.DIRECT,
    )

    # Customer snapshot
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Payment
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_bookings_slot", "location_id", "booking_date", "booking_time"),
        Index("ix_bookings_user_location", "user_id", "location_id", "status"),
    )

    @property
    def all_service_ids(self) -> list[str]:
        """Service ids as strings, falling back to the primary service."""
        if self.service_ids:
            return [str(s) for s in self.service_ids]
        return [str(self.service_id)] if self.service_id else []

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, status={self.status}, date={self.booking_date} {self.booking_time})>"
