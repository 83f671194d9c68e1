"""
Rebook suggestion model - a proposed future appointment for a customer.
"""
from datetime import date, datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import (
    String, Integer, Date, DateTime, ForeignKey, Uuid,
    Enum as SQLEnum, CheckConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from rebooking.lib.db import Base, JSONType


class SuggestionStatus(str, enum.Enum):
    """
    Suggestion lifecycle.
    pending → shown → accepted | dismissed | expired (pending may skip shown).
    """
    PENDING = "pending"
    SHOWN = "shown"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"
    EXPIRED = "expired"


ACTIVE_SUGGESTION_STATUSES = (SuggestionStatus.PENDING, SuggestionStatus.SHOWN)


class RebookSuggestion(Base):
    """
    Rebook suggestion entity.

    Creation fields are never modified; only status, shown_at, responded_at,
    resulting_booking_id (and reason, on dismissal) change afterwards.
    """
    __tablename__ = "rebook_suggestions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    location_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Proposed slot
    suggested_date: Mapped[date] = mapped_column(Date, nullable=False)
    suggested_time: Mapped[str] = mapped_column(String(5), nullable=False)
    suggested_service_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    suggested_staff_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)

    # Lifecycle
    status: Mapped[SuggestionStatus] = mapped_column(
        SQLEnum(SuggestionStatus, name="suggestion_status"),
        nullable=False,
        default=SuggestionStatus.PENDING,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    shown_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resulting_booking_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 100",
            name="suggestion_confidence_range",
        ),
        Index("ix_rebook_suggestions_user_status", "user_id", "status"),
        Index("ix_rebook_suggestions_status_expires", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RebookSuggestion(id={self.id}, status={self.status}, "
            f"slot={self.suggested_date} {self.suggested_time})>"
        )
