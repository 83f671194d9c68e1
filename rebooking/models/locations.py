"""
Location and staff models - the business directory.
"""
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import String, Numeric, ForeignKey, Uuid, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from rebooking.lib.db import Base


class Location(Base):
    """A bookable business location (salon, studio, clinic)."""
    __tablename__ = "locations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    rating: Mapped[Optional[float]] = mapped_column(Numeric(3, 2), nullable=True)

    def __repr__(self) -> str:
        return f"<Location(id={self.id}, name={self.name})>"


class StaffMember(Base):
    """A staff member working at one location."""
    __tablename__ = "staff"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    location_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    photo_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<StaffMember(id={self.id}, name={self.name})>"
