"""
Service model - bookable services offered at a location.
"""
from decimal import Decimal
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import String, Numeric, Integer, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rebooking.lib.db import Base


class Service(Base):
    """
    Service entity - bookable services.
    Prices are read live whenever a rebook total is computed.
    """
    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    location_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name={self.name}, price={self.price})>"
