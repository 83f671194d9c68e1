"""
Shared fixtures: a fresh file-backed SQLite database per test, a fixed
clock, and small factories for directory and booking rows.

A file (not :memory:) database lets threads open their own connections,
which the concurrency tests rely on.
"""
import os

# Keep the module-level engine off PostgreSQL; tests bind their own engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import rebooking.models  # noqa: F401  registers every table
from rebooking.lib.clock import FixedClock
from rebooking.lib.db import Base
from rebooking.lib.metrics import reset_metrics
from rebooking.lib.rate_limit import reset_rate_limits
from rebooking.models import (
    Booking,
    BookingStatus,
    BookingSource,
    Location,
    RebookSuggestion,
    Service,
    StaffMember,
    SuggestionStatus,
    User,
    UserBookingPreference,
)

# Sunday 2024-01-28, 06:00 UTC
NOW = datetime(2024, 1, 28, 6, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'rebooking.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture(autouse=True)
def clean_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


class Factory:
    """Creates and commits rows with sensible defaults."""

    def __init__(self, session):
        self.session = session
        self._counter = 0

    def _save(self, obj):
        self.session.add(obj)
        self.session.commit()
        return obj

    def user(self, first_name: str = "Nadia", last_name: str = "Rahman", **kwargs) -> User:
        self._counter += 1
        kwargs.setdefault("email", f"customer{self._counter}@example.com")
        kwargs.setdefault("phone", "+8801700000000")
        return self._save(User(first_name=first_name, last_name=last_name, **kwargs))

    def location(self, name: str = "Glow Salon", **kwargs) -> Location:
        kwargs.setdefault("image_url", "https://img.example.com/glow.jpg")
        kwargs.setdefault("rating", Decimal("4.50"))
        return self._save(Location(name=name, **kwargs))

    def service(self, location: Location, name: str = "Haircut", price: str = "25.00", **kwargs) -> Service:
        kwargs.setdefault("duration_minutes", 45)
        return self._save(Service(location_id=location.id, name=name, price=Decimal(price), **kwargs))

    def staff(self, location: Location, name: str = "Rumi", **kwargs) -> StaffMember:
        return self._save(StaffMember(location_id=location.id, name=name, **kwargs))

    def booking(
        self,
        user: Optional[User],
        location: Optional[Location],
        booking_date: date,
        booking_time: str = "10:00",
        services: Iterable[Service] = (),
        staff: Optional[StaffMember] = None,
        status: BookingStatus = BookingStatus.COMPLETED,
        total_price: Optional[str] = None,
        **kwargs,
    ) -> Booking:
        services = list(services)
        if total_price is None:
            total = sum((s.price for s in services), Decimal("0"))
        else:
            total = Decimal(total_price)
        return self._save(
            Booking(
                user_id=user.id if user else None,
                location_id=location.id if location else None,
                service_id=services[0].id if services else None,
                service_ids=[str(s.id) for s in services],
                staff_id=staff.id if staff else None,
                booking_date=booking_date,
                booking_time=booking_time,
                status=status,
                source=kwargs.pop("source", BookingSource.DIRECT),
                total_price=total,
                **kwargs,
            )
        )

    def profile(self, user: User, location: Location, **kwargs) -> UserBookingPreference:
        kwargs.setdefault("preferred_service_ids", [])
        kwargs.setdefault("total_completed_bookings", 2)
        kwargs.setdefault("total_spent", Decimal("0"))
        kwargs.setdefault("updated_at", NOW)
        return self._save(UserBookingPreference(user_id=user.id, location_id=location.id, **kwargs))

    def suggestion(
        self,
        user: User,
        location: Location,
        suggested_date: date = date(2024, 2, 5),
        suggested_time: str = "10:00",
        services: Iterable[Service] = (),
        staff: Optional[StaffMember] = None,
        status: SuggestionStatus = SuggestionStatus.PENDING,
        expires_at: Optional[datetime] = None,
        **kwargs,
    ) -> RebookSuggestion:
        kwargs.setdefault("confidence_score", 70)
        kwargs.setdefault("reason", "It's almost time for your next visit (in 3 days)")
        kwargs.setdefault("created_at", NOW)
        return self._save(
            RebookSuggestion(
                user_id=user.id,
                location_id=location.id,
                suggested_date=suggested_date,
                suggested_time=suggested_time,
                suggested_service_ids=[str(s.id) for s in services],
                suggested_staff_id=staff.id if staff else None,
                status=status,
                expires_at=expires_at or NOW + timedelta(days=7),
                **kwargs,
            )
        )


@pytest.fixture
def factory(db_session):
    return Factory(db_session)
