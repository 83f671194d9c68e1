"""
Tests for PreferenceLearner.
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from rebooking.lib.metrics import get_metrics_collector
from rebooking.models import BookingStatus, TimeSlot
from rebooking.services.preference_learner import PreferenceLearner


@pytest.fixture
def salon(factory):
    location = factory.location()
    return {
        "location": location,
        "haircut": factory.service(location, "Haircut", "25.00"),
        "color": factory.service(location, "Color", "60.00"),
        "trim": factory.service(location, "Beard Trim", "10.00"),
        "rumi": factory.staff(location, "Rumi"),
        "tania": factory.staff(location, "Tania"),
    }


@pytest.mark.unit
def test_first_completed_booking_creates_profile(db_session, factory, clock, salon):
    user = factory.user()
    booking = factory.booking(
        user, salon["location"], date(2024, 1, 1), "10:00",
        services=[salon["haircut"]], staff=salon["rumi"],
    )

    profile = PreferenceLearner(db_session, clock).on_booking_completed(booking.id)

    assert profile is not None
    assert profile.total_completed_bookings == 1
    assert profile.total_spent == Decimal("25.00")
    assert profile.preferred_staff_id == salon["rumi"].id
    assert profile.preferred_service_ids == [str(salon["haircut"].id)]
    assert profile.preferred_day_of_week == date(2024, 1, 1).weekday()
    assert profile.preferred_time_slot == TimeSlot.MORNING
    assert profile.preferred_time_exact == "10:00"
    assert profile.average_booking_interval_days == 30
    assert profile.last_booking_id == booking.id
    assert profile.last_booking_date == date(2024, 1, 1)

    metrics = get_metrics_collector()
    assert metrics.get_counter_value("rebook_preference_updates_total", {"operation": "created"}) == 1


@pytest.mark.unit
def test_history_drives_modes_and_interval(db_session, factory, clock, salon):
    user = factory.user()
    location = salon["location"]
    learner = PreferenceLearner(db_session, clock)

    # Mondays, every 14 days, mostly with Rumi, at 17:30
    visits = [
        (date(2023, 12, 4), salon["rumi"], [salon["haircut"], salon["trim"]]),
        (date(2023, 12, 18), salon["tania"], [salon["haircut"]]),
        (date(2024, 1, 1), salon["rumi"], [salon["haircut"], salon["color"]]),
        (date(2024, 1, 15), salon["rumi"], [salon["haircut"], salon["trim"]]),
    ]
    profile = None
    for visit_date, staff, services in visits:
        booking = factory.booking(user, location, visit_date, "17:30", services=services, staff=staff)
        profile = learner.on_booking_completed(booking.id)

    assert profile.total_completed_bookings == 4
    assert profile.preferred_staff_id == salon["rumi"].id
    assert profile.preferred_day_of_week == 0
    assert profile.preferred_time_slot == TimeSlot.EVENING
    assert profile.average_booking_interval_days == 14
    assert profile.preferred_service_ids[0] == str(salon["haircut"].id)
    assert profile.preferred_service_ids[1] == str(salon["trim"].id)
    assert len(profile.preferred_service_ids) == 3
    assert profile.total_spent == Decimal("35.00") + Decimal("25.00") + Decimal("85.00") + Decimal("35.00")


@pytest.mark.unit
def test_same_booking_is_not_counted_twice(db_session, factory, clock, salon):
    user = factory.user()
    booking = factory.booking(user, salon["location"], date(2024, 1, 1), services=[salon["haircut"]])
    learner = PreferenceLearner(db_session, clock)

    learner.on_booking_completed(booking.id)
    profile = learner.on_booking_completed(booking.id)

    assert profile.total_completed_bookings == 1
    assert profile.total_spent == Decimal("25.00")


@pytest.mark.unit
def test_non_completed_booking_is_ignored(db_session, factory, clock, salon):
    user = factory.user()
    booking = factory.booking(
        user, salon["location"], date(2024, 1, 1),
        services=[salon["haircut"]], status=BookingStatus.CONFIRMED,
    )

    assert PreferenceLearner(db_session, clock).on_booking_completed(booking.id) is None


@pytest.mark.unit
def test_booking_without_user_or_location_is_ignored(db_session, factory, clock, salon):
    guest_booking = factory.booking(None, salon["location"], date(2024, 1, 1), services=[salon["haircut"]])

    learner = PreferenceLearner(db_session, clock)

    assert learner.on_booking_completed(guest_booking.id) is None


@pytest.mark.unit
def test_unknown_booking_is_ignored(db_session, clock):
    from uuid import uuid4

    assert PreferenceLearner(db_session, clock).on_booking_completed(uuid4()) is None


@pytest.mark.unit
def test_outlier_gap_is_excluded_from_interval(db_session, factory, clock, salon):
    user = factory.user()
    learner = PreferenceLearner(db_session, clock)
    start = date(2023, 1, 2)

    # gaps: 200 (outlier), then 21
    for visit_date in (start, start + timedelta(days=200), start + timedelta(days=221)):
        booking = factory.booking(user, salon["location"], visit_date, services=[salon["haircut"]])
        profile = learner.on_booking_completed(booking.id)

    assert profile.average_booking_interval_days == 21
    assert profile.total_completed_bookings == 3


@pytest.mark.unit
def test_profiles_are_per_location(db_session, factory, clock, salon):
    user = factory.user()
    other = factory.location("Other Salon")
    learner = PreferenceLearner(db_session, clock)

    first = learner.on_booking_completed(
        factory.booking(user, salon["location"], date(2024, 1, 1), services=[salon["haircut"]]).id
    )
    second = learner.on_booking_completed(
        factory.booking(user, other, date(2024, 1, 2), services=[]).id
    )

    assert first.id != second.id
    assert second.total_completed_bookings == 1
    assert second.preferred_service_ids == []


@pytest.mark.unit
def test_redelivered_older_completion_is_not_counted_again(db_session, factory, clock, salon):
    user = factory.user()
    learner = PreferenceLearner(db_session, clock)
    first = factory.booking(user, salon["location"], date(2024, 1, 1), services=[salon["haircut"]])
    learner.on_booking_completed(first.id)
    second = factory.booking(user, salon["location"], date(2024, 1, 15), "11:00", services=[salon["haircut"]])
    learner.on_booking_completed(second.id)

    profile = learner.on_booking_completed(first.id)

    assert profile.total_completed_bookings == 2
    assert profile.total_spent == Decimal("50.00")
    assert profile.last_booking_id == second.id
    assert profile.last_booking_date == date(2024, 1, 15)
    assert profile.preferred_time_exact == "11:00"
    metrics = get_metrics_collector()
    assert metrics.get_counter_value("rebook_preference_updates_total", {"operation": "updated"}) == 1


@pytest.mark.unit
def test_late_older_completion_keeps_newest_visit_as_last(db_session, factory, clock, salon):
    user = factory.user()
    learner = PreferenceLearner(db_session, clock)
    newer = factory.booking(user, salon["location"], date(2024, 1, 15), services=[salon["haircut"]])
    older = factory.booking(
        user, salon["location"], date(2024, 1, 1),
        services=[salon["haircut"]], status=BookingStatus.CONFIRMED,
    )
    learner.on_booking_completed(newer.id)

    older.status = BookingStatus.COMPLETED
    db_session.commit()
    profile = learner.on_booking_completed(older.id)

    assert profile.total_completed_bookings == 2
    assert profile.last_booking_id == newer.id
    assert profile.last_booking_date == date(2024, 1, 15)
    assert profile.average_booking_interval_days == 14
