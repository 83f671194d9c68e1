"""
Tests for the daily SuggestionGenerator sweep.

The clock is fixed at Sunday 2024-01-28. The default profile last visited
on 2024-01-01 with a 30 day cycle, so it is due on Wednesday 2024-01-31
(3 days out) and prefers Mondays at 10:00.
"""
import threading
import time
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from rebooking.lib.clock import ensure_utc
from rebooking.lib.metrics import get_metrics_collector
from rebooking.models import BookingStatus, RebookSuggestion, SuggestionStatus
from rebooking.services import suggestion_generator
from rebooking.services.suggestion_generator import SuggestionGenerator


@pytest.fixture
def setup(factory):
    location = factory.location()
    haircut = factory.service(location, "Haircut", "25.00")
    rumi = factory.staff(location, "Rumi")
    user = factory.user()
    return {"location": location, "haircut": haircut, "rumi": rumi, "user": user}


def make_profile(factory, setup, **overrides):
    values = dict(
        preferred_staff_id=setup["rumi"].id,
        preferred_service_ids=[str(setup["haircut"].id)],
        preferred_day_of_week=0,
        preferred_time_exact="10:00",
        average_booking_interval_days=30,
        last_booking_date=date(2024, 1, 1),
        total_completed_bookings=2,
    )
    values.update(overrides)
    return factory.profile(setup["user"], setup["location"], **values)


def all_suggestions(db_session):
    return list(db_session.execute(select(RebookSuggestion)).scalars().all())


def block(factory, setup, booking_date, booking_time="10:00", staff=None):
    other = factory.user()
    return factory.booking(
        other, setup["location"], booking_date, booking_time,
        services=[setup["haircut"]], staff=staff or setup["rumi"],
        status=BookingStatus.CONFIRMED,
    )


@pytest.mark.unit
def test_due_profile_gets_suggestion_on_preferred_weekday(db_session, factory, clock, setup):
    make_profile(factory, setup)

    generated = SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep()

    assert generated == 1
    [suggestion] = all_suggestions(db_session)
    assert suggestion.user_id == setup["user"].id
    assert suggestion.location_id == setup["location"].id
    assert suggestion.suggested_date == date(2024, 2, 5)
    assert suggestion.suggested_date.weekday() == 0
    assert suggestion.suggested_time == "10:00"
    assert suggestion.suggested_staff_id == setup["rumi"].id
    assert suggestion.suggested_service_ids == [str(setup["haircut"].id)]
    assert suggestion.confidence_score == 75
    assert suggestion.reason == "It's almost time for your next visit (in 3 days)"
    assert suggestion.status == SuggestionStatus.PENDING
    assert ensure_utc(suggestion.expires_at) == clock.now() + timedelta(days=7)

    metrics = get_metrics_collector()
    assert metrics.get_counter_value("rebook_suggestions_generated_total") == 1


@pytest.mark.unit
def test_taken_preferred_weekday_moves_to_next_one(db_session, factory, clock, setup):
    make_profile(factory, setup)
    block(factory, setup, date(2024, 2, 5))

    SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep()

    [suggestion] = all_suggestions(db_session)
    assert suggestion.suggested_date == date(2024, 2, 12)


@pytest.mark.unit
def test_no_open_preferred_weekday_falls_back_to_first_open_date(db_session, factory, clock, setup):
    make_profile(factory, setup)
    block(factory, setup, date(2024, 2, 5))
    block(factory, setup, date(2024, 2, 12))

    SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep()

    [suggestion] = all_suggestions(db_session)
    # search starts on the due date, a Wednesday
    assert suggestion.suggested_date == date(2024, 1, 31)
    assert suggestion.confidence_score == 70


@pytest.mark.unit
def test_booking_with_other_staff_does_not_block_preferred_staff(db_session, factory, clock, setup):
    make_profile(factory, setup)
    tania = factory.staff(setup["location"], "Tania")
    block(factory, setup, date(2024, 2, 5), staff=tania)

    SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep()

    [suggestion] = all_suggestions(db_session)
    assert suggestion.suggested_date == date(2024, 2, 5)


@pytest.mark.unit
def test_cancelled_booking_does_not_block(db_session, factory, clock, setup):
    make_profile(factory, setup)
    factory.booking(
        factory.user(), setup["location"], date(2024, 2, 5), "10:00",
        staff=setup["rumi"], status=BookingStatus.CANCELLED,
    )

    SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep()

    [suggestion] = all_suggestions(db_session)
    assert suggestion.suggested_date == date(2024, 2, 5)


@pytest.mark.unit
def test_profile_without_enough_history_is_not_eligible(db_session, factory, clock, setup):
    make_profile(factory, setup, total_completed_bookings=1)

    assert SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep() == 0
    assert all_suggestions(db_session) == []


@pytest.mark.unit
def test_profile_not_yet_due_is_skipped(db_session, factory, clock, setup):
    # due 2024-02-19, 22 days away
    make_profile(factory, setup, last_booking_date=date(2024, 1, 20))

    assert SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep() == 0

    metrics = get_metrics_collector()
    assert metrics.get_counter_value("rebook_suggestions_skipped_total", {"reason": "not_due"}) == 1


@pytest.mark.unit
def test_sweep_is_idempotent_while_suggestion_is_active(db_session, factory, clock, setup):
    make_profile(factory, setup)
    generator = SuggestionGenerator(db_session, clock)

    assert generator.run_daily_suggestion_sweep() == 1
    assert generator.run_daily_suggestion_sweep() == 0
    assert len(all_suggestions(db_session)) == 1

    metrics = get_metrics_collector()
    assert metrics.get_counter_value(
        "rebook_suggestions_skipped_total", {"reason": "active_suggestion"}
    ) == 1


@pytest.mark.unit
def test_lapsed_pending_suggestion_does_not_block_new_one(db_session, factory, clock, setup):
    make_profile(factory, setup)
    factory.suggestion(
        setup["user"], setup["location"],
        expires_at=clock.now() - timedelta(hours=1),
    )

    assert SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep() == 1


@pytest.mark.unit
def test_dismissed_suggestion_does_not_block_new_one(db_session, factory, clock, setup):
    make_profile(factory, setup)
    factory.suggestion(setup["user"], setup["location"], status=SuggestionStatus.DISMISSED)

    assert SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep() == 1


@pytest.mark.unit
def test_overdue_profile_searches_from_today(db_session, factory, clock, setup):
    # due 2023-12-31, 28 days overdue
    make_profile(factory, setup, last_booking_date=date(2023, 12, 1), preferred_day_of_week=None)

    SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep()

    [suggestion] = all_suggestions(db_session)
    assert suggestion.suggested_date == date(2024, 1, 28)
    assert suggestion.reason == "It's been over 58 days since your last visit. We miss you!"


@pytest.mark.unit
def test_profile_without_exact_time_uses_default_time(db_session, factory, clock, setup):
    make_profile(factory, setup, preferred_time_exact=None)

    SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep()

    [suggestion] = all_suggestions(db_session)
    assert suggestion.suggested_time == "10:00"
    # no exact-time bonus
    assert suggestion.confidence_score == 65


@pytest.mark.unit
def test_fully_booked_window_yields_no_suggestion(db_session, factory, clock, setup):
    make_profile(factory, setup)
    start = date(2024, 1, 31)
    for offset in range(14):
        block(factory, setup, start + timedelta(days=offset))

    assert SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep() == 0

    metrics = get_metrics_collector()
    assert metrics.get_counter_value("rebook_suggestions_skipped_total", {"reason": "no_slot"}) == 1


@pytest.mark.unit
def test_last_day_of_window_is_still_searched(db_session, factory, clock, setup):
    make_profile(factory, setup, preferred_day_of_week=None)
    start = date(2024, 1, 31)
    for offset in range(13):
        block(factory, setup, start + timedelta(days=offset))

    SuggestionGenerator(db_session, clock).run_daily_suggestion_sweep()

    [suggestion] = all_suggestions(db_session)
    assert suggestion.suggested_date == date(2024, 2, 13)


@pytest.mark.unit
def test_failure_for_one_profile_does_not_stop_sweep(db_session, factory, clock, setup, monkeypatch):
    broken = make_profile(factory, setup)
    other_user = factory.user()
    factory.profile(
        other_user, setup["location"],
        preferred_service_ids=[str(setup["haircut"].id)],
        preferred_time_exact="15:00",
        average_booking_interval_days=30,
        last_booking_date=date(2024, 1, 1),
        total_completed_bookings=3,
    )

    generator = SuggestionGenerator(db_session, clock)
    original = generator.generate_for_profile

    def flaky(profile_id):
        if profile_id == broken.id:
            raise RuntimeError("directory unavailable")
        return original(profile_id)

    monkeypatch.setattr(generator, "generate_for_profile", flaky)

    assert generator.run_daily_suggestion_sweep() == 1
    [suggestion] = all_suggestions(db_session)
    assert suggestion.user_id == other_user.id

    metrics = get_metrics_collector()
    assert metrics.get_counter_value("rebook_suggestions_skipped_total", {"reason": "error"}) == 1


@pytest.mark.unit
def test_overlapping_sweeps_create_one_active_suggestion(
    db_session, session_factory, factory, clock, setup, monkeypatch
):
    make_profile(factory, setup)
    original_search = suggestion_generator.find_matching_slot

    def slow_search(*args, **kwargs):
        time.sleep(0.2)
        return original_search(*args, **kwargs)

    monkeypatch.setattr(suggestion_generator, "find_matching_slot", slow_search)

    barrier = threading.Barrier(2)
    results = []

    def sweep():
        session = session_factory()
        try:
            barrier.wait()
            results.append(SuggestionGenerator(session, clock).run_daily_suggestion_sweep())
        finally:
            session.close()

    threads = [threading.Thread(target=sweep) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(results) == [0, 1]
    db_session.expire_all()
    active = [s for s in all_suggestions(db_session) if s.status == SuggestionStatus.PENDING]
    assert len(active) == 1
    metrics = get_metrics_collector()
    assert metrics.get_counter_value("rebook_suggestions_skipped_total", {"reason": "active_suggestion"}) == 1
