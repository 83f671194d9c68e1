"""
Tests for slot lock keys and the in-process slot lock.
"""
import threading
import time
from datetime import date
from uuid import uuid4

import pytest

from rebooking.lib.slot_lock import (
    KeyedMutex,
    acquire_slot_lock,
    local_slot_mutex,
    profile_lock_key,
    slot_identity,
    slot_lock_key,
)


@pytest.mark.unit
def test_slot_lock_key_is_deterministic_and_fits_bigint():
    location_id, staff_id = uuid4(), uuid4()

    key1 = slot_lock_key(location_id, date(2024, 2, 5), "10:00", staff_id)
    key2 = slot_lock_key(str(location_id), "2024-02-05", "10:00", str(staff_id))

    assert key1 == key2
    assert -(2**63) <= key1 < 2**63


@pytest.mark.unit
def test_slot_lock_key_differs_per_slot_component():
    location_id, staff_id = uuid4(), uuid4()
    base = slot_lock_key(location_id, date(2024, 2, 5), "10:00", staff_id)

    assert base != slot_lock_key(uuid4(), date(2024, 2, 5), "10:00", staff_id)
    assert base != slot_lock_key(location_id, date(2024, 2, 6), "10:00", staff_id)
    assert base != slot_lock_key(location_id, date(2024, 2, 5), "10:30", staff_id)
    assert base != slot_lock_key(location_id, date(2024, 2, 5), "10:00", None)


@pytest.mark.unit
def test_profile_lock_key_is_per_user_and_location():
    user_id, location_id = uuid4(), uuid4()
    key = profile_lock_key(user_id, location_id)

    assert key == profile_lock_key(str(user_id), str(location_id))
    assert -(2**63) <= key < 2**63
    assert key != profile_lock_key(uuid4(), location_id)
    assert key != profile_lock_key(location_id, user_id)


@pytest.mark.unit
def test_unassigned_staff_identity():
    location_id = uuid4()

    assert slot_identity(location_id, date(2024, 2, 5), "10:00", None) == f"{location_id}|2024-02-05|10:00|unassigned"


@pytest.mark.unit
def test_keyed_mutex_blocks_same_key_only():
    mutex = KeyedMutex()

    assert mutex.acquire(1)
    assert mutex.acquire(2, timeout=0.1)
    assert not mutex.acquire(1, timeout=0.1)

    mutex.release(1)
    mutex.release(2)
    assert not mutex.is_locked(1)
    assert not mutex.is_locked(2)


@pytest.mark.unit
def test_session_lock_held_until_transaction_ends(session_factory):
    key = slot_lock_key(uuid4(), date(2024, 2, 5), "10:00", None)
    session = session_factory()
    try:
        acquire_slot_lock(session, key)
        # re-entrant within one transaction
        acquire_slot_lock(session, key)
        assert local_slot_mutex.is_locked(key)

        session.rollback()
        assert not local_slot_mutex.is_locked(key)

        acquire_slot_lock(session, key)
        session.commit()
        assert not local_slot_mutex.is_locked(key)
    finally:
        session.close()


@pytest.mark.unit
def test_second_session_waits_for_first(session_factory):
    key = slot_lock_key(uuid4(), date(2024, 2, 5), "10:00", None)
    order = []
    first = session_factory()
    acquire_slot_lock(first, key)

    def contender():
        second = session_factory()
        try:
            acquire_slot_lock(second, key)
            order.append("second")
            second.commit()
        finally:
            second.close()

    thread = threading.Thread(target=contender)
    thread.start()
    time.sleep(0.2)
    order.append("first")
    first.commit()
    first.close()
    thread.join(timeout=10)

    assert order == ["first", "second"]
    assert not local_slot_mutex.is_locked(key)
