"""
Transaction-scoped slot locks.

A slot is the tuple (location, date, time, staff-or-unassigned). Every
commit into a slot first takes a lock derived from that tuple, so commits
into the same slot run one after another on every replica.

On PostgreSQL the lock is pg_advisory_xact_lock, which the server releases
when the transaction ends. Other backends (SQLite in tests, single-process
deployments) get an in-process keyed mutex released by a session hook at
the end of the outermost transaction. Callers never unlock by hand.

The same mechanism serializes suggestion generation per (user, location),
under keys that cannot collide with slot keys.
"""
import hashlib
import threading
from datetime import date as date_type
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import event, text
from sqlalchemy.orm import Session

from rebooking.lib.logging import get_logger

logger = get_logger(__name__)

UNASSIGNED_STAFF = "unassigned"

_SESSION_INFO_KEY = "held_slot_locks"


def slot_identity(
    location_id: Union[UUID, str],
    booking_date: Union[date_type, str],
    booking_time: str,
    staff_id: Optional[Union[UUID, str]],
) -> str:
    """Natural key of a slot, e.g. '<location>|2024-01-29|10:00|unassigned'."""
    if isinstance(booking_date, date_type):
        booking_date = booking_date.isoformat()
    staff_part = str(staff_id) if staff_id else UNASSIGNED_STAFF
    return f"{location_id}|{booking_date}|{booking_time}|{staff_part}"


def slot_lock_key(
    location_id: Union[UUID, str],
    booking_date: Union[date_type, str],
    booking_time: str,
    staff_id: Optional[Union[UUID, str]],
) -> int:
    """
    Deterministic signed 64-bit lock key for a slot.

    Fits Postgres bigint, which is what pg_advisory_xact_lock takes.
    """
    return _hash_key(slot_identity(location_id, booking_date, booking_time, staff_id))


def profile_lock_key(user_id: Union[UUID, str], location_id: Union[UUID, str]) -> int:
    """Lock key for generating a suggestion for one (user, location)."""
    return _hash_key(f"suggestion|{user_id}|{location_id}")


def _hash_key(identity: str) -> int:
    hash_bytes = hashlib.sha256(identity.encode()).digest()[:8]
    return int.from_bytes(hash_bytes, byteorder="big", signed=True)


class KeyedMutex:
    """Process-local mutex per integer key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}
        self._refcounts: dict[int, int] = {}

    def acquire(self, key: int, timeout: float = -1) -> bool:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._refcounts[key] = self._refcounts.get(key, 0) + 1
        acquired = lock.acquire(timeout=timeout)
        if not acquired:
            self._drop_ref(key)
        return acquired

    def release(self, key: int) -> None:
        with self._guard:
            lock = self._locks[key]
        lock.release()
        self._drop_ref(key)

    def is_locked(self, key: int) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def _drop_ref(self, key: int) -> None:
        with self._guard:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                del self._locks[key]


local_slot_mutex = KeyedMutex()


def _uses_advisory_locks(session: Session) -> bool:
    return session.get_bind().dialect.name == "postgresql"


def acquire_slot_lock(session: Session, lock_key: int) -> None:
    """
    Block until this transaction holds the slot lock.

    The lock lives until the session's current transaction commits or rolls
    back. Taking the same key twice in one transaction is a no-op.
    """
    if _uses_advisory_locks(session):
        session.execute(
            text("SELECT pg_advisory_xact_lock(:lock_key)"),
            {"lock_key": lock_key},
        )
        return

    held = session.info.setdefault(_SESSION_INFO_KEY, set())
    if lock_key in held:
        return
    # Make sure a transaction is open so the release hook fires at its end
    session.connection()
    local_slot_mutex.acquire(lock_key)
    held.add(lock_key)
    logger.debug(f"Slot lock {lock_key} acquired (in-process)")


@event.listens_for(Session, "after_transaction_end")
def _release_slot_locks(session: Session, transaction) -> None:
    if transaction.parent is not None:
        return
    held = session.info.get(_SESSION_INFO_KEY)
    if not held:
        return
    for lock_key in list(held):
        local_slot_mutex.release(lock_key)
        logger.debug(f"Slot lock {lock_key} released (in-process)")
    held.clear()
