"""
Injectable clock for every "now"-based calculation.

Services take a Clock so due dates, expiry and day counts can be tested
against a fixed instant.
"""
from datetime import date, datetime, timezone
from typing import Optional


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the store."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Clock:
    """Source of the current instant (timezone-aware UTC)."""

    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant; advance() moves it forward."""

    def __init__(self, instant: datetime):
        self._instant = ensure_utc(instant)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = ensure_utc(instant)

    def advance(self, delta) -> None:
        self._instant = self._instant + delta


system_clock = SystemClock()
