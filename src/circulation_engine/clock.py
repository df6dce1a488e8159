"""Time source for the engine.

Overdue days, waiting days and the reconciliation schedule all depend on the
current date, so every component reads it from a `Clock` instead of calling
`datetime.now()` directly. Tests install a `FixedClock`.
"""

from datetime import date, datetime, timedelta


class Clock:
    """Wall clock in server local time."""

    def now(self) -> datetime:
        return datetime.now()

    def today(self) -> date:
        return self.now().date()


class FixedClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current

    def advance(self, days: int = 0, hours: int = 0, minutes: int = 0) -> datetime:
        self.current += timedelta(days=days, hours=hours, minutes=minutes)
        return self.current


class _ClockStore:
    _instance: Clock | None = None


def get_clock() -> Clock:
    if _ClockStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ClockStore._instance = Clock()  # type: ignore[reportPrivateUsage]
    return _ClockStore._instance  # type: ignore[reportPrivateUsage]


def set_clock(clock: Clock) -> None:
    _ClockStore._instance = clock  # type: ignore[reportPrivateUsage]


def reset_clock() -> None:
    _ClockStore._instance = None  # type: ignore[reportPrivateUsage]
