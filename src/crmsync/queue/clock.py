"""
Clocks for the sync queue.

Everything that stamps or compares times takes a clock so tests can drive
retries and reclamation without real waits. Times are timezone-aware UTC;
the SyncItem datetime columns hand them back the same way.
"""
from datetime import datetime, timedelta, timezone


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FakeClock:
    """Manually advanced clock for tests and simulations."""

    def __init__(self, start: datetime = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)):
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        """Move forward by timedelta(**kwargs) and return the new time."""
        self._now += timedelta(**kwargs)
        return self._now
