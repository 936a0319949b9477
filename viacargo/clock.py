"""Injectable clock so criticality and alert code never reads wall time directly.

Times are naive *local* datetimes: urgency is measured in local calendar
days, and the alert debounce compares epoch milliseconds.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self):
        return self.now().date()

    def now_ms(self) -> int:
        t = self.now()
        # Whole seconds plus the millisecond part, no float rounding
        return int(t.replace(microsecond=0).timestamp()) * 1000 + t.microsecond // 1000


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now()


class FixedClock(Clock):
    """Test clock: returns the same instant until advanced."""

    def __init__(self, fixed_time: datetime | None = None):
        self._time = fixed_time or datetime(2024, 1, 1, 12, 0, 0)

    def now(self) -> datetime:
        return self._time

    def set_time(self, time: datetime) -> None:
        self._time = time

    def advance(self, **kwargs) -> datetime:
        """Takes the same keywords as ``timedelta``."""
        self._time += timedelta(**kwargs)
        return self._time
