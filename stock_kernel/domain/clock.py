"""
Injectable time source.

Reports that default to "as of today" and the posting service's
``received_at`` stamp read the clock they were constructed with; nothing in
the ledger calls ``date.today()`` itself, so a test or a backfill can pin
the date.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone

# Month-end of the reference period used throughout the test suite.
DEFAULT_PINNED_TIME = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Timezone-aware current time."""

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, pinned: datetime | None = None):
        self._pinned = pinned or DEFAULT_PINNED_TIME

    def now(self) -> datetime:
        return self._pinned

    def pin_date(self, day: date) -> None:
        """Move to noon UTC on ``day`` (e.g. a backfill stepping through documents)."""
        self._pinned = datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc)
