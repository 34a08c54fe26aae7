from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from booking_backend.core.time_utils import to_utc_naive


def resolve_zone(name: str) -> tzinfo:
    if name.upper() == 'UTC':
        return timezone.utc
    return ZoneInfo(name)


class Clock:
    """Current-time source for the scheduling services.

    ``now()`` is a naive UTC instant, the representation appointments are
    stored in. ``local_now()`` and ``today()`` are wall-clock values in the
    platform zone, used for calendar slots.
    """

    def __init__(self, timezone_name: str = 'UTC'):
        self.zone = resolve_zone(timezone_name)

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def local_now(self) -> datetime:
        return self.now().replace(tzinfo=timezone.utc).astimezone(self.zone)

    def today(self) -> date:
        return self.local_now().date()


class FixedClock(Clock):
    """Clock frozen at a given instant; moved only by ``advance`` or ``set``."""

    def __init__(self, current: datetime, timezone_name: str = 'UTC'):
        super().__init__(timezone_name)
        self._current = to_utc_naive(current)

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        self._current = to_utc_naive(current)

    def advance(self, **delta) -> datetime:
        self._current += timedelta(**delta)
        return self._current
