"""Date, clock-time and interval helpers shared by the scheduling services.

Calendar dates travel as ``YYYY-MM-DD`` and clock times as ``HH:MM``. Instants
are stored as naive UTC datetimes so that comparisons never depend on the
process time zone.
"""

import calendar
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo

TIME_PATTERN = re.compile(r'^([01][0-9]|2[0-3]):([0-5][0-9])$')
DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def parse_date(value: str) -> date:
    normalized = value.strip()
    if not DATE_PATTERN.match(normalized):
        raise ValueError('Invalid date format. Use YYYY-MM-DD.')
    return date.fromisoformat(normalized)


def format_date(value: date) -> str:
    return value.isoformat()


def parse_time(value: str) -> time:
    match = TIME_PATTERN.match(value.strip())
    if not match:
        raise ValueError('Invalid time format. Use HH:MM (e.g. 09:35).')
    return time(int(match.group(1)), int(match.group(2)))


def format_time(value: time) -> str:
    return f'{value.hour:02d}:{value.minute:02d}'


def intervals_overlap(start_a, end_a, start_b, end_b) -> bool:
    # Half-open: [09:00, 10:00) and [10:00, 11:00) do not overlap.
    return start_a < end_b and start_b < end_a


def interval_contains(outer_start, outer_end, start, end) -> bool:
    return outer_start <= start and end <= outer_end


def hours_until(instant: datetime, now: datetime) -> float:
    return (to_utc_naive(instant) - to_utc_naive(now)).total_seconds() / 3600


def is_past_date(day: date, today: date) -> bool:
    return day < today


def is_past_time_today(day: date, start: time, local_now: datetime) -> bool:
    if day != local_now.date():
        return False
    return start <= local_now.time().replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_local(value: datetime, zone: tzinfo) -> datetime:
    return to_utc_naive(value).replace(tzinfo=timezone.utc).astimezone(zone)


def local_interval(start_utc: datetime, duration_minutes: int, zone: tzinfo) -> tuple[date, time, time] | None:
    """Project a UTC interval onto a local calendar date.

    Returns ``None`` when the interval crosses local midnight, since a per-date
    slot can never contain it.
    """
    local_start = to_local(start_utc, zone)
    # Shift in UTC so a DST change inside the interval moves the local end.
    local_end = to_local(to_utc_naive(start_utc) + timedelta(minutes=duration_minutes), zone)
    if local_end.date() != local_start.date():
        return None
    return local_start.date(), local_start.time().replace(tzinfo=None), local_end.time().replace(tzinfo=None)


def iterate_dates(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def local_day_bounds(first_day: date, last_day: date, zone: tzinfo) -> tuple[datetime, datetime]:
    """Naive UTC bounds of local days ``first_day`` through ``last_day``; the end is exclusive."""
    start = datetime.combine(first_day, time(0), tzinfo=zone)
    end = datetime.combine(last_day + timedelta(days=1), time(0), tzinfo=zone)
    return to_utc_naive(start), to_utc_naive(end)


def months_before(day: date, months: int) -> date:
    index = day.year * 12 + day.month - 1 - months
    year, month = divmod(index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))
