from datetime import date, datetime, time, timedelta, timezone

import pytest

from booking_backend.core.clock import FixedClock, resolve_zone
from booking_backend.core.errors import SlotConflictError
from booking_backend.core.time_utils import (
    format_time,
    hours_until,
    interval_contains,
    intervals_overlap,
    is_past_time_today,
    iterate_dates,
    local_interval,
    parse_date,
    parse_time,
    to_utc_naive,
)


def test_parse_time_accepts_zero_padded_clock_time() -> None:
    assert parse_time(' 09:35 ') == time(9, 35)
    assert format_time(time(7, 5)) == '07:05'


@pytest.mark.parametrize('value', ['9:00', '24:00', '12:60', '0900', 'noon', ''])
def test_parse_time_rejects_malformed_values(value: str) -> None:
    with pytest.raises(ValueError):
        parse_time(value)


def test_parse_date_requires_iso_format() -> None:
    assert parse_date('2030-01-07') == date(2030, 1, 7)

    with pytest.raises(ValueError):
        parse_date('07/01/2030')


@pytest.mark.parametrize(
    ('first', 'second', 'expected'),
    [
        ((time(9, 0), time(10, 0)), (time(10, 0), time(11, 0)), False),
        ((time(9, 0), time(10, 0)), (time(8, 0), time(9, 0)), False),
        ((time(9, 0), time(10, 0)), (time(9, 30), time(10, 30)), True),
        ((time(9, 0), time(12, 0)), (time(10, 0), time(11, 0)), True),
    ],
)
def test_intervals_overlap_is_half_open(first, second, expected: bool) -> None:
    assert intervals_overlap(*first, *second) is expected
    assert intervals_overlap(*second, *first) is expected


def test_interval_contains_accepts_shared_bounds() -> None:
    assert interval_contains(time(9, 0), time(12, 0), time(9, 0), time(12, 0))
    assert not interval_contains(time(9, 0), time(12, 0), time(11, 30), time(12, 30))


def test_hours_until_handles_aware_and_naive_values() -> None:
    now = datetime(2030, 1, 7, 8, 0)
    start = datetime(2030, 1, 8, 10, 0, tzinfo=timezone(timedelta(hours=2)))

    assert hours_until(start, now) == pytest.approx(24.0)


def test_to_utc_naive_keeps_naive_values_untouched() -> None:
    value = datetime(2030, 1, 7, 8, 0)

    assert to_utc_naive(value) is value
    assert to_utc_naive(datetime(2030, 1, 7, 9, 0, tzinfo=timezone(timedelta(hours=1)))) == value


def test_is_past_time_today_only_applies_to_today() -> None:
    local_now = datetime(2030, 1, 7, 10, 0)

    assert is_past_time_today(date(2030, 1, 7), time(10, 0), local_now)
    assert not is_past_time_today(date(2030, 1, 7), time(10, 15), local_now)
    assert not is_past_time_today(date(2030, 1, 8), time(6, 0), local_now)


def test_local_interval_projects_onto_the_platform_zone() -> None:
    zone = resolve_zone('Europe/Paris')

    assert local_interval(datetime(2030, 1, 7, 8, 0), 60, zone) == (date(2030, 1, 7), time(9, 0), time(10, 0))
    assert local_interval(datetime(2030, 1, 7, 22, 30), 60, zone) is None


def test_local_interval_end_follows_daylight_saving_change() -> None:
    zone = resolve_zone('Europe/Paris')

    # Clocks jump from 02:00 to 03:00 local time on 2030-03-31.
    assert local_interval(datetime(2030, 3, 31, 0, 30), 60, zone) == (date(2030, 3, 31), time(1, 30), time(3, 30))


def test_iterate_dates_is_inclusive() -> None:
    assert list(iterate_dates(date(2030, 1, 6), date(2030, 1, 8))) == [
        date(2030, 1, 6),
        date(2030, 1, 7),
        date(2030, 1, 8),
    ]
    assert list(iterate_dates(date(2030, 1, 8), date(2030, 1, 7))) == []


def test_fixed_clock_reports_local_date_in_its_zone() -> None:
    clock = FixedClock(datetime(2030, 1, 7, 23, 30), 'Europe/Paris')

    assert clock.now() == datetime(2030, 1, 7, 23, 30)
    assert clock.today() == date(2030, 1, 8)

    clock.advance(hours=1)
    assert clock.now() == datetime(2030, 1, 8, 0, 30)


def test_booking_errors_carry_code_and_details() -> None:
    error = SlotConflictError(conflicting_start='2030-01-08T09:00:00')

    assert error.status_code == 409
    assert error.as_detail() == {
        'code': 'slot_conflict',
        'message': 'This time is no longer available.',
        'conflicting_start': '2030-01-08T09:00:00',
    }
