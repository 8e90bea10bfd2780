from datetime import date, datetime

import pytest

from orderwindow.domain.errors import InvalidTimeFormat
from orderwindow.domain.models import TimeOfDay
from orderwindow.domain.time_window import WindowState, parse_time_of_day, resolve, window_state


def test_parse_dotted_time():
    assert parse_time_of_day("09.15.00.000") == TimeOfDay(9, 15, 0, 0)


def test_parse_numeric_time_matches_dotted():
    assert parse_time_of_day("091500000") == parse_time_of_day("09.15.00.000")


def test_parse_numeric_time_is_left_padded():
    # YAML/JSON integers lose the leading zero.
    assert parse_time_of_day(91500000) == TimeOfDay(9, 15, 0, 0)
    assert parse_time_of_day("123") == TimeOfDay(0, 0, 0, 123)


def test_parse_keeps_milliseconds():
    assert parse_time_of_day("23.59.59.999") == TimeOfDay(23, 59, 59, 999)
    assert parse_time_of_day("235959999") == TimeOfDay(23, 59, 59, 999)


@pytest.mark.parametrize(
    "spec",
    [
        "25.00.00.000",
        "250000000",
        "09.60.00.000",
        "09.15.60.000",
        "0915000001",
        "09.15.00",
        "09:15:00.000",
        "09.15.00.1000",
        "",
        "abc",
        None,
        True,
    ],
)
def test_parse_rejects_malformed_time(spec):
    with pytest.raises(InvalidTimeFormat):
        parse_time_of_day(spec)


def test_resolve_binds_to_reference_day(tz):
    instant = resolve(TimeOfDay(10, 0, 5, 250), date(2026, 10, 18), tz)
    assert instant == datetime(2026, 10, 18, 10, 0, 5, 250000, tzinfo=tz)
    assert instant.utcoffset() is not None


def test_window_is_inclusive_start_exclusive_stop(tz):
    start = datetime(2026, 10, 18, 10, 0, 0, tzinfo=tz)
    stop = datetime(2026, 10, 18, 10, 0, 5, tzinfo=tz)
    assert window_state(datetime(2026, 10, 18, 9, 59, 59, 999000, tzinfo=tz), start, stop) is WindowState.NOT_OPEN
    assert window_state(start, start, stop) is WindowState.OPEN
    assert window_state(datetime(2026, 10, 18, 10, 0, 4, 999000, tzinfo=tz), start, stop) is WindowState.OPEN
    assert window_state(stop, start, stop) is WindowState.CLOSED
