from __future__ import annotations

import re
from datetime import date, datetime, time as dt_time
from enum import Enum
from zoneinfo import ZoneInfo

from orderwindow.domain.errors import InvalidTimeFormat
from orderwindow.domain.models import TimeOfDay

_RE_DOTTED = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{1,2})\.(\d{1,3})$")
_RE_NUMERIC = re.compile(r"^\d{1,9}$")


class WindowState(str, Enum):
    NOT_OPEN = "not_open"
    OPEN = "open"
    CLOSED = "closed"


def parse_time_of_day(spec: str | int) -> TimeOfDay:
    """
    Parse a start/stop specification.

    Accepts a dotted `HH.MM.SS.mmm` string or a fixed-width `HHMMSSmmm` number
    (left-padded to 9 digits, so `91500000` is 09:15:00.000).
    """
    if isinstance(spec, bool) or spec is None:
        raise InvalidTimeFormat(f"Invalid time specification: {spec!r}")
    text = str(spec).strip()

    m = _RE_DOTTED.match(text)
    if m:
        h, mi, s, ms = (int(g) for g in m.groups())
    elif _RE_NUMERIC.match(text):
        digits = text.zfill(9)
        h, mi, s, ms = int(digits[0:2]), int(digits[2:4]), int(digits[4:6]), int(digits[6:9])
    else:
        raise InvalidTimeFormat(f"Invalid time specification: {text!r} (expected HH.MM.SS.mmm or HHMMSSmmm)")

    if not (0 <= h <= 23):
        raise InvalidTimeFormat(f"Hour out of range in {text!r}: {h}")
    if not (0 <= mi <= 59):
        raise InvalidTimeFormat(f"Minute out of range in {text!r}: {mi}")
    if not (0 <= s <= 59):
        raise InvalidTimeFormat(f"Second out of range in {text!r}: {s}")
    if not (0 <= ms <= 999):
        raise InvalidTimeFormat(f"Millisecond out of range in {text!r}: {ms}")
    return TimeOfDay(hours=h, minutes=mi, seconds=s, milliseconds=ms)


def resolve(tod: TimeOfDay, reference_date: date, tz: ZoneInfo) -> datetime:
    """Bind a time-of-day to a calendar day in the trading timezone."""
    t = dt_time(tod.hours, tod.minutes, tod.seconds, tod.milliseconds * 1000)
    return datetime.combine(reference_date, t, tzinfo=tz)


def window_state(now: datetime, start: datetime, stop: datetime) -> WindowState:
    """Inclusive at start, exclusive at stop."""
    if now < start:
        return WindowState.NOT_OPEN
    if now < stop:
        return WindowState.OPEN
    return WindowState.CLOSED
