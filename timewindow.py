"""
Half-open time interval helpers.

Every comparison happens on UTC instants so that DST changes in the display
zone never shift a decision. Local wall-clock values only appear at the
edges: parsing client input and rendering human-readable ranges.
"""

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple, Union

import pytz

from errors import ValidationError


def as_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """True iff [a_start, a_end) and [b_start, b_end) share at least one instant."""
    return as_utc(a_start) < as_utc(b_end) and as_utc(a_end) > as_utc(b_start)


def gap_minutes(earlier_end: datetime, later_start: datetime) -> int:
    # Rounded half-up, so 29.5 minutes reads as 30
    seconds = (as_utc(later_start) - as_utc(earlier_end)).total_seconds()
    return int(math.floor(seconds / 60 + 0.5))


def padded_window(start: datetime, end: datetime, padding: timedelta) -> Tuple[datetime, datetime]:
    return as_utc(start) - padding, as_utc(end) + padding


def get_timezone(name: str):
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f"Unknown timezone: {name}")


def format_range(start_utc: datetime, end_utc: datetime, tz_name: str) -> str:
    """Render "HH:MM–HH:MM" (24-hour clock) in the named zone."""
    tz = get_timezone(tz_name)
    start_local = as_utc(start_utc).astimezone(tz)
    end_local = as_utc(end_utc).astimezone(tz)
    return f"{start_local:%H:%M}–{end_local:%H:%M}"


def parse_hhmm(value: str) -> time:
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except ValueError:
        raise ValidationError(f"Invalid time of day: {value}")


def local_datetime(day: date, hhmm: str, tz_name: str) -> datetime:
    """UTC instant of the wall-clock time ``hhmm`` on ``day`` in the named zone."""
    tz = get_timezone(tz_name)
    local = tz.localize(datetime.combine(day, parse_hhmm(hhmm)))
    return local.astimezone(timezone.utc)


def parse_start(value: Union[str, datetime], tz_name: str) -> datetime:
    """
    Turn a client-supplied start time into a UTC instant.

    Strings are ISO 8601 ("2025-03-14T10:00", optionally with an offset or
    a trailing "Z"). Values without an offset are wall-clock times in
    ``tz_name``.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = (value or "").strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError("Invalid start time.")

    if parsed.tzinfo is None:
        parsed = get_timezone(tz_name).localize(parsed)
    return parsed.astimezone(timezone.utc)
