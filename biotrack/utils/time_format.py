"""
Wall-clock helpers.

Schedules are stored as 24-hour ``H:MM`` strings while several callers speak
12-hour ``h:mm AM|PM``. Everything is compared as minutes since midnight;
raw strings are never compared.
"""
import re
from datetime import date, datetime
from typing import Union

from biotrack.core.exceptions import InvalidTimeFormat

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

_TIME_24H = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")
_TIME_12H = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])\s*$")


def _parse_24h(time24: str):
    match = _TIME_24H.match(time24 or "")
    if not match:
        raise InvalidTimeFormat(f"Expected H:MM, got '{time24}'", value=time24)
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidTimeFormat(f"Time out of range: '{time24}'", value=time24)
    return hours, minutes


def to_12_hour(time24: str) -> str:
    """Convert ``13:05`` to ``1:05 PM``; midnight is ``12:00 AM``, noon ``12:00 PM``"""
    hours, minutes = _parse_24h(time24)
    suffix = "PM" if hours >= 12 else "AM"
    hour12 = hours % 12 or 12
    return f"{hour12}:{minutes:02d} {suffix}"


def to_minutes(time_str: str) -> int:
    """
    Minutes since midnight for either a 12-hour (``1:05 PM``) or a 24-hour
    (``13:05``) time string.
    """
    match = _TIME_12H.match(time_str or "")
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        period = match.group(3).upper()
        if not 1 <= hours <= 12 or minutes > 59:
            raise InvalidTimeFormat(f"Time out of range: '{time_str}'", value=time_str)
        if period == "PM" and hours != 12:
            hours += 12
        elif period == "AM" and hours == 12:
            hours = 0
        return hours * 60 + minutes

    hours, minutes = _parse_24h(time_str)
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    """Render minutes since midnight back to the stored ``H:MM`` form"""
    return f"{minutes // 60}:{minutes % 60:02d}"


def normalize_time(time_str: str) -> str:
    return format_minutes(to_minutes(time_str))


def minutes_of(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def weekday_name(day: Union[date, datetime]) -> str:
    return WEEKDAYS[day.weekday()]


def normalize_day(day: str) -> str:
    """Title-case a weekday name, rejecting anything that is not one"""
    candidate = (day or "").strip().title()
    if candidate not in WEEKDAYS:
        raise InvalidTimeFormat(f"Unknown weekday '{day}'", value=day)
    return candidate


def session_date(moment: datetime) -> str:
    """Calendar-day key segment, ``YYYY-MM-DD`` in local wall-clock time"""
    return moment.date().isoformat()
