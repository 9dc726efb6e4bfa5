"""
Schedule resolution: which weekly window, if any, applies at a moment.

Windows are local wall-clock ``{day, start, end}`` triples that never span
midnight. Overlapping windows are allowed; lookups always take the first
match in declaration order.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from biotrack.core.exceptions import InvalidTimeFormat
from biotrack.utils.time_format import (
    format_minutes,
    minutes_of,
    normalize_day,
    to_12_hour,
    to_minutes,
    weekday_name,
)

DEFAULT_GRACE_MINUTES = 20


class WindowState(str, Enum):
    BEFORE_START = "beforeStart"
    IN_WINDOW = "inWindow"
    AFTER_END_GRACE = "afterEndGrace"
    AFTER_GRACE = "afterGrace"


@dataclass(frozen=True)
class Window:
    day: str
    start: str  # 24-hour H:MM
    end: str

    @classmethod
    def parse(cls, day: str, start: str, end: str) -> "Window":
        """Build a window from user input in either 12- or 24-hour form"""
        start_minutes = to_minutes(start)
        end_minutes = to_minutes(end)
        if start_minutes >= end_minutes:
            raise InvalidTimeFormat(
                f"Window start {start} must be before end {end}",
                start=start,
                end=end
            )
        return cls(normalize_day(day), format_minutes(start_minutes), format_minutes(end_minutes))

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day": self.day,
            "start": self.start,
            "end": self.end,
            "start_12h": to_12_hour(self.start),
            "end_12h": to_12_hour(self.end),
        }


@dataclass(frozen=True)
class ScheduleMatch:
    matched: bool
    window: Optional[Window] = None


def windows_from_class(school_class) -> List[Window]:
    """Windows of a stored class, in declaration order"""
    return [Window(row.day, row.start_time, row.end_time) for row in school_class.schedule]


def windows_for_day(schedule: Iterable[Window], moment: datetime) -> List[Window]:
    day = weekday_name(moment)
    return [window for window in schedule if window.day == day]


def is_within(schedule: Iterable[Window], moment: datetime) -> ScheduleMatch:
    """First window of the moment's weekday with start <= time <= end"""
    current = minutes_of(moment)
    for window in windows_for_day(schedule, moment):
        if window.start_minutes <= current <= window.end_minutes:
            return ScheduleMatch(matched=True, window=window)
    return ScheduleMatch(matched=False)


def window_state(window: Window, moment: datetime, grace_minutes: int = DEFAULT_GRACE_MINUTES) -> WindowState:
    """
    Position of the moment's time of day relative to the window. Time-out
    is only valid in AFTER_END_GRACE, i.e. (end, end + grace].
    """
    current = minutes_of(moment)
    if current < window.start_minutes:
        return WindowState.BEFORE_START
    if current <= window.end_minutes:
        return WindowState.IN_WINDOW
    if current <= window.end_minutes + grace_minutes:
        return WindowState.AFTER_END_GRACE
    return WindowState.AFTER_GRACE


def timeout_window(schedule: List[Window], time_in: Optional[datetime], now: datetime) -> Optional[Window]:
    """
    Window a time-out is judged against: the one the session was timed in
    under, else the first window of today.
    """
    if time_in is not None and weekday_name(time_in) == weekday_name(now):
        opened = is_within(schedule, time_in)
        if opened.matched:
            return opened.window

    todays = windows_for_day(schedule, now)
    return todays[0] if todays else None
