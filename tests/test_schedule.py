from datetime import datetime

import pytest

from biotrack.core.exceptions import InvalidTimeFormat
from biotrack.services.schedule import (
    Window,
    WindowState,
    is_within,
    timeout_window,
    window_state,
    windows_for_day,
)

MONDAY = datetime(2024, 1, 1)


def at(hour, minute, day=MONDAY):
    return day.replace(hour=hour, minute=minute)


def test_parse_normalizes_either_form():
    window = Window.parse("monday", "1:30 PM", "15:00")
    assert window == Window("Monday", "13:30", "15:00")
    assert window.to_dict()["start_12h"] == "1:30 PM"
    assert window.to_dict()["end_12h"] == "3:00 PM"


@pytest.mark.parametrize("start, end", [("10:00", "9:00"), ("9:00", "9:00")])
def test_parse_requires_start_before_end(start, end):
    with pytest.raises(InvalidTimeFormat):
        Window.parse("Monday", start, end)


def test_is_within_is_inclusive_at_both_ends():
    schedule = [Window("Monday", "9:00", "10:00")]
    assert not is_within(schedule, at(8, 59)).matched
    assert is_within(schedule, at(9, 0)).matched
    assert is_within(schedule, at(10, 0)).matched
    assert not is_within(schedule, at(10, 1)).matched


def test_is_within_checks_the_weekday():
    schedule = [Window("Tuesday", "9:00", "10:00")]
    assert not is_within(schedule, at(9, 30)).matched


def test_overlapping_windows_resolve_to_first_declared():
    first = Window("Monday", "9:00", "11:00")
    second = Window("Monday", "10:00", "12:00")
    assert is_within([first, second], at(10, 30)).window == first
    assert is_within([second, first], at(10, 30)).window == second


def test_windows_compare_by_minutes_not_strings():
    # "9:00" > "10:00" as strings
    schedule = [Window("Monday", "9:00", "10:30")]
    assert is_within(schedule, at(10, 15)).matched


@pytest.mark.parametrize("hour, minute, expected", [
    (8, 59, WindowState.BEFORE_START),
    (9, 0, WindowState.IN_WINDOW),
    (10, 0, WindowState.IN_WINDOW),
    (10, 1, WindowState.AFTER_END_GRACE),
    (10, 20, WindowState.AFTER_END_GRACE),
    (10, 21, WindowState.AFTER_GRACE),
])
def test_window_state(hour, minute, expected):
    window = Window("Monday", "9:00", "10:00")
    assert window_state(window, at(hour, minute), grace_minutes=20) == expected


def test_timeout_window_prefers_the_window_timed_in_under():
    morning = Window("Monday", "9:00", "10:00")
    afternoon = Window("Monday", "13:00", "14:00")
    schedule = [morning, afternoon]

    assert timeout_window(schedule, at(13, 10), at(14, 5)) == afternoon
    assert timeout_window(schedule, None, at(14, 5)) == morning
    assert timeout_window([Window("Tuesday", "9:00", "10:00")], at(9, 30), at(10, 5)) is None


def test_windows_for_day():
    schedule = [Window("Monday", "9:00", "10:00"), Window("Wednesday", "9:00", "10:00")]
    assert windows_for_day(schedule, at(12, 0)) == [schedule[0]]
