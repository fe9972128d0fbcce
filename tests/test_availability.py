"""Tests for working-hour slot availability."""

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

import pytest

from referral_intake.config import DEFAULT_WORKING_HOURS, Settings
from referral_intake.models import BusyInterval, parse_slot_value
from referral_intake.services.availability import (
    busy_intervals_from_events,
    compute_availability,
    window_bounds,
)

LA = ZoneInfo("America/Los_Angeles")
MONDAY = date(2024, 6, 10)


@pytest.fixture
def blocks() -> list[tuple[time, time]]:
    return Settings(_env_file=None).parsed_working_hours()


def _busy_local(day: date, start: str, end: str) -> BusyInterval:
    return BusyInterval(
        start=datetime.combine(day, time.fromisoformat(start), tzinfo=LA),
        end=datetime.combine(day, time.fromisoformat(end), tzinfo=LA),
    )


def test_default_schedule_has_five_blocks_with_midday_gap(blocks):
    assert len(blocks) == len(DEFAULT_WORKING_HOURS) == 5
    assert all(not (start < time(14) and end > time(12)) for start, end in blocks)


def test_empty_calendar_gives_weekdays_times_blocks(blocks):
    # Sunday morning: the whole week ahead is open, 5 weekdays in a 7-day window
    now = datetime(2024, 6, 9, 8, 0, tzinfo=LA)
    slots = compute_availability([], date(2024, 6, 9), 7, blocks, "America/Los_Angeles", now=now)
    assert len(slots) == 5 * 5


def test_elapsed_blocks_today_are_excluded(blocks):
    now = datetime(2024, 6, 10, 10, 30, tzinfo=LA)
    slots = compute_availability([], MONDAY, 1, blocks, LA, now=now)
    assert [s.start_time for s in slots] == [time(11), time(14), time(15)]


def test_block_starting_exactly_now_is_excluded(blocks):
    now = datetime(2024, 6, 10, 9, 0, tzinfo=LA)
    slots = compute_availability([], MONDAY, 1, blocks, LA, now=now)
    assert time(9) not in [s.start_time for s in slots]


def test_weekend_days_never_offered(blocks):
    now = datetime(2024, 6, 7, 7, 0, tzinfo=LA)
    slots = compute_availability([], date(2024, 6, 7), 14, blocks, LA, now=now)
    assert slots
    assert all(s.date.weekday() < 5 for s in slots)


def test_overlapping_busy_interval_removes_block(blocks):
    now = datetime(2024, 6, 10, 7, 0, tzinfo=LA)
    busy = [_busy_local(MONDAY, "10:30", "10:45")]
    slots = compute_availability(busy, MONDAY, 1, blocks, LA, now=now)
    assert time(10) not in [s.start_time for s in slots]
    assert len(slots) == 4


def test_touching_busy_interval_does_not_remove_block(blocks):
    now = datetime(2024, 6, 10, 7, 0, tzinfo=LA)
    busy = [_busy_local(MONDAY, "10:00", "11:00")]
    slots = compute_availability(busy, MONDAY, 1, blocks, LA, now=now)
    starts = [s.start_time for s in slots]
    assert time(10) not in starts
    assert time(9) in starts and time(11) in starts


def test_utc_busy_interval_is_compared_in_practice_timezone(blocks):
    # 17:00-18:00 UTC is 10:00-11:00 in Los Angeles during daylight time
    busy = [
        BusyInterval(
            start=datetime(2024, 6, 10, 17, 0, tzinfo=timezone.utc),
            end=datetime(2024, 6, 10, 18, 0, tzinfo=timezone.utc),
        )
    ]
    now = datetime(2024, 6, 10, 7, 0, tzinfo=LA)
    slots = compute_availability(busy, MONDAY, 1, blocks, LA, now=now)
    assert [s.start_time for s in slots] == [time(9), time(11), time(14), time(15)]


def test_naive_busy_interval_is_taken_as_utc(blocks):
    busy = [BusyInterval(start=datetime(2024, 6, 10, 17, 0), end=datetime(2024, 6, 10, 18, 0))]
    now = datetime(2024, 6, 10, 7, 0, tzinfo=LA)
    slots = compute_availability(busy, MONDAY, 1, blocks, LA, now=now)
    assert time(10) not in [s.start_time for s in slots]


def test_no_slot_overlaps_any_busy_interval(blocks):
    busy = [
        _busy_local(MONDAY, "08:30", "09:15"),
        _busy_local(date(2024, 6, 11), "14:59", "16:00"),
        _busy_local(date(2024, 6, 12), "00:00", "23:59"),
    ]
    now = datetime(2024, 6, 10, 7, 0, tzinfo=LA)
    slots = compute_availability(busy, MONDAY, 7, blocks, LA, now=now)
    for slot in slots:
        start = datetime.combine(slot.date, slot.start_time, tzinfo=LA)
        end = datetime.combine(slot.date, slot.end_time, tzinfo=LA)
        assert not any(b.start < end and b.end > start for b in busy)
    assert not any(s.date == date(2024, 6, 12) for s in slots)


def test_fully_booked_window_returns_empty_list(blocks):
    busy = [
        BusyInterval(
            start=datetime(2024, 6, 10, 0, 0, tzinfo=LA),
            end=datetime(2024, 6, 17, 0, 0, tzinfo=LA),
        )
    ]
    now = datetime(2024, 6, 10, 7, 0, tzinfo=LA)
    assert compute_availability(busy, MONDAY, 7, blocks, LA, now=now) == []


def test_slots_are_chronological_and_round_trip(blocks):
    now = datetime(2024, 6, 10, 7, 0, tzinfo=LA)
    slots = compute_availability([], MONDAY, 7, blocks, LA, now=now)
    keys = [(s.date, s.start_time) for s in slots]
    assert keys == sorted(keys)
    assert slots[1].value == "2024-06-10|10:00"
    assert slots[1].display_label == "Mon, Jun 10 10:00 - 11:00"
    assert parse_slot_value(slots[1].value) == (MONDAY, time(10))


def test_window_bounds_cover_whole_days():
    start, end = window_bounds(MONDAY, 7, "America/Los_Angeles")
    assert start == datetime(2024, 6, 10, 0, 0, tzinfo=LA)
    assert end == datetime(2024, 6, 17, 0, 0, tzinfo=LA)


def test_busy_intervals_from_graph_events():
    events = [
        {
            "start": {"dateTime": "2024-06-10T17:00:00.0000000", "timeZone": "UTC"},
            "end": {"dateTime": "2024-06-10T18:00:00.0000000", "timeZone": "UTC"},
            "showAs": "busy",
        },
        {
            "start": {"dateTime": "2024-06-10T19:00:00.0000000", "timeZone": "UTC"},
            "end": {"dateTime": "2024-06-10T20:00:00.0000000", "timeZone": "UTC"},
            "showAs": "free",
        },
        {
            "start": {"dateTime": "2024-06-10T21:00:00.0000000", "timeZone": "UTC"},
            "end": {"dateTime": "2024-06-10T22:00:00.0000000", "timeZone": "UTC"},
            "isCancelled": True,
        },
        {"start": {"dateTime": "garbage"}, "end": {}},
    ]
    intervals = busy_intervals_from_events(events)
    assert intervals == [
        BusyInterval(
            start=datetime(2024, 6, 10, 17, 0, tzinfo=timezone.utc),
            end=datetime(2024, 6, 10, 18, 0, tzinfo=timezone.utc),
        )
    ]


def test_parse_slot_value_rejects_garbage():
    with pytest.raises(ValueError):
        parse_slot_value("next tuesday")


def test_invalid_working_hours_rejected():
    with pytest.raises(ValueError):
        Settings(_env_file=None, working_hours=["10:00-09:00"]).parsed_working_hours()
