"""
Calendar availability calculation.

Turns busy blocks from the practice calendar into bookable one-hour slots.
Every comparison happens in the practice timezone; busy intervals arrive in
UTC from Graph and are converted before they are compared.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone as dt_timezone, tzinfo
from typing import Iterable, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from referral_intake.models import AvailabilitySlot, BusyInterval

logger = logging.getLogger(__name__)

WEEKEND = (5, 6)  # Saturday, Sunday


def get_zone(name: Union[str, tzinfo]) -> tzinfo:
    """Resolve a timezone name, passing tzinfo objects through."""
    if isinstance(name, tzinfo):
        return name
    if name.upper() == "UTC":
        return dt_timezone.utc
    return ZoneInfo(name)


def compute_availability(
    busy_intervals: Iterable[BusyInterval],
    start_date: date,
    window_days: int,
    working_hours: list[tuple[time, time]],
    timezone: Union[str, tzinfo],
    now: Optional[datetime] = None,
) -> list[AvailabilitySlot]:
    """
    Compute free working-hour slots.

    Args:
        busy_intervals: Busy blocks; naive datetimes are taken as UTC
        start_date: First day of the window (practice-local date)
        window_days: Number of calendar days to scan
        working_hours: One-hour (start, end) blocks per working day
        timezone: Practice timezone name or tzinfo
        now: Current time (defaults to the real clock)

    Returns:
        Free slots ordered by date then start time; empty if none are free
    """
    zone = get_zone(timezone)
    current = _to_zone(now or datetime.now(dt_timezone.utc), zone)
    today = current.date()
    busy = [(_to_zone(b.start, zone), _to_zone(b.end, zone)) for b in busy_intervals]

    slots: list[AvailabilitySlot] = []
    for offset in range(window_days):
        day = start_date + timedelta(days=offset)
        if day.weekday() in WEEKEND:
            continue

        for block_start_time, block_end_time in sorted(working_hours):
            block_start = datetime.combine(day, block_start_time, tzinfo=zone)
            block_end = datetime.combine(day, block_end_time, tzinfo=zone)

            if day == today and block_start <= current:
                continue

            if any(b_start < block_end and b_end > block_start for b_start, b_end in busy):
                continue

            slots.append(
                AvailabilitySlot(
                    date=day,
                    start_time=block_start_time,
                    end_time=block_end_time,
                    display_label=_display_label(day, block_start_time, block_end_time),
                )
            )

    return slots


def window_bounds(
    start_date: date, window_days: int, timezone: Union[str, tzinfo]
) -> tuple[datetime, datetime]:
    """Aware start/end datetimes covering the whole availability window."""
    zone = get_zone(timezone)
    start = datetime.combine(start_date, time.min, tzinfo=zone)
    end = datetime.combine(start_date + timedelta(days=window_days), time.min, tzinfo=zone)
    return start, end


def busy_intervals_from_events(events: Iterable[dict]) -> list[BusyInterval]:
    """Convert Graph calendarView events into busy intervals."""
    intervals = []
    for event in events:
        if event.get("isCancelled") or event.get("showAs") == "free":
            continue
        try:
            start = _parse_graph_datetime(event["start"])
            end = _parse_graph_datetime(event["end"])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping calendar event with unreadable times: {e}")
            continue
        intervals.append(BusyInterval(start=start, end=end))
    return intervals


def _parse_graph_datetime(value: dict) -> datetime:
    """Parse a Graph dateTimeTimeZone, e.g. {"dateTime": "2024-06-10T17:00:00.0000000", "timeZone": "UTC"}."""
    text = value["dateTime"].split(".")[0]
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        return parsed

    zone_name = value.get("timeZone") or "UTC"
    try:
        zone = get_zone(zone_name)
    except ZoneInfoNotFoundError:
        logger.warning(f"Unknown calendar timezone {zone_name!r}, assuming UTC")
        zone = dt_timezone.utc
    return parsed.replace(tzinfo=zone)


def _to_zone(value: datetime, zone: tzinfo) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt_timezone.utc)
    return value.astimezone(zone)


def _display_label(day: date, start: time, end: time) -> str:
    return f"{day:%a}, {day:%b} {day.day} {start:%H:%M} - {end:%H:%M}"
