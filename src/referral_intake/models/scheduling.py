"""
Transient scheduling types. None of these are persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

SLOT_SEPARATOR = "|"


@dataclass(frozen=True)
class BusyInterval:
    """A timezone-aware busy block taken from the practice calendar."""

    start: datetime
    end: datetime


@dataclass(frozen=True)
class AvailabilitySlot:
    """A free one-hour block on a working day."""

    date: date
    start_time: time
    end_time: time
    display_label: str

    @property
    def value(self) -> str:
        """Dropdown option value, e.g. 2024-06-10|10:00."""
        return f"{self.date.isoformat()}{SLOT_SEPARATOR}{self.start_time:%H:%M}"


def parse_slot_value(value: str) -> tuple[date, time]:
    """Parse a dropdown value of the form YYYY-MM-DD|HH:MM."""
    try:
        date_text, time_text = value.split(SLOT_SEPARATOR)
        return date.fromisoformat(date_text), time.fromisoformat(time_text)
    except (AttributeError, ValueError):
        raise ValueError(f"Malformed slot value: {value!r}")


@dataclass
class CalendarEventData:
    """Appointment to book on the practice calendar (naive practice-local times)."""

    subject: str
    start: datetime
    end: datetime
    attendee_email: str
    body_html: str
    location: Optional[str] = None
