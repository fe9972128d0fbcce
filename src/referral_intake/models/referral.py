"""
Referral record model.

A referral is created once from the intake form and afterwards only its
lifecycle fields change. The same record is serialized two ways: as a
12-column spreadsheet row and as a Slack message metadata payload.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, fields, replace
from datetime import date, datetime, timedelta
from typing import Any, Optional

from referral_intake.models.enums import InvoiceStatus, ReferralStatus, ServiceType

REFERRAL_ID_PATTERN = re.compile(r"\bREF-[A-Z0-9]{8}\b")

# Fixed spreadsheet column order (A..L)
COLUMNS = [
    "id",
    "client_name",
    "client_email",
    "client_phone",
    "service_type",
    "notes",
    "broker_name",
    "referral_date",
    "appointment_datetime",
    "status",
    "completed_date",
    "invoice_status",
]

MUTABLE_FIELDS = {"status", "invoice_status", "completed_date", "appointment_datetime"}

ALLOWED_TRANSITIONS: dict[ReferralStatus, set[ReferralStatus]] = {
    ReferralStatus.PENDING: {ReferralStatus.SCHEDULED, ReferralStatus.COMPLETED},
    ReferralStatus.SCHEDULED: {ReferralStatus.COMPLETED},
    ReferralStatus.COMPLETED: {ReferralStatus.INVOICED, ReferralStatus.PAID},
    ReferralStatus.INVOICED: {ReferralStatus.PAID},
    ReferralStatus.PAID: set(),
}

# Day zero of Excel's 1900 date system (accounts for the 1900 leap-year bug)
EXCEL_EPOCH = datetime(1899, 12, 30)
APPOINTMENT_FORMAT = "%Y-%m-%dT%H:%M:%S"


def new_referral_id() -> str:
    """Generate an ID of the form REF-XXXXXXXX."""
    return f"REF-{uuid.uuid4().hex[:8].upper()}"


def is_referral_id(value: Optional[str]) -> bool:
    return bool(value) and REFERRAL_ID_PATTERN.fullmatch(value) is not None


def can_transition(current: ReferralStatus, target: ReferralStatus) -> bool:
    """Check whether the lifecycle allows moving from current to target."""
    return target in ALLOWED_TRANSITIONS[current]


def column_letter(field_name: str) -> str:
    """Spreadsheet column letter for a record field."""
    return chr(ord("A") + COLUMNS.index(field_name))


@dataclass(frozen=True)
class ReferralRecord:
    """A client referral tracked from intake to invoice payment."""

    id: str
    client_name: str
    client_email: str
    client_phone: str
    service_type: ServiceType
    notes: str
    broker_name: str
    referral_date: date
    appointment_datetime: Optional[datetime] = None
    status: ReferralStatus = ReferralStatus.PENDING
    completed_date: Optional[date] = None
    invoice_status: InvoiceStatus = InvoiceStatus.PENDING

    def validate(self) -> None:
        """Raise ValueError if status fields are inconsistent."""
        if self.status == ReferralStatus.PAID and self.invoice_status != InvoiceStatus.PAID:
            raise ValueError(f"{self.id}: paid referral must have a paid invoice")
        if (
            self.status
            in (ReferralStatus.COMPLETED, ReferralStatus.INVOICED, ReferralStatus.PAID)
            and self.completed_date is None
        ):
            raise ValueError(f"{self.id}: {self.status.value} referral needs a completed date")
        if self.status == ReferralStatus.SCHEDULED and self.appointment_datetime is None:
            raise ValueError(f"{self.id}: scheduled referral needs an appointment")

    def with_changes(self, **changes: Any) -> "ReferralRecord":
        """Return a validated copy with lifecycle fields changed."""
        immutable = set(changes) - MUTABLE_FIELDS
        if immutable:
            raise ValueError(f"Fields cannot be changed after creation: {sorted(immutable)}")
        updated = replace(self, **changes)
        updated.validate()
        return updated

    def changed_fields(self, other: "ReferralRecord") -> dict[str, Any]:
        """Fields whose values differ in other."""
        return {
            f.name: getattr(other, f.name)
            for f in fields(self)
            if getattr(self, f.name) != getattr(other, f.name)
        }

    # =========================================================================
    # SPREADSHEET ROWS
    # =========================================================================

    def to_row(self) -> list[str]:
        """Serialize to the fixed 12-column spreadsheet order."""
        return [_format_cell(name, getattr(self, name)) for name in COLUMNS]

    @classmethod
    def from_row(cls, values: list[Any]) -> "ReferralRecord":
        """Create from a spreadsheet row (Excel may hand back date serials)."""
        cells = list(values) + [None] * (len(COLUMNS) - len(values))
        row = dict(zip(COLUMNS, cells))
        return cls(
            id=_cell_text(row["id"]),
            client_name=_cell_text(row["client_name"]),
            client_email=_cell_text(row["client_email"]),
            client_phone=_cell_text(row["client_phone"]),
            service_type=ServiceType(_cell_text(row["service_type"]).lower().replace(" ", "_")),
            notes=_cell_text(row["notes"]),
            broker_name=_cell_text(row["broker_name"]),
            referral_date=_parse_date_cell(row["referral_date"]),
            appointment_datetime=_parse_datetime_cell(row["appointment_datetime"]),
            status=ReferralStatus(_cell_text(row["status"]).lower() or "pending"),
            completed_date=_parse_date_cell(row["completed_date"]),
            invoice_status=InvoiceStatus(_cell_text(row["invoice_status"]).lower() or "pending"),
        )

    # =========================================================================
    # MESSAGE METADATA
    # =========================================================================

    def to_payload(self) -> dict[str, str]:
        """Serialize for a Slack message metadata event payload."""
        payload = {"referral_id": self.id}
        for name in COLUMNS[1:]:
            payload[name] = _format_cell(name, getattr(self, name))
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ReferralRecord":
        """Create from a metadata payload. Raises KeyError if fields are missing."""
        values = [payload["referral_id"]] + [payload[name] for name in COLUMNS[1:]]
        return cls.from_row(values)


def _format_cell(name: str, value: Any) -> str:
    if value is None:
        return ""
    if name == "appointment_datetime":
        return value.strftime(APPOINTMENT_FORMAT)
    if isinstance(value, date):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return str(value)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _parse_date_cell(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (EXCEL_EPOCH + timedelta(days=value)).date()
    return date.fromisoformat(str(value).strip()[:10])


def _parse_datetime_cell(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = EXCEL_EPOCH + timedelta(days=value)
        return parsed.replace(microsecond=0) + timedelta(seconds=round(parsed.microsecond / 1e6))
    return datetime.fromisoformat(str(value).strip()).replace(tzinfo=None)
