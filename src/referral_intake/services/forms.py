"""
Parsing of submitted Slack modals.

Slack delivers modal input as view.state.values:
{block_id: {action_id: {"type": ..., "value" | "selected_option" | "selected_date": ...}}}
Anything missing or malformed raises FormValidationError bound to the block
the user has to fix.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from referral_intake.errors import FormValidationError
from referral_intake.models import ServiceType, is_referral_id, parse_slot_value
from referral_intake.services.messages import (
    APPOINTMENT_SLOT_BLOCK,
    CLIENT_EMAIL_BLOCK,
    CLIENT_NAME_BLOCK,
    CLIENT_PHONE_BLOCK,
    COMPLETION_NOTES_BLOCK,
    NOTES_BLOCK,
    REFERRAL_ID_BLOCK,
    SERVICE_DATE_BLOCK,
    SERVICE_TYPE_BLOCK,
)

EMAIL_PATTERN = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


@dataclass
class ReferralSubmission:
    """Validated contents of the referral modal."""

    client_name: str
    client_email: str
    client_phone: str
    service_type: ServiceType
    notes: str
    appointment_start: Optional[datetime] = None


@dataclass
class CompletionSubmission:
    """Validated contents of the completion modal."""

    referral_id: str
    referral_id_block: str  # where to attach errors about the referral
    completion_notes: str
    service_date: Optional[date] = None


def _element(values: dict, block_id: str, action_id: str) -> dict:
    return (values.get(block_id) or {}).get(action_id) or {}


def _text(values: dict, block_id: str, action_id: str) -> str:
    return (_element(values, block_id, action_id).get("value") or "").strip()


def _required_text(values: dict, block_id: str, action_id: str, message: str) -> str:
    value = _text(values, block_id, action_id)
    if not value:
        raise FormValidationError(block_id, message)
    return value


def _selected_value(values: dict, block_id: str, action_id: str) -> Optional[str]:
    option = _element(values, block_id, action_id).get("selected_option") or {}
    return option.get("value")


def parse_referral_submission(values: dict[str, Any]) -> ReferralSubmission:
    """Validate a referral_form_submit view's state values."""
    client_name = _required_text(
        values, CLIENT_NAME_BLOCK, "client_name", "Client name is required"
    )
    client_email = _required_text(
        values, CLIENT_EMAIL_BLOCK, "client_email", "Client email is required"
    )
    if not EMAIL_PATTERN.fullmatch(client_email):
        raise FormValidationError(CLIENT_EMAIL_BLOCK, "Enter a valid email address")
    client_phone = _required_text(
        values, CLIENT_PHONE_BLOCK, "client_phone", "Client phone is required"
    )

    service_value = _selected_value(values, SERVICE_TYPE_BLOCK, "service_type")
    if not service_value:
        raise FormValidationError(SERVICE_TYPE_BLOCK, "Select a service type")
    try:
        service_type = ServiceType(service_value)
    except ValueError:
        raise FormValidationError(SERVICE_TYPE_BLOCK, "Select one of the listed service types")

    appointment_start = None
    slot_value = _selected_value(values, APPOINTMENT_SLOT_BLOCK, "appointment_slot")
    if slot_value:
        try:
            slot_date, slot_time = parse_slot_value(slot_value)
        except ValueError:
            raise FormValidationError(
                APPOINTMENT_SLOT_BLOCK, "Select one of the listed appointment times"
            )
        appointment_start = datetime.combine(slot_date, slot_time)

    return ReferralSubmission(
        client_name=client_name,
        client_email=client_email,
        client_phone=client_phone,
        service_type=service_type,
        notes=_text(values, NOTES_BLOCK, "notes"),
        appointment_start=appointment_start,
    )


def parse_completion_submission(view: dict[str, Any]) -> CompletionSubmission:
    """Validate a completion_form_submit view."""
    values = (view.get("state") or {}).get("values") or {}

    try:
        metadata = json.loads(view.get("private_metadata") or "{}")
    except json.JSONDecodeError:
        metadata = {}

    referral_id = metadata.get("referral_id") if isinstance(metadata, dict) else None
    if referral_id:
        # Bound to a referral by the button; there is no ID field to flag
        referral_id_block = COMPLETION_NOTES_BLOCK
    else:
        referral_id_block = REFERRAL_ID_BLOCK
        referral_id = _text(values, REFERRAL_ID_BLOCK, "referral_id").upper()

    if not is_referral_id(referral_id):
        raise FormValidationError(
            referral_id_block, "Enter a referral ID like REF-ABCD1234"
        )

    completion_notes = _required_text(
        values,
        COMPLETION_NOTES_BLOCK,
        "completion_notes",
        "Describe the services completed",
    )

    service_date = None
    selected_date = _element(values, SERVICE_DATE_BLOCK, "service_date").get("selected_date")
    if selected_date:
        try:
            service_date = date.fromisoformat(selected_date)
        except ValueError:
            raise FormValidationError(SERVICE_DATE_BLOCK, "Select a valid date")

    return CompletionSubmission(
        referral_id=referral_id,
        referral_id_block=referral_id_block,
        completion_notes=completion_notes,
        service_date=service_date,
    )
