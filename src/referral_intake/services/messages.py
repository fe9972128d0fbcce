"""
Slack message and modal payloads.

Pure formatting: every function returns plain dicts ready for the Web API.
Block and action IDs defined here are read back by services.forms.
"""

from __future__ import annotations

import html
import json
from datetime import date
from typing import Optional

from referral_intake.models import AvailabilitySlot, ReferralRecord, ServiceType

# Interaction identifiers
OPEN_REFERRAL_ACTION = "open_referral_modal"
OPEN_COMPLETION_ACTION = "open_completion_modal"
REFERRAL_CALLBACK_ID = "referral_form_submit"
COMPLETION_CALLBACK_ID = "completion_form_submit"

# Message metadata event types
COMPLETION_EVENT_TYPE = "service_completion"
RECORD_EVENT_TYPE = "referral_record"

# Referral modal blocks
CLIENT_NAME_BLOCK = "client_name_block"
CLIENT_EMAIL_BLOCK = "client_email_block"
CLIENT_PHONE_BLOCK = "client_phone_block"
SERVICE_TYPE_BLOCK = "service_type_block"
APPOINTMENT_SLOT_BLOCK = "appointment_slot_block"
NOTES_BLOCK = "notes_block"

# Completion modal blocks
REFERRAL_ID_BLOCK = "referral_id_block"
COMPLETION_NOTES_BLOCK = "completion_notes_block"
SERVICE_DATE_BLOCK = "service_date_block"


def escape(text: str) -> str:
    """Escape user text for mrkdwn (&, < and > only)."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _plain(text: str) -> dict:
    return {"type": "plain_text", "text": text, "emoji": True}


def _mrkdwn(text: str) -> dict:
    return {"type": "mrkdwn", "text": text}


def _text_input(
    block_id: str,
    label: str,
    placeholder: str,
    multiline: bool = False,
    optional: bool = False,
) -> dict:
    element = {
        "type": "plain_text_input",
        "action_id": block_id.removesuffix("_block"),
        "placeholder": _plain(placeholder),
    }
    if multiline:
        element["multiline"] = True
    return {
        "type": "input",
        "block_id": block_id,
        "element": element,
        "label": _plain(label),
        "optional": optional,
    }


def _button(text: str, action_id: str, value: Optional[str] = None) -> dict:
    button = {
        "type": "button",
        "text": _plain(text),
        "style": "primary",
        "action_id": action_id,
    }
    if value:
        button["value"] = value
    return button


# =============================================================================
# START BUTTONS
# =============================================================================


def referral_button_message() -> dict:
    """The 'New Referral' button brokers click to start intake."""
    return {
        "text": "Click to create a new accountant referral",
        "blocks": [
            {
                "type": "section",
                "text": _mrkdwn(
                    "*Ready to submit a new accountant referral?*\n"
                    "Click the button below to fill out the referral form."
                ),
            },
            {
                "type": "actions",
                "elements": [_button("New Referral", OPEN_REFERRAL_ACTION)],
            },
        ],
    }


def completion_button_message(
    referral_id: Optional[str] = None,
    client_name: Optional[str] = None,
) -> dict:
    """The 'Complete Service' button, optionally bound to one referral."""
    if referral_id:
        client = escape(client_name) if client_name else "Unknown"
        intro = (
            f"*Ready to mark service complete?*\n*Client:* {client}\n"
            f"*Referral ID:* {referral_id}"
        )
        text = f"Service ready for completion: {client_name or referral_id}"
    else:
        intro = (
            "*Finished a referred service?*\n"
            "Click the button below and enter the referral ID to mark it complete."
        )
        text = "Click to mark a referred service complete"

    return {
        "text": text,
        "blocks": [
            {"type": "section", "text": _mrkdwn(intro)},
            {
                "type": "actions",
                "elements": [_button("Complete Service", OPEN_COMPLETION_ACTION, referral_id)],
            },
        ],
    }


# =============================================================================
# MODALS
# =============================================================================


def referral_modal(slots: list[AvailabilitySlot], max_options: int = 100) -> dict:
    """
    Build the referral intake modal.

    Args:
        slots: Free slots in display order; option values round-trip through the form
        max_options: Slack caps static_select at 100 options
    """
    blocks = [
        _text_input(CLIENT_NAME_BLOCK, "Client Name", "Enter client name"),
        _text_input(CLIENT_EMAIL_BLOCK, "Client Email", "client@example.com"),
        _text_input(CLIENT_PHONE_BLOCK, "Client Phone", "(555) 123-4567"),
        {
            "type": "input",
            "block_id": SERVICE_TYPE_BLOCK,
            "element": {
                "type": "static_select",
                "action_id": "service_type",
                "placeholder": _plain("Select service type"),
                "options": [
                    {"text": _plain(service.label), "value": service.value}
                    for service in ServiceType
                ],
            },
            "label": _plain("Service Type"),
        },
    ]

    if slots:
        blocks.append(
            {
                "type": "input",
                "block_id": APPOINTMENT_SLOT_BLOCK,
                "element": {
                    "type": "static_select",
                    "action_id": "appointment_slot",
                    "placeholder": _plain("Select an available time"),
                    "options": [
                        {"text": _plain(slot.display_label), "value": slot.value}
                        for slot in slots[:max_options]
                    ],
                },
                "label": _plain("Appointment"),
                "optional": True,
            }
        )
    else:
        blocks.append(
            {
                "type": "context",
                "elements": [
                    _mrkdwn("No appointment times are available right now; "
                            "the referral will be saved without a booking.")
                ],
            }
        )

    blocks.append(
        _text_input(
            NOTES_BLOCK,
            "Notes",
            "Any additional notes about this referral...",
            multiline=True,
            optional=True,
        )
    )

    return {
        "type": "modal",
        "callback_id": REFERRAL_CALLBACK_ID,
        "title": _plain("New Accountant Referral"),
        "submit": _plain("Submit Referral"),
        "close": _plain("Cancel"),
        "blocks": blocks,
    }


def completion_modal(referral_id: Optional[str], today: date) -> dict:
    """Build the service completion modal."""
    blocks: list[dict] = []
    if referral_id:
        blocks.append({"type": "section", "text": _mrkdwn(f"*Referral ID:* {referral_id}")})
    else:
        blocks.append(_text_input(REFERRAL_ID_BLOCK, "Referral ID", "REF-XXXXXXXX"))

    blocks.append(
        _text_input(
            COMPLETION_NOTES_BLOCK,
            "Completion Notes",
            "Describe the services completed...",
            multiline=True,
        )
    )
    blocks.append(
        {
            "type": "input",
            "block_id": SERVICE_DATE_BLOCK,
            "element": {
                "type": "datepicker",
                "action_id": "service_date",
                "initial_date": today.isoformat(),
            },
            "label": _plain("Service Completion Date"),
        }
    )

    return {
        "type": "modal",
        "callback_id": COMPLETION_CALLBACK_ID,
        "private_metadata": json.dumps({"referral_id": referral_id} if referral_id else {}),
        "title": _plain("Complete Service"),
        "submit": _plain("Mark Complete"),
        "close": _plain("Cancel"),
        "blocks": blocks,
    }


# =============================================================================
# NOTIFICATIONS
# =============================================================================


def completion_notification(
    record: ReferralRecord,
    summary: str,
    completed_by: str,
    approval_reaction: str,
) -> dict:
    """Admin-channel notice; its metadata is how approval reactions find the record."""
    return {
        "text": f"Service completed for {record.client_name}",
        "blocks": [
            {
                "type": "section",
                "text": _mrkdwn(
                    "*Service Completed* :white_check_mark:\n\n"
                    f"*Client:* {escape(record.client_name)}\n"
                    f"*Service:* {record.service_type.label}\n"
                    f"*Completed by:* {escape(completed_by)}\n"
                    f"*Summary:* {escape(summary)}\n"
                    f"*Referral ID:* {record.id}"
                ),
            },
            {
                "type": "context",
                "elements": [
                    _mrkdwn(
                        f"React with :{approval_reaction}: when invoice has been marked as paid"
                    )
                ],
            },
        ],
        "metadata": {
            "event_type": COMPLETION_EVENT_TYPE,
            "event_payload": {"referral_id": record.id},
        },
    }


def referral_record_message(record: ReferralRecord) -> dict:
    """A referral rendered as a channel message that doubles as its stored record."""
    fields = [
        _mrkdwn(f"*Client Name:*\n{escape(record.client_name)}"),
        _mrkdwn(f"*Service Type:*\n{record.service_type.label}"),
        _mrkdwn(f"*Email:*\n{escape(record.client_email)}"),
        _mrkdwn(f"*Phone:*\n{escape(record.client_phone)}"),
        _mrkdwn(f"*Referred By:*\n{escape(record.broker_name)}"),
        _mrkdwn(f"*Date:*\n{record.referral_date.isoformat()}"),
    ]
    blocks: list[dict] = [
        {"type": "header", "text": _plain(f"📋 Referral: {record.id}")},
        {"type": "section", "fields": fields},
    ]
    if record.appointment_datetime:
        blocks.append(
            {
                "type": "section",
                "text": _mrkdwn(
                    f"*📅 Appointment:* {record.appointment_datetime:%Y-%m-%d %H:%M}"
                ),
            }
        )
    if record.notes:
        blocks.append({"type": "section", "text": _mrkdwn(f"*Notes:*\n{escape(record.notes)}")})

    status_line = f"Status: *{record.status.value}* | Invoice: *{record.invoice_status.value}*"
    if record.completed_date:
        status_line += f" | Completed: {record.completed_date.isoformat()}"
    blocks.append({"type": "context", "elements": [_mrkdwn(f"{status_line} | ID: {record.id}")]})
    blocks.append({"type": "divider"})

    return {
        "text": f"Referral {record.id}: {record.client_name}",
        "blocks": blocks,
        "metadata": {
            "event_type": RECORD_EVENT_TYPE,
            "event_payload": record.to_payload(),
        },
    }


def appointment_body_html(record: ReferralRecord) -> str:
    """HTML body for the calendar invitation."""
    e = html.escape
    return (
        "<h2>Accountant Referral Appointment</h2>"
        f"<p><strong>Client:</strong> {e(record.client_name)}</p>"
        f"<p><strong>Email:</strong> {e(record.client_email)}</p>"
        f"<p><strong>Phone:</strong> {e(record.client_phone)}</p>"
        f"<p><strong>Service:</strong> {record.service_type.label}</p>"
        f"<p><strong>Notes:</strong> {e(record.notes or 'None')}</p>"
        f"<p><strong>Referred by:</strong> {e(record.broker_name)}</p>"
        f"<p><strong>Referral ID:</strong> {record.id}</p>"
    )


def paid_confirmation_text(referral_id: str) -> str:
    return f"Invoice marked as paid for referral {referral_id}"
