"""
Best-effort relay of referral events to a downstream automation webhook
(Zapier or Power Automate).

The relay never raises. Callers only care whether the outcome succeeded;
acknowledged and timed-out-after-sending both count, and the log keeps
them apart.
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

import httpx

from referral_intake.models import ReferralRecord, RelayOutcome

logger = logging.getLogger(__name__)

REFERRAL_CREATED = "referral_created"
SERVICE_COMPLETED = "service_completed"
INVOICE_PAID = "invoice_paid"


class RelayClient:
    """Fire-and-forget POST with a short, bounded wait for the response."""

    def __init__(
        self,
        url: Optional[str],
        timeout: float = 2.0,
        payload_style: Literal["camel", "snake"] = "camel",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.payload_style = payload_style
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.url)

    def build_payload(self, event: str, record: ReferralRecord) -> dict:
        """Flatten a record into the webhook body for the configured style."""
        row = dict(zip(_FIELD_KEYS, record.to_row()))
        if self.payload_style == "snake":
            # Zapier-style keys, service type with spaces
            payload = dict(row)
            payload["service_type"] = record.service_type.value.replace("_", " ")
        else:
            payload = {_CAMEL_KEYS.get(key, key): value for key, value in row.items()}
        payload["event"] = event
        return payload

    def dispatch(self, event: str, record: ReferralRecord) -> RelayOutcome:
        """
        Send an event for a record.

        Returns:
            SKIPPED when no webhook is configured, otherwise the delivery outcome
        """
        if not self.url:
            return RelayOutcome.SKIPPED

        payload = self.build_payload(event, record)
        try:
            with httpx.Client(transport=self._transport, timeout=self.timeout) as client:
                response = client.post(self.url, json=payload)
        except httpx.ReadTimeout:
            logger.info(
                f"Relay {event} for {record.id} sent; no response within {self.timeout}s"
            )
            return RelayOutcome.TIMED_OUT
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Relay {event} for {record.id} failed: {e}")
            return RelayOutcome.FAILED

        if response.is_success:
            logger.info(f"Relay {event} for {record.id} acknowledged ({response.status_code})")
            return RelayOutcome.ACKNOWLEDGED

        logger.warning(
            f"Relay {event} for {record.id} rejected with status {response.status_code}"
        )
        return RelayOutcome.FAILED


_FIELD_KEYS = [
    "id",
    "client_name",
    "client_email",
    "client_phone",
    "service_type",
    "notes",
    "broker_name",
    "referral_date",
    "appointment_date",
    "status",
    "completed_date",
    "invoice_status",
]

_CAMEL_KEYS = {
    "client_name": "clientName",
    "client_email": "clientEmail",
    "client_phone": "clientPhone",
    "service_type": "serviceType",
    "broker_name": "brokerName",
    "referral_date": "referralDate",
    "appointment_date": "appointmentDate",
    "completed_date": "completedDate",
    "invoice_status": "invoiceStatus",
}
