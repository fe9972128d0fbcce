"""
Referral record storage.

Records live outside this application, either as rows of the Excel
referrals table (spreadsheet backend) or as bot messages in a Slack channel
(channel backend). Nothing is cached: every lookup reads the backend again.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Protocol

from referral_intake.config import Settings
from referral_intake.errors import DownstreamError, NotFoundError, StoreError
from referral_intake.models import (
    ReferralRecord,
    ReferralStatus,
    ServiceType,
    column_letter,
)
from referral_intake.models.referral import COLUMNS, REFERRAL_ID_PATTERN
from referral_intake.services.graph_service import GraphService
from referral_intake.services.messages import RECORD_EVENT_TYPE, referral_record_message
from referral_intake.services.slack_service import SlackService

logger = logging.getLogger(__name__)

RANGE_START_ROW = re.compile(r"(?:!|^)\$?[A-Z]+\$?(\d+)")


class RecordStore(Protocol):
    """Backend-agnostic referral storage."""

    def append(self, record: ReferralRecord) -> None:
        """Add a new record. Does not deduplicate."""

    def find(self, referral_id: str) -> ReferralRecord:
        """Return the record or raise NotFoundError."""

    def update_fields(self, referral_id: str, changes: dict) -> ReferralRecord:
        """Apply a partial update or raise NotFoundError; never creates a record."""


# =============================================================================
# SPREADSHEET BACKEND
# =============================================================================


class SpreadsheetRecordStore:
    """Records as rows of the Excel referrals table, one row per referral."""

    def __init__(self, graph: GraphService):
        self.graph = graph

    def append(self, record: ReferralRecord) -> None:
        try:
            self.graph.append_table_row(record.to_row())
        except DownstreamError as e:
            raise StoreError(f"Excel append failed for {record.id}: {e}") from e
        logger.info(f"Appended referral {record.id} to Excel")

    def _locate(self, referral_id: str) -> tuple[int, list]:
        """Find the sheet row number and cell values for a referral."""
        try:
            used_range = self.graph.get_used_range()
        except DownstreamError as e:
            raise StoreError(f"Excel read failed: {e}") from e

        match = RANGE_START_ROW.search(used_range.get("address") or "")
        first_row = int(match.group(1)) if match else 1

        for offset, row in enumerate(used_range.get("values") or []):
            if row and str(row[0]).strip() == referral_id:
                return first_row + offset, row

        raise NotFoundError(referral_id)

    def find(self, referral_id: str) -> ReferralRecord:
        _, row = self._locate(referral_id)
        try:
            return ReferralRecord.from_row(row)
        except ValueError as e:
            raise StoreError(f"Excel row for {referral_id} is unreadable: {e}") from e

    def update_fields(self, referral_id: str, changes: dict) -> ReferralRecord:
        row_number, row = self._locate(referral_id)
        try:
            current = ReferralRecord.from_row(row)
        except ValueError as e:
            raise StoreError(f"Excel row for {referral_id} is unreadable: {e}") from e

        updated = _apply_changes(current, changes)
        changed = current.changed_fields(updated)
        if not changed:
            return updated

        # One PATCH over the changed span so a failure leaves the row untouched
        indexes = [COLUMNS.index(name) for name in changed]
        first, last = min(indexes), max(indexes)
        address = f"{column_letter(COLUMNS[first])}{row_number}"
        if last != first:
            address += f":{column_letter(COLUMNS[last])}{row_number}"

        new_row = updated.to_row()
        try:
            self.graph.patch_range(address, [new_row[first:last + 1]])
        except DownstreamError as e:
            raise StoreError(f"Excel update of {address} failed for {referral_id}: {e}") from e

        logger.info(f"Updated referral {referral_id} in Excel row {row_number}")
        return updated


def _apply_changes(current: ReferralRecord, changes: dict) -> ReferralRecord:
    """Apply changes to a stored record; an inconsistent result is a store error."""
    try:
        return current.with_changes(**changes)
    except ValueError as e:
        raise StoreError(f"Cannot update referral {current.id}: {e}") from e


# =============================================================================
# CHANNEL BACKEND
# =============================================================================


@dataclass
class LocatedRecord:
    """A record found in channel history, plus where it was found."""

    record: ReferralRecord
    ts: str
    exact: bool


class RecordLocator(Protocol):
    """Strategy for recognizing a referral inside a channel message."""

    exact: bool

    def extract(self, message: dict, referral_id: str) -> Optional[ReferralRecord]:
        ...


class MetadataLocator:
    """Reads the structured event metadata attached to record messages."""

    exact = True

    def extract(self, message: dict, referral_id: str) -> Optional[ReferralRecord]:
        metadata = message.get("metadata") or {}
        if metadata.get("event_type") != RECORD_EVENT_TYPE:
            return None

        payload = metadata.get("event_payload") or {}
        if payload.get("referral_id") != referral_id:
            return None

        try:
            return ReferralRecord.from_payload(payload)
        except (KeyError, ValueError) as e:
            logger.warning(f"Record metadata for {referral_id} is incomplete: {e}")
            return None


class TextPatternLocator:
    """
    Best-effort fallback for messages without usable metadata.

    Only the referral ID, the labeled client name and the status line can be
    recovered; every other field comes back blank. Records found this way
    are partial and must not be written back.
    """

    exact = False

    CLIENT_NAME_PATTERN = re.compile(r"\*Client Name:\*\s*\n?\s*(.+)")
    STATUS_PATTERN = re.compile(r"Status:\s*\*?(\w+)\*?")

    def extract(self, message: dict, referral_id: str) -> Optional[ReferralRecord]:
        text = _message_text(message)
        if referral_id not in REFERRAL_ID_PATTERN.findall(text):
            return None

        name_match = self.CLIENT_NAME_PATTERN.search(text)
        client_name = html.unescape(name_match.group(1).strip()) if name_match else ""

        status = ReferralStatus.PENDING
        status_match = self.STATUS_PATTERN.search(text)
        if status_match:
            try:
                status = ReferralStatus(status_match.group(1).lower())
            except ValueError:
                pass

        return ReferralRecord(
            id=referral_id,
            client_name=client_name,
            client_email="",
            client_phone="",
            service_type=ServiceType.OTHER,
            notes="",
            broker_name="",
            referral_date=_message_date(message),
            status=status,
        )


def _message_text(message: dict) -> str:
    """Flatten a message's fallback text and block text into one string."""
    parts = [message.get("text") or ""]
    for block in message.get("blocks") or []:
        text = block.get("text")
        if isinstance(text, dict):
            parts.append(text.get("text") or "")
        for item in (block.get("fields") or []) + (block.get("elements") or []):
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
    return "\n".join(parts)


def _message_date(message: dict) -> date:
    try:
        return datetime.fromtimestamp(float(message.get("ts"))).date()
    except (TypeError, ValueError):
        return date.today()


DEFAULT_LOCATORS: tuple[RecordLocator, ...] = (MetadataLocator(), TextPatternLocator())


class ChannelRecordStore:
    """Records as bot messages in a dedicated Slack channel."""

    def __init__(
        self,
        slack: SlackService,
        channel: str,
        locators: Iterable[RecordLocator] = DEFAULT_LOCATORS,
    ):
        self.slack = slack
        self.channel = channel
        self.locators = list(locators)

    def append(self, record: ReferralRecord) -> None:
        message = referral_record_message(record)
        try:
            self.slack.post_message(self.channel, **message)
        except DownstreamError as e:
            raise StoreError(f"Posting record {record.id} failed: {e}") from e
        logger.info(f"Posted referral {record.id} to records channel")

    def locate(self, referral_id: str) -> LocatedRecord:
        """
        Scan channel history for a referral.

        An exact (metadata) match wins wherever it appears in history;
        otherwise the newest inexact match is returned.
        """
        fallback: Optional[LocatedRecord] = None
        try:
            for message in self.slack.iter_channel_messages(self.channel):
                for locator in self.locators:
                    record = locator.extract(message, referral_id)
                    if record is None:
                        continue
                    located = LocatedRecord(record=record, ts=message.get("ts", ""), exact=locator.exact)
                    if located.exact:
                        return located
                    if fallback is None:
                        fallback = located
        except DownstreamError as e:
            raise StoreError(f"Reading records channel failed: {e}") from e

        if fallback is not None:
            logger.warning(
                f"Referral {referral_id} matched by text only; fields may be incomplete"
            )
            return fallback
        raise NotFoundError(referral_id)

    def find(self, referral_id: str) -> ReferralRecord:
        return self.locate(referral_id).record

    def update_fields(self, referral_id: str, changes: dict) -> ReferralRecord:
        located = self.locate(referral_id)
        if not located.exact:
            raise StoreError(
                f"Referral {referral_id} was only matched by text; refusing to overwrite it"
            )

        updated = _apply_changes(located.record, changes)
        message = referral_record_message(updated)
        try:
            self.slack.update_message(self.channel, located.ts, **message)
        except DownstreamError as e:
            raise StoreError(f"Updating record {referral_id} failed: {e}") from e

        logger.info(f"Updated referral {referral_id} in records channel")
        return updated


def build_record_store(
    settings: Settings, graph: GraphService, slack: SlackService
) -> RecordStore:
    """Create the store for the configured backend."""
    if settings.record_backend == "channel":
        if not settings.channel_referral_records:
            raise ValueError("CHANNEL_REFERRAL_RECORDS is required for the channel backend")
        return ChannelRecordStore(slack, settings.channel_referral_records)
    return SpreadsheetRecordStore(graph)
