"""
Workflow service for the referral lifecycle.

Referrals move forward through:
1. pending / scheduled - broker submits the referral form (scheduled when a
   calendar slot was booked)
2. completed - a junior accountant submits the completion form; the admin
   channel is notified
3. paid - an admin reacts to that notification with the approval emoji

Each Slack event is handled statelessly: the record is re-read from the store,
the transition is checked against ALLOWED_TRANSITIONS, and only then written.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from slack_sdk import WebClient

from referral_intake.config import Settings
from referral_intake.errors import (
    DownstreamError,
    FormValidationError,
    NotFoundError,
    StoreError,
    TransitionError,
)
from referral_intake.models import (
    AvailabilitySlot,
    ButtonVariant,
    CalendarEventData,
    InvoiceStatus,
    ReferralRecord,
    ReferralStatus,
    can_transition,
    is_referral_id,
    new_referral_id,
)
from referral_intake.services import messages
from referral_intake.services.availability import (
    busy_intervals_from_events,
    compute_availability,
    get_zone,
    window_bounds,
)
from referral_intake.services.forms import (
    parse_completion_submission,
    parse_referral_submission,
)
from referral_intake.services.graph_service import GraphService
from referral_intake.services.record_store import RecordStore, build_record_store
from referral_intake.services.relay import (
    INVOICE_PAID,
    REFERRAL_CREATED,
    SERVICE_COMPLETED,
    RelayClient,
)
from referral_intake.services.slack_service import SlackService

logger = logging.getLogger(__name__)

APPOINTMENT_LENGTH = timedelta(hours=1)


class WorkflowService:
    """
    Drives referrals through their lifecycle.

    Handles:
    - Posting start buttons and opening modals
    - Referral intake with optional calendar booking
    - Service completion and admin notification
    - Approval reactions that mark invoices paid
    """

    def __init__(
        self,
        settings: Settings,
        slack: SlackService,
        store: RecordStore,
        graph: GraphService,
        relay: RelayClient,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.slack = slack
        self.store = store
        self.graph = graph
        self.relay = relay
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _now_local(self) -> datetime:
        return self.clock().astimezone(get_zone(self.settings.practice_timezone))

    def _today(self) -> date:
        return self._now_local().date()

    # =========================================================================
    # BUTTONS AND MODALS
    # =========================================================================

    def post_start_button(
        self,
        channel: str,
        variant: ButtonVariant,
        referral_id: Optional[str] = None,
        client_name: Optional[str] = None,
    ) -> dict:
        """Post a 'New Referral' or 'Complete Service' button to a channel."""
        if variant == ButtonVariant.REFERRAL:
            message = messages.referral_button_message()
        else:
            message = messages.completion_button_message(referral_id, client_name)

        result = self.slack.post_message(channel, **message)
        logger.info(f"Posted {variant.value} button to {channel}")
        return result

    def available_slots(self) -> list[AvailabilitySlot]:
        """Free appointment slots for the configured window, starting today."""
        now = self._now_local()
        zone = self.settings.practice_timezone
        days = self.settings.availability_days

        window_start, window_end = window_bounds(now.date(), days, zone)
        events = self.graph.get_calendar_view(window_start, window_end)

        return compute_availability(
            busy_intervals_from_events(events),
            start_date=now.date(),
            window_days=days,
            working_hours=self.settings.parsed_working_hours(),
            timezone=zone,
            now=now,
        )

    def open_referral_form(self, trigger_id: str) -> None:
        """Open the referral modal, offering free slots when the calendar is reachable."""
        try:
            slots = self.available_slots()
        except DownstreamError as e:
            logger.warning(f"Availability lookup failed, opening form without slots: {e}")
            slots = []

        view = messages.referral_modal(slots, self.settings.max_slot_options)
        self.slack.open_view(trigger_id, view)

    def open_completion_form(self, trigger_id: str, referral_id: Optional[str] = None) -> None:
        """Open the completion modal, pre-bound to a referral when the button carried one."""
        if referral_id and not is_referral_id(referral_id):
            logger.warning(f"Ignoring malformed referral ID on completion button: {referral_id!r}")
            referral_id = None
        self.slack.open_view(trigger_id, messages.completion_modal(referral_id, self._today()))

    # =========================================================================
    # REFERRAL INTAKE
    # =========================================================================

    def submit_referral(self, user_id: str, state_values: dict) -> dict:
        """
        Handle a referral_form_submit view submission.

        Returns:
            {} to close the modal, or a field-error response to keep it open
        """
        try:
            submission = parse_referral_submission(state_values)
            if submission.appointment_start:
                self._ensure_slot_available(submission.appointment_start)
        except FormValidationError as e:
            return e.to_response()

        record = ReferralRecord(
            id=new_referral_id(),
            client_name=submission.client_name,
            client_email=submission.client_email,
            client_phone=submission.client_phone,
            service_type=submission.service_type,
            notes=submission.notes,
            broker_name=self._display_name(user_id),
            referral_date=self._today(),
        )

        booked = False
        if submission.appointment_start:
            booked = self._book_appointment(record, submission.appointment_start)
            if booked:
                record = record.with_changes(
                    status=ReferralStatus.SCHEDULED,
                    appointment_datetime=submission.appointment_start,
                )

        try:
            self.store.append(record)
        except StoreError as e:
            logger.error(f"Failed to save referral {record.id}: {e}")
            if booked:
                logger.warning(
                    f"Calendar booking for {record.id} at {record.appointment_datetime} "
                    "is orphaned; remove it manually"
                )
            return FormValidationError(
                messages.CLIENT_NAME_BLOCK,
                "Failed to save referral. Please try again or contact an admin.",
            ).to_response()

        logger.info(
            f"Referral {record.id} created by {record.broker_name} ({record.status.value})"
        )

        self.relay.dispatch(REFERRAL_CREATED, record)
        self._post_completion_button(record)
        return {}

    def _ensure_slot_available(self, start: datetime) -> None:
        """Reject a slot that is no longer offered (stale modal or edited value)."""
        try:
            slots = self.available_slots()
        except DownstreamError as e:
            # Booking will be attempted; a calendar outage then saves the record as pending
            logger.warning(f"Could not recheck slot {start:%Y-%m-%d %H:%M}: {e}")
            return

        if not any(datetime.combine(slot.date, slot.start_time) == start for slot in slots):
            logger.info(f"Rejected slot {start:%Y-%m-%d %H:%M}; no longer available")
            raise FormValidationError(
                messages.APPOINTMENT_SLOT_BLOCK,
                "That time is no longer available. Please pick another slot.",
            )

    def _book_appointment(self, record: ReferralRecord, start: datetime) -> bool:
        """Create the calendar event; False when booking failed."""
        event = CalendarEventData(
            subject=f"Accountant Appointment: {record.client_name}",
            start=start,
            end=start + APPOINTMENT_LENGTH,
            attendee_email=record.client_email,
            body_html=messages.appointment_body_html(record),
        )
        try:
            event_id = self.graph.create_calendar_event(event)
        except DownstreamError as e:
            logger.error(f"Calendar booking failed for {record.id}, saving as pending: {e}")
            return False

        logger.info(f"Booked {start:%Y-%m-%d %H:%M} for {record.id} (event {event_id})")
        return True

    def _post_completion_button(self, record: ReferralRecord) -> None:
        channel = self.settings.channel_services_completed
        if not channel:
            return
        try:
            self.post_start_button(
                channel, ButtonVariant.COMPLETION, record.id, record.client_name
            )
        except DownstreamError as e:
            logger.warning(f"Could not post completion button for {record.id}: {e}")

    # =========================================================================
    # SERVICE COMPLETION
    # =========================================================================

    def submit_completion(self, user_id: str, view: dict) -> dict:
        """
        Handle a completion_form_submit view submission.

        Moves a pending or scheduled referral to completed, then notifies the
        admin channel with metadata that approval reactions read back.
        """
        try:
            submission = parse_completion_submission(view)
        except FormValidationError as e:
            return e.to_response()

        referral_id = submission.referral_id
        block = submission.referral_id_block

        try:
            record = self.store.find(referral_id)
        except NotFoundError:
            logger.warning(f"Completion submitted for unknown referral {referral_id}")
            return FormValidationError(
                block, f"No referral found with ID {referral_id}"
            ).to_response()
        except StoreError as e:
            logger.error(f"Could not load referral {referral_id}: {e}")
            return FormValidationError(
                block, "Could not load the referral. Please try again."
            ).to_response()

        if not can_transition(record.status, ReferralStatus.COMPLETED):
            logger.info(f"Completion for {referral_id} ignored; already {record.status.value}")
            return FormValidationError(
                block, f"Referral {referral_id} is already {record.status.value}"
            ).to_response()

        try:
            updated = self.store.update_fields(
                referral_id,
                {
                    "status": ReferralStatus.COMPLETED,
                    "completed_date": submission.service_date or self._today(),
                    "invoice_status": InvoiceStatus.SENT,
                },
            )
        except (NotFoundError, StoreError) as e:
            logger.error(f"Failed to mark {referral_id} completed: {e}")
            return FormValidationError(
                block, "Failed to update the referral. Please try again or contact an admin."
            ).to_response()

        logger.info(f"Referral {referral_id} completed on {updated.completed_date}")

        try:
            self._notify_admin(updated, submission.completion_notes, self._display_name(user_id))
        except DownstreamError as e:
            logger.error(f"Admin notification failed for {referral_id}: {e}")
            return FormValidationError(
                messages.COMPLETION_NOTES_BLOCK,
                f"Referral {referral_id} was marked complete, but the admin channel "
                "could not be notified. Please let an admin know.",
            ).to_response()

        self.relay.dispatch(SERVICE_COMPLETED, updated)
        return {}

    def _notify_admin(self, record: ReferralRecord, summary: str, completed_by: str) -> dict:
        channel = self.settings.channel_accounting_admin
        if not channel:
            raise DownstreamError("CHANNEL_ACCOUNTING_ADMIN not configured")
        message = messages.completion_notification(
            record, summary, completed_by, self.settings.approval_reaction
        )
        return self.slack.post_message(channel, **message)

    # =========================================================================
    # INVOICING AND PAYMENT
    # =========================================================================

    def handle_reaction(self, event: dict) -> Optional[ReferralRecord]:
        """
        Handle a reaction_added event.

        Only the approval emoji, in the admin channel, on a message carrying
        service_completion metadata, for a completed or invoiced referral,
        marks the invoice paid. Everything else is ignored.

        Returns:
            The updated record, or None when the reaction was ignored or failed
        """
        if event.get("reaction") != self.settings.approval_reaction:
            return None

        item = event.get("item") or {}
        channel = item.get("channel")
        ts = item.get("ts")
        admin_channel = self.settings.channel_accounting_admin
        if item.get("type", "message") != "message" or not admin_channel or channel != admin_channel:
            return None

        try:
            message = self.slack.fetch_message(channel, ts)
        except DownstreamError as e:
            logger.error(f"Could not fetch reacted message {ts}: {e}")
            return None

        if not message or message.get("ts") != ts:
            logger.warning(f"Reacted message {ts} not found in {channel}")
            return None

        metadata = message.get("metadata") or {}
        if metadata.get("event_type") != messages.COMPLETION_EVENT_TYPE:
            return None

        referral_id = (metadata.get("event_payload") or {}).get("referral_id")
        if not is_referral_id(referral_id):
            logger.error(f"Completion message {ts} has no usable referral ID")
            return None

        try:
            record = self.store.find(referral_id)
        except (NotFoundError, StoreError) as e:
            logger.error(f"Could not load referral {referral_id} for approval: {e}")
            return None

        if not can_transition(record.status, ReferralStatus.PAID):
            logger.info(
                f"Approval for {referral_id} ignored; status is {record.status.value}"
            )
            return None

        try:
            updated = self.store.update_fields(
                referral_id,
                {"status": ReferralStatus.PAID, "invoice_status": InvoiceStatus.PAID},
            )
        except (NotFoundError, StoreError) as e:
            logger.error(f"Failed to mark invoice paid for {referral_id}: {e}")
            return None

        logger.info(f"Invoice for {referral_id} marked paid by {event.get('user')}")

        try:
            self.slack.post_message(
                channel, text=messages.paid_confirmation_text(referral_id), thread_ts=ts
            )
        except DownstreamError as e:
            logger.warning(f"Paid confirmation reply failed for {referral_id}: {e}")

        self.relay.dispatch(INVOICE_PAID, updated)
        return updated

    def mark_invoiced(self, referral_id: str) -> ReferralRecord:
        """Move a completed referral to invoiced."""
        record = self.store.find(referral_id)
        if not can_transition(record.status, ReferralStatus.INVOICED):
            raise TransitionError(
                referral_id, record.status.value, ReferralStatus.INVOICED.value
            )
        updated = self.store.update_fields(
            referral_id,
            {"status": ReferralStatus.INVOICED, "invoice_status": InvoiceStatus.SENT},
        )
        logger.info(f"Referral {referral_id} invoiced")
        return updated

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _display_name(self, user_id: str) -> str:
        try:
            return self.slack.get_user_display_name(user_id)
        except DownstreamError as e:
            logger.warning(f"Could not resolve Slack user {user_id}: {e}")
            return "Unknown"


def get_workflow_service(settings: Settings) -> WorkflowService:
    """Factory function wiring a WorkflowService to the real Slack and Graph clients."""
    slack = SlackService(WebClient(token=settings.slack_bot_token))
    graph = GraphService(settings)
    relay = RelayClient(
        settings.relay_webhook_url,
        timeout=settings.relay_timeout_seconds,
        payload_style=settings.relay_payload_style,
    )
    store = build_record_store(settings, graph, slack)
    return WorkflowService(settings, slack, store, graph, relay)
