"""
Data models for Referral Intake.

This module exports all models and enums.
"""

# Enums
from referral_intake.models.enums import (
    ButtonVariant,
    InvoiceStatus,
    ReferralStatus,
    RelayOutcome,
    ServiceType,
)

# Referral record
from referral_intake.models.referral import (
    ALLOWED_TRANSITIONS,
    COLUMNS,
    ReferralRecord,
    can_transition,
    column_letter,
    is_referral_id,
    new_referral_id,
)

# Scheduling
from referral_intake.models.scheduling import (
    AvailabilitySlot,
    BusyInterval,
    CalendarEventData,
    parse_slot_value,
)

__all__ = [
    # Enums
    "ButtonVariant",
    "InvoiceStatus",
    "ReferralStatus",
    "RelayOutcome",
    "ServiceType",
    # Referral record
    "ALLOWED_TRANSITIONS",
    "COLUMNS",
    "ReferralRecord",
    "can_transition",
    "column_letter",
    "is_referral_id",
    "new_referral_id",
    # Scheduling
    "AvailabilitySlot",
    "BusyInterval",
    "CalendarEventData",
    "parse_slot_value",
]
