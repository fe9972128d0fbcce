"""
Enum definitions for the Referral Intake system.

This module centralizes all enum types used across the application
to ensure consistency in status values and categorizations.
"""

import enum


class ReferralStatus(enum.Enum):
    """Lifecycle status of a referral record."""

    PENDING = "pending"  # Created, no appointment booked
    SCHEDULED = "scheduled"  # Calendar appointment booked
    COMPLETED = "completed"  # Service delivered, invoice sent
    INVOICED = "invoiced"  # Invoice issued separately from completion
    PAID = "paid"  # Invoice payment confirmed by an admin


class InvoiceStatus(enum.Enum):
    """Billing state tracked alongside the referral status."""

    PENDING = "pending"
    SENT = "sent"
    PAID = "paid"


class ServiceType(enum.Enum):
    """Services a referral can be made for."""

    TAX_PREPARATION = "tax_preparation"
    BOOKKEEPING = "bookkeeping"
    PAYROLL = "payroll"
    CONSULTING = "consulting"
    OTHER = "other"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class ButtonVariant(enum.Enum):
    """Start buttons that can be posted into a channel."""

    REFERRAL = "referral"
    COMPLETION = "completion"


class RelayOutcome(enum.Enum):
    """Result of a best-effort relay webhook dispatch."""

    ACKNOWLEDGED = "acknowledged"  # 2xx response observed
    TIMED_OUT = "timed_out"  # Sent, response not observed in time
    FAILED = "failed"
    SKIPPED = "skipped"  # No relay configured

    @property
    def succeeded(self) -> bool:
        return self in (RelayOutcome.ACKNOWLEDGED, RelayOutcome.TIMED_OUT)
