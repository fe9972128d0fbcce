"""
Service layer for Referral Intake.
"""

from referral_intake.services.signature import verify, verify_bearer
from referral_intake.services.availability import (
    busy_intervals_from_events,
    compute_availability,
    window_bounds,
)
from referral_intake.services.graph_service import GraphService
from referral_intake.services.slack_service import SlackService
from referral_intake.services.forms import (
    CompletionSubmission,
    ReferralSubmission,
    parse_completion_submission,
    parse_referral_submission,
)
from referral_intake.services.record_store import (
    ChannelRecordStore,
    MetadataLocator,
    RecordStore,
    SpreadsheetRecordStore,
    TextPatternLocator,
    build_record_store,
)
from referral_intake.services.relay import RelayClient
from referral_intake.services.workflow_service import (
    WorkflowService,
    get_workflow_service,
)

__all__ = [
    # Request verification
    "verify",
    "verify_bearer",
    # Scheduling
    "busy_intervals_from_events",
    "compute_availability",
    "window_bounds",
    # External clients
    "GraphService",
    "SlackService",
    "RelayClient",
    # Modal parsing
    "CompletionSubmission",
    "ReferralSubmission",
    "parse_completion_submission",
    "parse_referral_submission",
    # Record storage
    "RecordStore",
    "SpreadsheetRecordStore",
    "ChannelRecordStore",
    "MetadataLocator",
    "TextPatternLocator",
    "build_record_store",
    # Workflow management
    "WorkflowService",
    "get_workflow_service",
]
