"""
Exception types for Referral Intake.

Handlers map these onto HTTP responses or Slack form errors:
AuthError -> 401, FormValidationError -> inline modal error,
NotFoundError -> inline modal error, DownstreamError -> logged, and
surfaced only when the failed call was critical.
"""

from typing import Optional


class ReferralIntakeError(Exception):
    """Base class for all referral intake errors."""


class AuthError(ReferralIntakeError):
    """Request signature or bearer token is missing, stale or wrong."""


class FormValidationError(ReferralIntakeError):
    """A submitted modal field failed validation."""

    def __init__(self, block_id: str, message: str):
        super().__init__(f"{block_id}: {message}")
        self.block_id = block_id
        self.message = message

    def to_response(self) -> dict:
        """Render as a Slack view_submission error response."""
        return {
            "response_action": "errors",
            "errors": {self.block_id: self.message},
        }


class NotFoundError(ReferralIntakeError):
    """No record with the given referral ID exists in the store."""

    def __init__(self, referral_id: str):
        super().__init__(f"Referral {referral_id} not found")
        self.referral_id = referral_id


class TransitionError(ReferralIntakeError):
    """The lifecycle does not allow moving a record to the requested status."""

    def __init__(self, referral_id: str, current: str, target: str):
        super().__init__(
            f"Referral {referral_id} cannot move from {current} to {target}"
        )
        self.referral_id = referral_id
        self.current = current
        self.target = target


class DownstreamError(ReferralIntakeError):
    """A call to Slack, Microsoft Graph or the relay webhook failed."""

    def __init__(
        self,
        message: str,
        critical: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.critical = critical
        self.status_code = status_code


class StoreError(DownstreamError):
    """The record store could not complete a read or write."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, critical=True, status_code=status_code)
