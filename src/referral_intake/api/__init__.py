"""
HTTP surface for Slack callbacks and operational endpoints.
"""

from referral_intake.api.main import app, create_app

__all__ = ["app", "create_app"]
