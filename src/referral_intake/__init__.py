"""
Referral Intake - Slack-driven referral intake, scheduling and invoicing
for an accounting practice.
"""

__version__ = "0.1.0"
