"""
Slack request signature verification.

Slack signs every request with HMAC-SHA256 over "v0:{timestamp}:{body}"
using the app's signing secret. Requests older (or newer) than five minutes
are rejected to limit replay.
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

# Maximum clock distance between Slack and us, in seconds
MAX_REQUEST_AGE_SECONDS = 300
SIGNATURE_VERSION = "v0"


def compute_signature(secret: str, raw_body: bytes, timestamp: str) -> str:
    """Compute the v0 signature Slack would send for this body."""
    base = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + raw_body
    digest = hmac.new(secret.encode("utf-8"), base, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify(
    secret: Optional[str],
    raw_body: bytes,
    timestamp_header: Optional[str],
    signature_header: Optional[str],
    now: Optional[float] = None,
) -> bool:
    """
    Verify a Slack request signature.

    Args:
        secret: Slack signing secret
        raw_body: Request body exactly as received
        timestamp_header: X-Slack-Request-Timestamp value
        signature_header: X-Slack-Signature value
        now: Current unix time (defaults to time.time())

    Returns:
        True only if the timestamp is fresh and the signature matches
    """
    if not secret or not timestamp_header or not signature_header:
        return False

    try:
        request_time = int(timestamp_header)
    except ValueError:
        logger.warning(f"Invalid Slack timestamp header: {timestamp_header!r}")
        return False

    current_time = time.time() if now is None else now
    if abs(current_time - request_time) > MAX_REQUEST_AGE_SECONDS:
        logger.warning(f"Slack request timestamp outside window: {timestamp_header}")
        return False

    expected = compute_signature(secret, raw_body, timestamp_header)
    return hmac.compare_digest(
        expected.encode("utf-8"), signature_header.encode("utf-8")
    )


def verify_bearer(secret: Optional[str], authorization_header: Optional[str]) -> bool:
    """Check an 'Authorization: Bearer <secret>' header in constant time."""
    if not secret or not authorization_header:
        return False
    return hmac.compare_digest(
        authorization_header.encode("utf-8"), f"Bearer {secret}".encode("utf-8")
    )
