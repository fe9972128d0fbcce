"""
Slack Web API wrapper.

Thin layer over slack_sdk's WebClient so the rest of the application deals
in plain dicts and DownstreamError rather than SDK response objects.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from referral_intake.errors import DownstreamError

logger = logging.getLogger(__name__)


def _error_code(exc: SlackApiError) -> str:
    response = getattr(exc, "response", None)
    if response is not None:
        return response.get("error") or str(exc)
    return str(exc)


class SlackService:
    """Service for posting messages, opening modals and reading history."""

    HISTORY_PAGE_SIZE = 200

    def __init__(self, client: WebClient):
        self.client = client

    def post_message(
        self,
        channel: str,
        text: str,
        blocks: Optional[list[dict]] = None,
        metadata: Optional[dict] = None,
        thread_ts: Optional[str] = None,
    ) -> dict:
        """
        Post a message to a channel.

        Returns:
            dict with the 'channel' and 'ts' of the posted message
        """
        kwargs: dict[str, Any] = {"channel": channel, "text": text}
        if blocks is not None:
            kwargs["blocks"] = blocks
        if metadata is not None:
            kwargs["metadata"] = metadata
        if thread_ts is not None:
            kwargs["thread_ts"] = thread_ts

        try:
            response = self.client.chat_postMessage(**kwargs)
        except SlackApiError as e:
            raise DownstreamError(f"chat.postMessage failed: {_error_code(e)}") from e
        return {"channel": response.get("channel"), "ts": response.get("ts")}

    def update_message(
        self,
        channel: str,
        ts: str,
        text: str,
        blocks: Optional[list[dict]] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Rewrite a message previously posted by this app."""
        kwargs: dict[str, Any] = {"channel": channel, "ts": ts, "text": text}
        if blocks is not None:
            kwargs["blocks"] = blocks
        if metadata is not None:
            kwargs["metadata"] = metadata

        try:
            self.client.chat_update(**kwargs)
        except SlackApiError as e:
            raise DownstreamError(f"chat.update failed: {_error_code(e)}") from e

    def open_view(self, trigger_id: str, view: dict) -> None:
        """Open a modal in response to an interaction."""
        try:
            self.client.views_open(trigger_id=trigger_id, view=view)
        except SlackApiError as e:
            raise DownstreamError(f"views.open failed: {_error_code(e)}") from e

    def get_user_display_name(self, user_id: str) -> str:
        """Resolve a user's real name, falling back to their handle."""
        try:
            response = self.client.users_info(user=user_id)
        except SlackApiError as e:
            raise DownstreamError(f"users.info failed: {_error_code(e)}") from e

        user = response.get("user") or {}
        return user.get("real_name") or user.get("name") or "Unknown"

    def fetch_message(self, channel: str, ts: str) -> Optional[dict]:
        """Fetch a single message (with metadata) by its timestamp."""
        try:
            response = self.client.conversations_history(
                channel=channel,
                latest=ts,
                inclusive=True,
                limit=1,
                include_all_metadata=True,
            )
        except SlackApiError as e:
            raise DownstreamError(f"conversations.history failed: {_error_code(e)}") from e

        messages = response.get("messages") or []
        return messages[0] if messages else None

    def iter_channel_messages(self, channel: str) -> Iterator[dict]:
        """Yield every message in a channel, newest first."""
        cursor = None
        while True:
            kwargs: dict[str, Any] = {
                "channel": channel,
                "limit": self.HISTORY_PAGE_SIZE,
                "include_all_metadata": True,
            }
            if cursor:
                kwargs["cursor"] = cursor
            try:
                response = self.client.conversations_history(**kwargs)
            except SlackApiError as e:
                raise DownstreamError(
                    f"conversations.history failed: {_error_code(e)}"
                ) from e

            yield from response.get("messages") or []

            cursor = (response.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                break
