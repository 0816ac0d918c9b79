"""
Slack notifications for issued secrets.

Posts a message to every channel configured on a role through the
backend's incoming webhook.
"""

import logging

import httpx

from approved_secrets.constants import SLACK_USERNAME
from approved_secrets.errors import NotificationError

logger = logging.getLogger(__name__)


class SlackNotifier:
    """Posts workflow notifications to a Slack incoming webhook."""

    def __init__(
        self,
        timeout: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self._transport = transport

    @staticmethod
    def build_payload(
        channel: str, text: str, fields: dict[str, str] | None = None
    ) -> dict:
        """Build a webhook payload with one attachment field per entry."""
        attachment_fields = [
            {"value": f"*{name}:* {value}", "short": False}
            for name, value in (fields or {}).items()
        ]
        payload: dict = {
            "channel": channel,
            "username": SLACK_USERNAME,
            "text": text,
        }
        if attachment_fields:
            payload["attachments"] = [{"fields": attachment_fields}]
        return payload

    async def notify(
        self,
        webhook_url: str,
        channels: list[str],
        text: str,
        fields: dict[str, str] | None = None,
    ) -> None:
        """
        Post one message per channel.

        Raises:
            NotificationError: On the first channel that fails
        """
        if not channels:
            return
        if not webhook_url:
            raise NotificationError(channels[0], "no slack_webhook_url configured")

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout), transport=self._transport
        ) as client:
            for channel in channels:
                payload = self.build_payload(channel, text, fields)
                try:
                    response = await client.post(webhook_url, json=payload)
                    response.raise_for_status()
                except httpx.HTTPStatusError as e:
                    raise NotificationError(
                        channel, f"status {e.response.status_code}"
                    ) from e
                except httpx.HTTPError as e:
                    raise NotificationError(channel, type(e).__name__) from e

                logger.debug(
                    f"Sent Slack notification to {channel}",
                    extra={"channel": channel},
                )
