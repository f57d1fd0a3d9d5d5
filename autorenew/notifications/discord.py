from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from autorenew.config import get_settings

SEND_MESSAGE_TIMEOUT = 10  # seconds
MAX_CONTENT_LENGTH = 2000  # Discord rejects longer "content"
MAX_EMBEDS = 10

# Usernames come from the portal; never let them ping anyone
NO_MENTIONS: Dict[str, Any] = {"parse": []}


class DiscordSender:
    """Send messages via Discord Webhook."""

    def __init__(self, webhook_url: Optional[str] = None):
        settings = get_settings()
        self.webhook_url = webhook_url or settings.discord_webhook_url

    @classmethod
    def is_configured(cls) -> bool:
        """Check if Discord webhook URL is set."""
        settings = get_settings()
        return bool(settings.discord_webhook_url)

    async def send(
        self,
        text: str,
        embeds: Optional[List[Dict[str, Any]]] = None,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """Post a message to a Discord webhook.

        Args:
            text: Plain text content.
            embeds: Optional list of Discord embed objects.
            webhook_url: Overrides the sender's webhook for this message.
            timeout: Request timeout in seconds.

        Returns:
            True if sent successfully, False otherwise.
        """
        url = webhook_url or self.webhook_url
        if not url:
            logger.warning("Discord send called without a webhook URL")
            return False

        payload: Dict[str, Any] = {}
        if text:
            payload["content"] = text[:MAX_CONTENT_LENGTH]
        if embeds:
            payload["embeds"] = embeds[:MAX_EMBEDS]

        if not payload:
            logger.warning("Discord send called with no content")
            return False
        payload["allowed_mentions"] = NO_MENTIONS

        try:
            async with httpx.AsyncClient(timeout=timeout or SEND_MESSAGE_TIMEOUT) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()

            logger.info("Discord webhook message sent")
            return True
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                logger.warning(
                    f"Discord webhook rate limited, retry after {_retry_after(e.response)}s"
                )
            else:
                logger.error(
                    f"Discord webhook error: {e.response.status_code} - {e.response.text}"
                )
            return False
        except httpx.RequestError as e:
            logger.error(f"Discord webhook request failed: {e}")
            return False


def _retry_after(response: httpx.Response) -> Optional[float]:
    try:
        return float(response.json().get("retry_after"))
    except (ValueError, TypeError, AttributeError):
        return None
