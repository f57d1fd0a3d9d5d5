from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Set, Tuple

from loguru import logger
from sqlalchemy.orm import Session

from autorenew.config import get_settings
from autorenew.models.notification_suppression import (
    NotificationSuppression,
    NotificationType,
)
from autorenew.notifications.discord import DiscordSender

# Minutes during which the same (type, entity) alert is not repeated
DEFAULT_SUPPRESSION_MINUTES: Dict[NotificationType, int] = {
    NotificationType.system_expiring: 6 * 60,
    NotificationType.system_expired: 24 * 60,
    NotificationType.automation_offline: 30,
    NotificationType.automation_stuck: 60,
    NotificationType.renewal_failed: 60,
    NotificationType.renewal_succeeded: 0,
    NotificationType.restart_failed: 30,
    NotificationType.login_challenge: 60,
}

# Alerts that need an operator; routed to the alert webhook when one is set
AUTOMATION_ALERTS = frozenset(
    {
        NotificationType.automation_offline,
        NotificationType.automation_stuck,
        NotificationType.login_challenge,
        NotificationType.restart_failed,
        NotificationType.renewal_failed,
    }
)


class NotificationGateway:
    """Sends alerts to the webhook at most once per suppression window."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        sender: Optional[DiscordSender] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.sender = sender
        self.clock = clock
        self.settings = get_settings()
        # (type, entity) pairs whose delivery is awaiting the webhook
        self._in_flight: Set[Tuple[NotificationType, str]] = set()

    def _is_suppressed(
        self, session: Session, notification_type: NotificationType, entity_id: str
    ) -> bool:
        active = (
            session.query(NotificationSuppression)
            .filter(
                NotificationSuppression.notification_type == notification_type,
                NotificationSuppression.entity_id == entity_id,
                NotificationSuppression.expires_at > self.clock(),
            )
            .first()
        )
        return active is not None

    def _record(
        self,
        session: Session,
        notification_type: NotificationType,
        entity_id: str,
        message: str,
        suppression_minutes: int,
    ) -> None:
        now = self.clock()
        session.add(
            NotificationSuppression(
                notification_type=notification_type,
                entity_id=entity_id,
                message=message,
                sent_at=now,
                expires_at=now + timedelta(minutes=suppression_minutes),
            )
        )
        session.commit()

    def _webhook_for(self, notification_type: NotificationType) -> Optional[str]:
        if notification_type in AUTOMATION_ALERTS and self.settings.discord_alert_webhook_url:
            return self.settings.discord_alert_webhook_url
        return None

    def _get_sender(self) -> Optional[DiscordSender]:
        if self.sender is not None:
            return self.sender
        if not DiscordSender.is_configured() and not self.settings.discord_alert_webhook_url:
            return None
        return DiscordSender()

    async def notify(
        self,
        notification_type: NotificationType,
        entity_id: Any,
        message: str,
        embed: Optional[Dict[str, Any]] = None,
        suppression_minutes: Optional[int] = None,
    ) -> bool:
        """Deliver one alert unless an unexpired suppression record exists.

        Never raises: delivery and bookkeeping errors are logged and reported
        as ``False`` so callers can fire and forget.

        Returns:
            True only when the webhook accepted the message.
        """
        if not self.settings.notification_enabled:
            logger.debug("Notifications are disabled, skipping")
            return False

        entity_key = str(entity_id)
        if suppression_minutes is None:
            suppression_minutes = DEFAULT_SUPPRESSION_MINUTES.get(notification_type, 60)

        key = (notification_type, entity_key)
        if key in self._in_flight:
            logger.debug(f"Suppressed {notification_type.value} for {entity_key} (in flight)")
            return False

        try:
            with self.session_factory() as session:
                if self._is_suppressed(session, notification_type, entity_key):
                    logger.debug(
                        f"Suppressed {notification_type.value} for {entity_key}"
                    )
                    return False

                self._in_flight.add(key)
                sender = self._get_sender()
                if sender is None:
                    logger.debug("Discord webhook not configured, skipping notification")
                    return False

                sent = await sender.send(
                    message,
                    embeds=[embed] if embed else None,
                    webhook_url=self._webhook_for(notification_type),
                    timeout=self.settings.notification_timeout_seconds,
                )
                if not sent:
                    logger.error(f"Failed to send {notification_type.value} for {entity_key}")
                    return False

                self._record(
                    session, notification_type, entity_key, message, suppression_minutes
                )
                logger.info(f"Sent {notification_type.value} for {entity_key}")
                return True
        except Exception as e:
            logger.error(f"Notification {notification_type.value} for {entity_key} failed: {e}")
            return False
        finally:
            self._in_flight.discard(key)
