from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from autorenew.db.database import Base


class NotificationType(enum.Enum):
    system_expiring = "system_expiring"
    system_expired = "system_expired"
    automation_offline = "automation_offline"
    automation_stuck = "automation_stuck"
    renewal_failed = "renewal_failed"
    renewal_succeeded = "renewal_succeeded"
    restart_failed = "restart_failed"
    login_challenge = "login_challenge"


class NotificationSuppression(Base):
    """A delivered alert; blocks repeats of (type, entity) until ``expires_at``."""

    __tablename__ = "notification_suppressions"
    __table_args__ = (
        Index("ix_notification_suppressions_lookup", "notification_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType), nullable=False
    )
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<NotificationSuppression {self.notification_type.value} "
            f"entity={self.entity_id} until {self.expires_at}>"
        )
