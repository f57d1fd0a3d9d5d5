from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from autorenew.db.database import Base


class AutomationHealth(Base):
    __tablename__ = "automation_health"

    id: Mapped[int] = mapped_column(primary_key=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_logged_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_heartbeat: Mapped[Optional[datetime]] = mapped_column(DateTime)
    current_url: Mapped[Optional[str]] = mapped_column(Text)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<AutomationHealth active={self.is_active} "
            f"logged_in={self.is_logged_in} heartbeat={self.last_heartbeat}>"
        )
