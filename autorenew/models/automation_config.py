from __future__ import annotations

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from autorenew.db.database import Base
from autorenew.models.base import TimestampMixin

DISTRIBUTION_INDIVIDUAL = "individual"
DISTRIBUTION_FIXED_POINTS = "fixed-points"


class AutomationConfig(Base, TimestampMixin):
    """Global renewal switches; a single row edited from the dashboard."""

    __tablename__ = "automation_config"

    id: Mapped[int] = mapped_column(primary_key=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    renewal_advance_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    distribution_mode: Mapped[str] = mapped_column(
        String(20), default=DISTRIBUTION_INDIVIDUAL, nullable=False
    )

    @property
    def is_fixed(self) -> bool:
        return self.distribution_mode == DISTRIBUTION_FIXED_POINTS

    def __repr__(self) -> str:
        return f"<AutomationConfig enabled={self.is_enabled} mode={self.distribution_mode}>"
