from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autorenew.db.database import Base
from autorenew.models.base import TimestampMixin

if TYPE_CHECKING:
    from autorenew.models.client import ClientSlot


class Account(Base, TimestampMixin):
    """One reseller subscription ("system") on the external portal."""

    __tablename__ = "systems"

    id: Mapped[int] = mapped_column(primary_key=True)
    system_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    expiration: Mapped[Optional[datetime]] = mapped_column(DateTime)
    active_slots: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_slots: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    last_renewal_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    renewal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    slots: Mapped[List["ClientSlot"]] = relationship(back_populates="account")

    def __repr__(self) -> str:
        return f"<Account {self.system_id}:{self.username}>"
