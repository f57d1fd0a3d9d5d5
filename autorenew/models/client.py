from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autorenew.db.database import Base
from autorenew.models.account import Account


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    slots: Mapped[List["ClientSlot"]] = relationship(back_populates="client")

    def __repr__(self) -> str:
        return f"<Client {self.name}>"


class ClientSlot(Base):
    """A client's login on one account; links clients to the accounts they use."""

    __tablename__ = "client_slots"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("systems.id"))
    username: Mapped[str] = mapped_column(String(50), nullable=False)

    client: Mapped[Client] = relationship(back_populates="slots")
    account: Mapped[Optional[Account]] = relationship(back_populates="slots")

    def __repr__(self) -> str:
        return f"<ClientSlot client={self.client_id} account={self.account_id}>"
