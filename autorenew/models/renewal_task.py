from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from autorenew.db.database import Base


class TaskStatus(enum.Enum):
    pending = "pending"
    claimed = "claimed"
    done = "done"
    failed = "failed"


ACTIVE_TASK_STATUSES = (TaskStatus.pending, TaskStatus.claimed)

_ACTIVE_WHERE = text("status IN ('pending', 'claimed')")


class RenewalTask(Base):
    """Durable handoff record between the orchestrator and whoever runs the renewal."""

    __tablename__ = "renewal_tasks"
    __table_args__ = (
        Index(
            "uq_renewal_tasks_active_account",
            "account_id",
            unique=True,
            sqlite_where=_ACTIVE_WHERE,
            postgresql_where=_ACTIVE_WHERE,
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("systems.id"), nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus), default=TaskStatus.pending, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    task_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    @property
    def trace_id(self) -> str:
        return (self.task_metadata or {}).get("trace_id", "-")

    def __repr__(self) -> str:
        return f"<RenewalTask {self.id} account={self.account_id} {self.status.value}>"
