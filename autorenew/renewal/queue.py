from __future__ import annotations

import enum
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from loguru import logger

from autorenew.renewal.eligibility import AccountSnapshot, minutes_until_expiration


class QueueStatus(str, enum.Enum):
    waiting = "waiting"
    processing = "processing"
    completed = "completed"
    error = "error"


ACTIVE_STATUSES = (QueueStatus.waiting, QueueStatus.processing)

_STATUS_ORDER = {
    QueueStatus.processing: 0,
    QueueStatus.waiting: 1,
    QueueStatus.completed: 2,
    QueueStatus.error: 3,
}


@dataclass
class RenewalQueueItem:
    system_id: str
    account_id: int
    username: str
    status: QueueStatus
    expiration: Optional[datetime]
    minutes_until_expiration: Optional[int]
    added_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("expiration", "added_at", "started_at", "completed_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


class RenewalQueue:
    """In-memory renewal intents plus the "currently renewing" lock.

    Items are keyed by the external system id; the lock is keyed by account id.
    A lock entry maps to its release deadline, ``None`` meaning the renewal is
    still in flight. Expired entries are dropped on the next lookup.

    Every method is synchronous so callers running on the event loop never
    yield between a check and the write that depends on it.
    """

    def __init__(self, error_grace: timedelta = timedelta(minutes=5)):
        self.error_grace = error_grace
        self._items: Dict[str, RenewalQueueItem] = {}
        self._renewing: Dict[int, Optional[datetime]] = {}
        self.last_scan_at: Optional[datetime] = None
        self.next_scan_at: Optional[datetime] = None

    # ------------------------------------------------------------------ items

    def get(self, system_id: str) -> Optional[RenewalQueueItem]:
        return self._items.get(system_id)

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> List[RenewalQueueItem]:
        return list(self._items.values())

    def has_active(self, system_id: str) -> bool:
        item = self._items.get(system_id)
        return item is not None and item.is_active

    def enqueue(self, account: AccountSnapshot, now: datetime) -> RenewalQueueItem:
        """Add a ``waiting`` item; returns the existing one unless it is in ``error``."""
        existing = self._items.get(account.system_id)
        if existing is not None and existing.status != QueueStatus.error:
            return existing

        minutes = None
        if account.expiration is not None:
            minutes = max(int(minutes_until_expiration(account.expiration, now)), 0)

        item = RenewalQueueItem(
            system_id=account.system_id,
            account_id=account.id,
            username=account.username,
            status=QueueStatus.waiting,
            expiration=account.expiration,
            minutes_until_expiration=minutes,
            added_at=now,
        )
        self._items[account.system_id] = item
        logger.debug(f"Queued {account.system_id} ({account.username})")
        return item

    def mark_processing(self, system_id: str, now: datetime) -> Optional[RenewalQueueItem]:
        item = self._items.get(system_id)
        if item is not None:
            item.status = QueueStatus.processing
            item.started_at = now
            item.error = None
        return item

    def mark_completed(self, system_id: str, now: datetime) -> Optional[RenewalQueueItem]:
        item = self._items.get(system_id)
        if item is not None:
            item.status = QueueStatus.completed
            item.completed_at = now
        return item

    def mark_error(
        self, system_id: str, reason: str, now: datetime
    ) -> Optional[RenewalQueueItem]:
        item = self._items.get(system_id)
        if item is not None:
            item.status = QueueStatus.error
            item.error = reason
            item.completed_at = now
        return item

    def cleanup(self, now: datetime) -> int:
        """Drop completed items, and error items older than the grace window."""
        removed = []
        for system_id, item in self._items.items():
            if item.status == QueueStatus.completed:
                removed.append(system_id)
            elif item.status == QueueStatus.error:
                finished = item.completed_at or item.added_at
                if now - finished >= self.error_grace:
                    removed.append(system_id)

        for system_id in removed:
            del self._items[system_id]
        if removed:
            logger.debug(f"Queue cleanup removed {len(removed)} items")
        return len(removed)

    def clear(self) -> int:
        """Remove everything that is not ``processing``. The lock is left untouched."""
        removed = [
            system_id
            for system_id, item in self._items.items()
            if item.status != QueueStatus.processing
        ]
        for system_id in removed:
            del self._items[system_id]
        return len(removed)

    # ------------------------------------------------------------------- lock

    def is_locked(self, account_id: int, now: datetime) -> bool:
        if account_id not in self._renewing:
            return False
        deadline = self._renewing[account_id]
        if deadline is not None and deadline <= now:
            del self._renewing[account_id]
            logger.debug(f"Renewal lock released for account {account_id}")
            return False
        return True

    def acquire(self, account_id: int, now: datetime) -> bool:
        if self.is_locked(account_id, now):
            return False
        self._renewing[account_id] = None
        return True

    def release_at(self, account_id: int, deadline: datetime) -> None:
        self._renewing[account_id] = deadline

    def release(self, account_id: int) -> None:
        self._renewing.pop(account_id, None)

    def locked_accounts(self, now: datetime) -> List[int]:
        return [account_id for account_id in list(self._renewing) if self.is_locked(account_id, now)]

    # --------------------------------------------------------------- snapshot

    def snapshot(self, is_running: bool = False) -> Dict[str, Any]:
        counts = {status.value: 0 for status in QueueStatus}
        for item in self._items.values():
            counts[item.status.value] += 1

        active = sorted(
            (item for item in self._items.values() if item.is_active),
            key=lambda item: (
                _STATUS_ORDER[item.status],
                item.expiration or datetime.max,
            ),
        )
        return {
            "queue": [item.to_dict() for item in active],
            "counts": counts,
            "last_scan_at": self.last_scan_at.isoformat() if self.last_scan_at else None,
            "next_scan_at": self.next_scan_at.isoformat() if self.next_scan_at else None,
            "is_running": is_running,
        }
