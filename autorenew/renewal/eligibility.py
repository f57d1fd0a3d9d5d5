"""Rules deciding which accounts the scanner hands to the renewal pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from autorenew.models.account import Account


@dataclass(frozen=True)
class AccountSnapshot:
    """Detached copy of an account row, safe to use after the session closes."""

    id: int
    system_id: str
    username: str
    expiration: Optional[datetime]
    last_renewal_at: Optional[datetime] = None
    renewal_count: int = 0

    @classmethod
    def from_model(cls, account: Account) -> "AccountSnapshot":
        return cls(
            id=account.id,
            system_id=account.system_id,
            username=account.username,
            expiration=account.expiration,
            last_renewal_at=account.last_renewal_at,
            renewal_count=account.renewal_count or 0,
        )


def minutes_until_expiration(expiration: datetime, now: datetime) -> float:
    return (expiration - now).total_seconds() / 60


def is_expired(expiration: datetime, now: datetime) -> bool:
    return expiration <= now


def is_renewal_candidate(expiration: Optional[datetime], now: datetime, advance_minutes: int) -> bool:
    """Expired, or expiring within the look-ahead window."""
    if expiration is None:
        return False
    if is_expired(expiration, now):
        return True
    return minutes_until_expiration(expiration, now) <= advance_minutes


def is_within_cooldown(
    account: AccountSnapshot, now: datetime, cooldown_hours: int
) -> bool:
    """A not-yet-expired account renewed recently is left alone.

    Expired accounts are never held back by the cooldown.
    """
    if account.expiration is not None and is_expired(account.expiration, now):
        return False
    if account.last_renewal_at is None or cooldown_hours <= 0:
        return False
    return now - account.last_renewal_at < timedelta(hours=cooldown_hours)


def has_overdue_client(
    due_dates: Iterable[Optional[datetime]], now: datetime, overdue_days: int
) -> bool:
    """True if any linked client's billing due date passed more than ``overdue_days`` ago."""
    cutoff = now - timedelta(days=overdue_days)
    return any(due is not None and due < cutoff for due in due_dates)


def order_work_list(accounts: Iterable[AccountSnapshot], now: datetime) -> List[AccountSnapshot]:
    """Expired accounts first, then the soonest to expire."""

    def sort_key(account: AccountSnapshot):
        expiration = account.expiration or datetime.max
        return (0 if is_expired(expiration, now) else 1, expiration)

    return sorted(accounts, key=sort_key)
