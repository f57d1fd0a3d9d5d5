"""Durable renewal task store.

Shared by the queue manager (creates tasks), the in-process worker and the
external-worker API (claim / complete / fail).
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.orm import Session

from autorenew.models.account import Account
from autorenew.models.renewal_task import ACTIVE_TASK_STATUSES, RenewalTask, TaskStatus


def make_trace_id(account_id: int, now: datetime) -> str:
    return f"renewal_{account_id}_{int(now.timestamp() * 1000)}"


def find_active_task(session: Session, account_id: int) -> Optional[RenewalTask]:
    return (
        session.query(RenewalTask)
        .filter(
            RenewalTask.account_id == account_id,
            RenewalTask.status.in_(ACTIVE_TASK_STATUSES),
        )
        .first()
    )


def create_task(
    session: Session,
    account: Account,
    trace_id: str,
    now: datetime,
    source: str = "scanner",
) -> RenewalTask:
    """Add a pending task carrying a snapshot of the account credentials.

    The caller commits.
    """
    metadata: Dict[str, Any] = {
        "trace_id": trace_id,
        "system_id": account.system_id,
        "original_expiration": account.expiration.isoformat() if account.expiration else None,
        "requested_at": now.isoformat(),
        "source": source,
    }
    task = RenewalTask(
        account_id=account.id,
        username=account.username,
        password=account.password,
        status=TaskStatus.pending,
        attempts=0,
        task_metadata=metadata,
        created_at=now,
    )
    session.add(task)
    session.flush()
    return task


def release_stale_claims(
    session: Session, now: datetime, claim_timeout: timedelta, max_attempts: int
) -> int:
    """Take back claims nobody reported on within ``claim_timeout``.

    A stale task goes back to ``pending``, or to ``failed`` once its attempts
    are used up, so the account can get a fresh task.
    """
    stale = (
        session.query(RenewalTask)
        .filter(
            RenewalTask.status == TaskStatus.claimed,
            RenewalTask.claimed_at < now - claim_timeout,
        )
        .all()
    )
    for task in stale:
        task.last_error = f"claim expired after {claim_timeout}"
        task.claimed_at = None
        if (task.attempts or 0) >= max_attempts:
            task.status = TaskStatus.failed
            task.completed_at = now
        else:
            task.status = TaskStatus.pending
        logger.bind(trace_id=task.trace_id).warning(
            f"Task {task.id} claim expired, now {task.status.value}"
        )
    if stale:
        session.commit()
    return len(stale)


def claim_next_task(
    session: Session,
    now: datetime,
    claim_timeout: Optional[timedelta] = None,
    max_attempts: int = 3,
) -> Optional[RenewalTask]:
    """Move the oldest pending task to ``claimed`` and count the attempt.

    With ``claim_timeout`` set, expired claims are released first.
    """
    if claim_timeout is not None:
        release_stale_claims(session, now, claim_timeout, max_attempts)

    task = (
        session.query(RenewalTask)
        .filter(RenewalTask.status == TaskStatus.pending)
        .order_by(RenewalTask.created_at, RenewalTask.id)
        .first()
    )
    if task is None:
        return None

    task.status = TaskStatus.claimed
    task.claimed_at = now
    task.attempts = (task.attempts or 0) + 1
    session.commit()
    logger.bind(trace_id=task.trace_id).info(
        f"Claimed task {task.id} for account {task.account_id} (attempt {task.attempts})"
    )
    return task


def complete_task(
    session: Session,
    task: RenewalTask,
    now: datetime,
    new_expiration: Optional[datetime] = None,
) -> Account:
    """Mark the task done and move the account expiration forward."""
    task.status = TaskStatus.done
    task.completed_at = now
    task.last_error = None

    account = session.get(Account, task.account_id)
    if new_expiration is not None:
        account.expiration = new_expiration
    account.last_renewal_at = now
    session.commit()
    logger.bind(trace_id=task.trace_id).info(
        f"Task {task.id} done, {account.system_id} expires {account.expiration}"
    )
    return account


def fail_task(
    session: Session, task: RenewalTask, error: str, now: datetime, max_attempts: int
) -> bool:
    """Record a failed attempt.

    Returns:
        True when the task is given up (``failed``), False when it went back
        to ``pending`` for another attempt.
    """
    task.last_error = error
    give_up = (task.attempts or 0) >= max_attempts
    if give_up:
        task.status = TaskStatus.failed
        task.completed_at = now
    else:
        task.status = TaskStatus.pending
        task.claimed_at = None
    session.commit()

    log = logger.bind(trace_id=task.trace_id)
    if give_up:
        log.error(f"Task {task.id} failed after {task.attempts} attempts: {error}")
    else:
        log.warning(f"Task {task.id} attempt {task.attempts} failed, re-queued: {error}")
    return give_up
