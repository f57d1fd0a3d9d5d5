from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from autorenew.config import get_settings
from autorenew.models.account import Account
from autorenew.renewal.eligibility import AccountSnapshot, is_renewal_candidate
from autorenew.renewal.errors import AccountNotFoundError, RenewalLockedError
from autorenew.renewal.queue import QueueStatus, RenewalQueue, RenewalQueueItem
from autorenew.renewal.tasks import (
    create_task,
    find_active_task,
    make_trace_id,
    release_stale_claims,
)

SOURCE_SCANNER = "scanner"
SOURCE_FORCE = "force"


class RenewalQueueManager:
    """Owns the renewal queue and lock, and turns queue items into durable tasks.

    ``dispatch`` and ``force_renew`` are plain functions: nothing awaits between
    the lock check and the lock write, so two callers on the event loop cannot
    both pass the check.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = get_settings()
        self.session_factory = session_factory
        self.clock = clock
        self.sleep = sleep
        self.queue = RenewalQueue(
            error_grace=timedelta(minutes=self.settings.error_grace_minutes)
        )
        self.is_running = False

    # 佇列操作

    def enqueue(self, account: AccountSnapshot) -> RenewalQueueItem:
        return self.queue.enqueue(account, self.clock())

    def mark_processing(self, system_id: str) -> Optional[RenewalQueueItem]:
        return self.queue.mark_processing(system_id, self.clock())

    def mark_completed(self, system_id: str) -> Optional[RenewalQueueItem]:
        return self.queue.mark_completed(system_id, self.clock())

    def mark_error(self, system_id: str, reason: str) -> Optional[RenewalQueueItem]:
        return self.queue.mark_error(system_id, reason, self.clock())

    def cleanup(self) -> int:
        return self.queue.cleanup(self.clock())

    def clear(self) -> int:
        removed = self.queue.clear()
        logger.info(f"Cleared {removed} queue items")
        return removed

    def snapshot(self) -> Dict[str, Any]:
        return self.queue.snapshot(is_running=self.is_running)

    def is_locked(self, account_id: int) -> bool:
        return self.queue.is_locked(account_id, self.clock())

    def record_scan(self, interval_seconds: int) -> None:
        now = self.clock()
        self.queue.last_scan_at = now
        self.queue.next_scan_at = now + timedelta(seconds=interval_seconds)

    # 派送

    def dispatch(
        self,
        account: AccountSnapshot,
        trace_id: Optional[str] = None,
        source: str = SOURCE_SCANNER,
        advance_minutes: Optional[int] = None,
    ) -> bool:
        """Persist a pending renewal task for ``account``.

        Returns:
            False if the account is locked and nothing was done, True otherwise
            (task created, deferred to an existing task, or no longer due).
        """
        now = self.clock()
        trace_id = trace_id or make_trace_id(account.id, now)
        log = logger.bind(trace_id=trace_id)

        if not self.queue.acquire(account.id, now):
            log.info(f"Account {account.system_id} is already being renewed, skipping")
            return False

        if self.queue.get(account.system_id) is None:
            self.queue.enqueue(account, now)
        self.queue.mark_processing(account.system_id, now)

        if advance_minutes is None:
            advance_minutes = self.settings.renewal_advance_minutes
        release_deadline = now + timedelta(minutes=self.settings.lock_release_minutes)

        try:
            with self.session_factory() as session:
                fresh = session.get(Account, account.id)
                if fresh is None:
                    raise AccountNotFoundError(account.system_id)

                if source == SOURCE_SCANNER and not is_renewal_candidate(
                    fresh.expiration, now, advance_minutes
                ):
                    log.info(f"{fresh.system_id} is no longer due (expires {fresh.expiration})")
                    self.queue.mark_completed(account.system_id, now)
                    self.queue.release(account.id)
                    return True

                release_stale_claims(
                    session,
                    now,
                    timedelta(minutes=self.settings.task_claim_timeout_minutes),
                    self.settings.renewal_max_attempts,
                )
                existing = find_active_task(session, fresh.id)
                if existing is not None:
                    log.info(
                        f"{fresh.system_id} already has task {existing.id} "
                        f"({existing.status.value}), not creating another"
                    )
                    self.queue.mark_completed(account.system_id, now)
                    self.queue.release_at(account.id, release_deadline)
                    return True

                task = create_task(session, fresh, trace_id, now, source=source)
                fresh.last_renewal_at = now
                fresh.renewal_count = (fresh.renewal_count or 0) + 1
                try:
                    session.commit()
                except IntegrityError:
                    # Another process created the active task first
                    session.rollback()
                    log.info(f"{fresh.system_id} got a task concurrently, deferring to it")
                else:
                    log.info(f"Created renewal task {task.id} for {fresh.system_id} ({source})")

            self.queue.mark_completed(account.system_id, now)
            self.queue.release_at(account.id, release_deadline)
            return True
        except Exception:
            self.queue.release(account.id)
            raise

    async def dispatch_all(
        self, accounts: List[AccountSnapshot], advance_minutes: Optional[int] = None
    ) -> Tuple[int, int]:
        """Dispatch accounts one after another, pausing between items.

        Only accounts whose queue item is still ``waiting`` are dispatched, so
        items cleared or taken over during a pause are skipped. A failing
        account is marked ``error`` and the loop moves on.

        Returns:
            (dispatched, errors)
        """
        dispatched = errors = 0
        for index, account in enumerate(accounts):
            if index > 0:
                await self.sleep(self.settings.dispatch_delay_seconds)

            item = self.queue.get(account.system_id)
            if item is None or item.status != QueueStatus.waiting:
                logger.info(f"{account.system_id} left the queue before dispatch, skipping")
                continue

            trace_id = make_trace_id(account.id, self.clock())
            try:
                if self.dispatch(account, trace_id=trace_id, advance_minutes=advance_minutes):
                    dispatched += 1
            except Exception as e:
                errors += 1
                logger.bind(trace_id=trace_id).error(
                    f"Dispatch failed for {account.system_id}: {e}"
                )
                self.mark_error(account.system_id, str(e))
        return dispatched, errors

    def force_renew(self, system_id: str) -> RenewalQueueItem:
        """Renew one account on demand.

        Skips the due-window, overdue-client and cooldown rules but never the
        renewing lock or the active-task check.

        Raises:
            AccountNotFoundError: no account with this system id.
            RenewalLockedError: a renewal for the account is in flight.
        """
        with self.session_factory() as session:
            account = session.query(Account).filter(Account.system_id == system_id).first()
            if account is None:
                raise AccountNotFoundError(system_id)
            snapshot = AccountSnapshot.from_model(account)

        item = self.queue.get(system_id)
        if self.is_locked(snapshot.id) or (
            item is not None and item.status == QueueStatus.processing
        ):
            raise RenewalLockedError(system_id)

        now = self.clock()
        trace_id = make_trace_id(snapshot.id, now)
        logger.bind(trace_id=trace_id).info(f"Force renewal requested for {system_id}")

        item = self.queue.enqueue(snapshot, now)
        try:
            self.dispatch(snapshot, trace_id=trace_id, source=SOURCE_FORCE)
        except Exception as e:
            self.queue.mark_error(system_id, str(e), self.clock())
            raise
        return item
