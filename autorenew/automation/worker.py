from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from loguru import logger
from sqlalchemy.orm import Session

from autorenew.automation.executor import PortalExecutor, RenewalResult
from autorenew.config import get_settings
from autorenew.models.account import Account
from autorenew.models.notification_suppression import NotificationType
from autorenew.models.renewal_task import RenewalTask
from autorenew.notifications.formatter import (
    format_renewal_failed,
    format_renewal_succeeded,
)
from autorenew.notifications.gateway import NotificationGateway
from autorenew.renewal.manager import RenewalQueueManager
from autorenew.renewal.tasks import claim_next_task, complete_task, fail_task


@dataclass
class Notice:
    notification_type: NotificationType
    entity_id: Any
    payload: Dict[str, Any]


class TaskWorker:
    """Runs pending renewal tasks through the portal executor, one at a time."""

    def __init__(
        self,
        executor: PortalExecutor,
        manager: RenewalQueueManager,
        gateway: NotificationGateway,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = get_settings()
        self.executor = executor
        self.manager = manager
        self.gateway = gateway
        self.session_factory = session_factory
        self.clock = clock

    async def run_once(self) -> Optional[bool]:
        """Claim and run one task.

        Returns:
            None when nothing ran, otherwise whether the renewal succeeded.
        """
        if not await self.executor.is_healthy():
            logger.debug("Executor not healthy, leaving tasks pending")
            return None

        with self.session_factory() as session:
            task = claim_next_task(
                session,
                self.clock(),
                claim_timeout=timedelta(minutes=self.settings.task_claim_timeout_minutes),
                max_attempts=self.settings.renewal_max_attempts,
            )
            if task is None:
                return None

            try:
                result = await self.executor.renew(task.username)
            except Exception as e:
                logger.bind(trace_id=task.trace_id).exception(
                    f"Executor crashed on task {task.id}: {e}"
                )
                result = RenewalResult(False, f"executor error: {e}")

            return await self.report(session, task, result)

    async def report(
        self,
        session: Session,
        task: RenewalTask,
        result: RenewalResult,
        new_expiration: Optional[datetime] = None,
    ) -> bool:
        """Apply the outcome of one attempt and send its notification."""
        success, notice = self.apply_result(session, task, result, new_expiration)
        if notice is not None:
            await self.send(notice)
        return success

    def apply_result(
        self,
        session: Session,
        task: RenewalTask,
        result: RenewalResult,
        new_expiration: Optional[datetime] = None,
    ) -> Tuple[bool, Optional[Notice]]:
        """Write the outcome of one attempt to the task, the account and the queue.

        Database work only, so the HTTP handler for an external worker can run
        it off the event loop and send the notice afterwards.

        Returns:
            (success, notice to send or None)
        """
        now = self.clock()
        system_id = (task.task_metadata or {}).get("system_id", str(task.account_id))

        if result.success:
            if new_expiration is None:
                new_expiration = self.extended_expiration(session, task, now)
            account = complete_task(session, task, now, new_expiration=new_expiration)
            payload = format_renewal_succeeded(
                system_id, task.username, account.expiration, task.trace_id, now
            )
            return True, Notice(NotificationType.renewal_succeeded, task.id, payload)

        gave_up = fail_task(
            session, task, result.message, now, self.settings.renewal_max_attempts
        )
        if not gave_up:
            return False, None

        self.manager.mark_error(system_id, result.message)
        payload = format_renewal_failed(
            system_id,
            task.username,
            task.attempts,
            result.message,
            result.screenshot_path,
            task.trace_id,
            now,
        )
        return False, Notice(NotificationType.renewal_failed, system_id, payload)

    async def send(self, notice: Notice) -> bool:
        return await self.gateway.notify(
            notice.notification_type,
            notice.entity_id,
            notice.payload["text"],
            embed=notice.payload["embed"],
        )

    def extended_expiration(self, session: Session, task: RenewalTask, now: datetime) -> datetime:
        """New expiration after a renewal: one extension past the later of expiration and now."""
        account = session.get(Account, task.account_id)
        base = account.expiration if account.expiration and account.expiration > now else now
        return base + timedelta(hours=self.settings.renewal_extension_hours)
