from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy.orm import Session

from autorenew.config import get_settings
from autorenew.models.account import Account
from autorenew.models.automation_config import AutomationConfig
from autorenew.models.automation_health import AutomationHealth
from autorenew.models.client import Client, ClientSlot
from autorenew.models.notification_suppression import NotificationType
from autorenew.notifications.formatter import (
    format_automation_offline,
    format_automation_stuck,
    format_system_expired,
    format_system_expiring,
)
from autorenew.notifications.gateway import NotificationGateway
from autorenew.renewal.eligibility import (
    AccountSnapshot,
    has_overdue_client,
    is_expired,
    is_renewal_candidate,
    is_within_cooldown,
    minutes_until_expiration,
    order_work_list,
)
from autorenew.renewal.manager import RenewalQueueManager

AUTOMATION_ENTITY = "automation"


@dataclass
class HealthView:
    is_active: bool
    is_logged_in: bool
    last_heartbeat: Optional[datetime]
    current_url: Optional[str]


@dataclass
class ScanResult:
    skipped: Optional[str] = None
    candidates: int = 0
    enqueued: int = 0
    dispatched: int = 0
    errors: int = 0


class ExpirationScanner:
    """Finds accounts that are expired or about to expire and feeds the queue."""

    def __init__(
        self,
        manager: RenewalQueueManager,
        gateway: NotificationGateway,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = get_settings()
        self.manager = manager
        self.gateway = gateway
        self.session_factory = session_factory
        self.clock = clock

    async def run_tick(self) -> ScanResult:
        """One scan. Never raises, so the next tick always runs."""
        self.manager.is_running = True
        try:
            return await self._tick()
        except Exception as e:
            logger.exception(f"Expiration scan failed: {e}")
            return ScanResult(skipped="error")
        finally:
            self.manager.is_running = False

    async def _tick(self) -> ScanResult:
        self.manager.record_scan(self.settings.scan_interval_seconds)
        self.manager.cleanup()

        with self.session_factory() as session:
            config = session.query(AutomationConfig).first()
            if config is None or not config.is_enabled:
                logger.debug("Auto renewal disabled, skipping scan")
                return ScanResult(skipped="disabled")
            if config.is_fixed:
                logger.debug("Fixed-points distribution mode, skipping scan")
                return ScanResult(skipped="fixed-points")
            advance_minutes = config.renewal_advance_minutes

            health = self._read_health(session)
            accounts, due_dates = self._load_accounts(session)

        await self.check_health(health)

        now = self.clock()
        eligible = self.select_eligible(accounts, due_dates, now, advance_minutes)
        result = ScanResult(candidates=len(eligible))
        if not eligible:
            logger.debug("No accounts need renewal")
            return result

        logger.info(f"Found {len(eligible)} accounts needing renewal")
        for account in eligible:
            if self.manager.queue.has_active(account.system_id):
                continue
            self.manager.enqueue(account)
            result.enqueued += 1
            await self._alert_on_insert(account, now)

        work_list = [
            account
            for account in order_work_list(eligible, now)
            if self.manager.queue.has_active(account.system_id)
        ]
        result.dispatched, result.errors = await self.manager.dispatch_all(
            work_list, advance_minutes=advance_minutes
        )

        logger.info(
            f"Scan done: {result.enqueued} queued, {result.dispatched} dispatched, "
            f"{result.errors} errors"
        )
        return result

    def _read_health(self, session: Session) -> Optional[HealthView]:
        health = session.query(AutomationHealth).first()
        if health is None:
            return None
        return HealthView(
            is_active=health.is_active,
            is_logged_in=health.is_logged_in,
            last_heartbeat=health.last_heartbeat,
            current_url=health.current_url,
        )

    def _load_accounts(self, session: Session):
        accounts = [
            AccountSnapshot.from_model(account)
            for account in session.query(Account).filter(Account.expiration.isnot(None)).all()
        ]
        due_dates: Dict[int, List[Optional[datetime]]] = {}
        rows = (
            session.query(ClientSlot.account_id, Client.due_date)
            .join(Client, ClientSlot.client_id == Client.id)
            .filter(ClientSlot.account_id.isnot(None))
            .all()
        )
        for account_id, due_date in rows:
            due_dates.setdefault(account_id, []).append(due_date)
        return accounts, due_dates

    def select_eligible(
        self,
        accounts: List[AccountSnapshot],
        due_dates: Dict[int, List[Optional[datetime]]],
        now: datetime,
        advance_minutes: int,
    ) -> List[AccountSnapshot]:
        eligible = []
        for account in accounts:
            if not is_renewal_candidate(account.expiration, now, advance_minutes):
                continue
            if has_overdue_client(
                due_dates.get(account.id, []), now, self.settings.client_overdue_days
            ):
                logger.debug(f"{account.system_id} has an overdue client, excluded")
                continue
            if is_within_cooldown(account, now, self.settings.renewal_cooldown_hours):
                logger.debug(f"{account.system_id} renewed at {account.last_renewal_at}, cooling down")
                continue
            if self.manager.is_locked(account.id):
                continue
            eligible.append(account)
        return eligible

    async def _alert_on_insert(self, account: AccountSnapshot, now: datetime) -> None:
        minutes = minutes_until_expiration(account.expiration, now)
        if is_expired(account.expiration, now):
            payload = format_system_expired(
                account.system_id, account.username, int(-minutes), now
            )
            await self.gateway.notify(
                NotificationType.system_expired,
                account.system_id,
                payload["text"],
                embed=payload["embed"],
            )
        elif minutes <= self.settings.expiring_soon_minutes:
            payload = format_system_expiring(
                account.system_id, account.username, int(minutes), now
            )
            await self.gateway.notify(
                NotificationType.system_expiring,
                account.system_id,
                payload["text"],
                embed=payload["embed"],
            )

    async def check_health(self, health: Optional[HealthView]) -> None:
        """Alert when the automation session looks dead or stuck. Scanning goes on."""
        now = self.clock()
        stale_after = timedelta(minutes=self.settings.heartbeat_stale_minutes)

        reason = None
        if health is None:
            reason = "No automation health record"
        elif health.last_heartbeat is None or now - health.last_heartbeat > stale_after:
            reason = f"No heartbeat since {health.last_heartbeat or 'startup'}"
        elif not health.is_active:
            reason = "Automation session is not active"
        elif not health.is_logged_in:
            reason = "Automation session is logged out"

        if reason is not None:
            logger.warning(f"Automation offline: {reason}")
            payload = format_automation_offline(
                reason,
                health.last_heartbeat if health else None,
                health.current_url if health else None,
                now,
            )
            await self.gateway.notify(
                NotificationType.automation_offline,
                AUTOMATION_ENTITY,
                payload["text"],
                embed=payload["embed"],
            )
            return

        if health.current_url and "login" in health.current_url.lower():
            logger.warning(f"Automation stuck on {health.current_url}")
            payload = format_automation_stuck(health.current_url, now)
            await self.gateway.notify(
                NotificationType.automation_stuck,
                AUTOMATION_ENTITY,
                payload["text"],
                embed=payload["embed"],
            )
