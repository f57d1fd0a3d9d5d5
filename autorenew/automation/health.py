from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from autorenew.automation.errors import InteractiveChallengeError, LoginError
from autorenew.automation.executor import PortalExecutor
from autorenew.models.automation_health import AutomationHealth
from autorenew.models.notification_suppression import NotificationType
from autorenew.notifications.formatter import (
    format_login_challenge,
    format_restart_failed,
)
from autorenew.notifications.gateway import NotificationGateway

AUTOMATION_ENTITY = "automation"


def get_or_create_health(session: Session) -> AutomationHealth:
    health = session.query(AutomationHealth).first()
    if health is None:
        health = AutomationHealth(is_active=False, is_logged_in=False)
        session.add(health)
        session.flush()
    return health


def record_health(
    session: Session,
    is_active: bool,
    is_logged_in: bool,
    heartbeat: Optional[datetime],
    current_url: Optional[str],
    last_error: Optional[str],
) -> AutomationHealth:
    health = get_or_create_health(session)
    health.is_active = is_active
    health.is_logged_in = is_logged_in
    if heartbeat is not None:
        health.last_heartbeat = heartbeat
    health.current_url = current_url
    health.last_error = last_error
    session.commit()
    return health


class HealthMonitor:
    """Heartbeat and watchdog for the portal browser session."""

    def __init__(
        self,
        executor: PortalExecutor,
        gateway: NotificationGateway,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.executor = executor
        self.gateway = gateway
        self.session_factory = session_factory
        self.clock = clock
        self.sleep = sleep
        self._last_logged_in = False

    async def start_session(self) -> None:
        """Launch the browser and log in once; failures are left for the watchdog."""
        try:
            await self.executor.start()
            await self._try_login()
        except Exception as e:
            self.executor.last_error = str(e)
            logger.error(f"Could not start automation session: {e}")
        self._last_logged_in = self.executor.is_running and await self._safe_is_logged_in()
        self._persist(self._last_logged_in)

    async def _safe_is_logged_in(self) -> bool:
        if not self.executor.is_running:
            return False
        return await self.executor.is_logged_in()

    async def _try_login(self) -> bool:
        try:
            return await self.executor.login()
        except InteractiveChallengeError as e:
            payload = format_login_challenge(str(e), e.screenshot_path, self.clock())
            await self.gateway.notify(
                NotificationType.login_challenge,
                AUTOMATION_ENTITY,
                payload["text"],
                embed=payload["embed"],
            )
            return False
        except LoginError as e:
            self.executor.last_error = str(e)
            logger.error(f"Portal login failed: {e}")
            return False

    def _persist(self, is_logged_in: bool) -> None:
        with self.session_factory() as session:
            record_health(
                session,
                is_active=self.executor.is_running,
                is_logged_in=is_logged_in,
                heartbeat=self.clock(),
                current_url=self.executor.current_url,
                last_error=self.executor.last_error,
            )

    async def heartbeat(self) -> bool:
        """Check the login and try one re-login; always store the snapshot.

        While a renewal drives the page the last known login state is stored
        instead of touching the page.
        """
        if self.executor.busy:
            logger.debug("Renewal in progress, heartbeat keeps last login state")
            is_logged_in = self._last_logged_in
        else:
            is_logged_in = False
            try:
                if self.executor.is_running:
                    is_logged_in = await self.executor.is_logged_in()
                    if not is_logged_in and not self.executor.login_blocked:
                        logger.warning("Portal session logged out, logging in again")
                        is_logged_in = await self._try_login()
            except Exception as e:
                self.executor.last_error = str(e)
                logger.error(f"Heartbeat failed: {e}")
            self._last_logged_in = is_logged_in

        try:
            self._persist(is_logged_in)
        except Exception as e:
            logger.error(f"Could not store automation health: {e}")
        return is_logged_in

    async def watchdog(self) -> bool:
        """Restart the browser when it stopped answering.

        Skipped while a renewal is running, since page navigation can fail the
        health check.

        Returns:
            True if the session is healthy after the check.
        """
        if self.executor.busy:
            logger.debug("Renewal in progress, watchdog check skipped")
            return True
        if await self.executor.is_healthy():
            return True

        logger.warning("Automation session unhealthy, restarting")
        try:
            await self.executor.restart(sleep=self.sleep)
            await self._try_login()
            logger.info("Automation session restarted")
            return True
        except Exception as e:
            self.executor.last_error = f"Restart failed: {e}"
            logger.error(self.executor.last_error)
            try:
                with self.session_factory() as session:
                    record_health(
                        session,
                        is_active=False,
                        is_logged_in=False,
                        heartbeat=None,
                        current_url=self.executor.current_url,
                        last_error=self.executor.last_error,
                    )
            except Exception as db_error:
                logger.error(f"Could not store automation health: {db_error}")

            payload = format_restart_failed(str(e), self.clock())
            await self.gateway.notify(
                NotificationType.restart_failed,
                AUTOMATION_ENTITY,
                payload["text"],
                embed=payload["embed"],
            )
            return False
