from unittest.mock import AsyncMock, MagicMock

import pytest

from autorenew.automation.errors import InteractiveChallengeError, LoginError
from autorenew.automation.health import HealthMonitor, record_health
from autorenew.models import AutomationHealth, NotificationType


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.is_running = True
    executor.login_blocked = False
    executor.busy = False
    executor.last_error = None
    executor.current_url = "https://onlineoffice.zip/#/dashboard"
    executor.start = AsyncMock()
    executor.is_logged_in = AsyncMock(return_value=True)
    executor.login = AsyncMock(return_value=True)
    executor.is_healthy = AsyncMock(return_value=True)
    executor.restart = AsyncMock()
    return executor


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.notify = AsyncMock(return_value=True)
    return gateway


@pytest.fixture
def monitor(executor, gateway, session_factory, clock):
    return HealthMonitor(executor, gateway, session_factory, clock=clock, sleep=AsyncMock())


def _health(session_factory):
    with session_factory() as session:
        return session.query(AutomationHealth).one()


class TestRecordHealth:
    def test_creates_singleton_and_updates(self, session_factory, clock):
        with session_factory() as session:
            record_health(session, True, True, clock.now, "https://a", None)
            record_health(session, True, False, None, "https://b", "logged out")

        with session_factory() as session:
            assert session.query(AutomationHealth).count() == 1
        health = _health(session_factory)
        assert health.is_logged_in is False
        assert health.last_heartbeat == clock.now
        assert health.current_url == "https://b"
        assert health.last_error == "logged out"


class TestHeartbeat:
    async def test_logged_in(self, monitor, executor, session_factory, clock):
        assert await monitor.heartbeat() is True

        executor.login.assert_not_awaited()
        health = _health(session_factory)
        assert health.is_active is True
        assert health.is_logged_in is True
        assert health.last_heartbeat == clock.now
        assert health.current_url == "https://onlineoffice.zip/#/dashboard"

    async def test_single_relogin_attempt(self, monitor, executor, session_factory):
        executor.is_logged_in.return_value = False

        assert await monitor.heartbeat() is True

        executor.login.assert_awaited_once()
        assert _health(session_factory).is_logged_in is True

    async def test_relogin_failure_recorded(self, monitor, executor, session_factory):
        executor.is_logged_in.return_value = False
        executor.login.side_effect = LoginError("bad credentials")

        assert await monitor.heartbeat() is False

        executor.login.assert_awaited_once()
        health = _health(session_factory)
        assert health.is_logged_in is False
        assert health.last_error == "bad credentials"

    async def test_blocked_login_not_retried(self, monitor, executor, session_factory):
        executor.is_logged_in.return_value = False
        executor.login_blocked = True

        await monitor.heartbeat()

        executor.login.assert_not_awaited()
        assert _health(session_factory).is_logged_in is False

    async def test_challenge_escalated(self, monitor, executor, gateway):
        executor.is_logged_in.return_value = False
        executor.login.side_effect = InteractiveChallengeError("captcha", "/tmp/captcha.png")

        await monitor.heartbeat()

        gateway.notify.assert_awaited_once()
        assert gateway.notify.await_args.args[0] == NotificationType.login_challenge
        embed = gateway.notify.await_args.kwargs["embed"]
        assert any(field["value"] == "/tmp/captcha.png" for field in embed["fields"])

    async def test_stopped_browser_still_recorded(self, monitor, executor, session_factory):
        executor.is_running = False
        executor.current_url = None

        assert await monitor.heartbeat() is False

        executor.is_logged_in.assert_not_awaited()
        health = _health(session_factory)
        assert health.is_active is False
        assert health.is_logged_in is False

    async def test_renewal_in_progress_keeps_last_state(
        self, monitor, executor, session_factory
    ):
        await monitor.heartbeat()
        executor.busy = True
        executor.is_logged_in.return_value = False

        assert await monitor.heartbeat() is True

        executor.is_logged_in.assert_awaited_once()
        executor.login.assert_not_awaited()
        assert _health(session_factory).is_logged_in is True


class TestWatchdog:
    async def test_renewal_in_progress_not_restarted(self, monitor, executor):
        executor.busy = True
        executor.is_healthy.return_value = False

        assert await monitor.watchdog() is True

        executor.is_healthy.assert_not_awaited()
        executor.restart.assert_not_awaited()

    async def test_healthy_no_restart(self, monitor, executor):
        assert await monitor.watchdog() is True
        executor.restart.assert_not_awaited()

    async def test_unhealthy_restarts_and_logs_in(self, monitor, executor, gateway):
        executor.is_healthy.return_value = False

        assert await monitor.watchdog() is True

        executor.restart.assert_awaited_once_with(sleep=monitor.sleep)
        executor.login.assert_awaited_once()
        gateway.notify.assert_not_awaited()

    async def test_restart_failure_notified(self, monitor, executor, gateway, session_factory):
        executor.is_healthy.return_value = False
        executor.restart.side_effect = RuntimeError("chromium crashed")

        assert await monitor.watchdog() is False

        gateway.notify.assert_awaited_once()
        assert gateway.notify.await_args.args[0] == NotificationType.restart_failed
        health = _health(session_factory)
        assert health.is_active is False
        assert "chromium crashed" in health.last_error


class TestStartSession:
    async def test_start_failure_is_contained(self, monitor, executor, session_factory):
        executor.start.side_effect = RuntimeError("no display")
        executor.is_running = False

        await monitor.start_session()

        health = _health(session_factory)
        assert health.is_active is False
        assert health.last_error == "no display"
