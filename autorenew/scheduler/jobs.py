from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from loguru import logger
from sqlalchemy.orm import Session

from autorenew.automation.executor import PortalExecutor
from autorenew.automation.health import HealthMonitor
from autorenew.automation.worker import TaskWorker
from autorenew.db.database import SyncSessionLocal
from autorenew.notifications.gateway import NotificationGateway
from autorenew.renewal.manager import RenewalQueueManager
from autorenew.renewal.scanner import ExpirationScanner


def get_sync_session() -> Session:
    return SyncSessionLocal()


@dataclass
class Services:
    gateway: NotificationGateway
    manager: RenewalQueueManager
    scanner: ExpirationScanner
    executor: PortalExecutor
    monitor: HealthMonitor
    worker: TaskWorker


@lru_cache
def get_services() -> Services:
    """Process-wide orchestration objects, shared by the scheduler jobs and the API."""
    gateway = NotificationGateway(get_sync_session)
    manager = RenewalQueueManager(get_sync_session)
    executor = PortalExecutor()
    return Services(
        gateway=gateway,
        manager=manager,
        scanner=ExpirationScanner(manager, gateway, get_sync_session),
        executor=executor,
        monitor=HealthMonitor(executor, gateway, get_sync_session),
        worker=TaskWorker(executor, manager, gateway, get_sync_session),
    )


async def run_expiration_scan():
    """每分鐘：掃描即將到期的帳號並派送續約"""
    await get_services().scanner.run_tick()


async def run_heartbeat():
    """每 30 秒：檢查登入狀態並寫入健康紀錄"""
    try:
        await get_services().monitor.heartbeat()
    except Exception as e:
        logger.error(f"Heartbeat job failed: {e}")


async def run_watchdog():
    """每分鐘：瀏覽器無回應時重新啟動"""
    try:
        await get_services().monitor.watchdog()
    except Exception as e:
        logger.error(f"Watchdog job failed: {e}")


async def run_task_worker():
    """每 10 秒：執行一筆待處理的續約任務"""
    try:
        await get_services().worker.run_once()
    except Exception as e:
        logger.error(f"Task worker job failed: {e}")
