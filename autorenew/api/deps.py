from typing import Iterator

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from autorenew.automation.executor import PortalExecutor
from autorenew.automation.worker import TaskWorker
from autorenew.config import get_settings
from autorenew.renewal.manager import RenewalQueueManager
from autorenew.scheduler.jobs import get_services, get_sync_session


async def require_admin_key(x_admin_key: str = Header(None)) -> None:
    settings = get_settings()
    # Require admin key in production
    if settings.is_production:
        if not settings.admin_api_key:
            raise HTTPException(status_code=503, detail="Admin API not configured")
        if x_admin_key != settings.admin_api_key:
            raise HTTPException(status_code=401, detail="Invalid admin key")


def get_sync_db() -> Iterator[Session]:
    with get_sync_session() as session:
        yield session


def get_renewal_manager() -> RenewalQueueManager:
    return get_services().manager


def get_executor() -> PortalExecutor:
    return get_services().executor


def get_task_worker() -> TaskWorker:
    return get_services().worker
