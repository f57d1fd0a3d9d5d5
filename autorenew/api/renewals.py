from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response
from loguru import logger
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from autorenew.api.deps import get_renewal_manager, get_sync_db, get_task_worker
from autorenew.automation.executor import RenewalResult
from autorenew.automation.worker import TaskWorker
from autorenew.config import get_settings
from autorenew.db.database import get_db
from autorenew.models.account import Account
from autorenew.models.renewal_task import RenewalTask, TaskStatus
from autorenew.renewal.eligibility import is_expired, minutes_until_expiration
from autorenew.renewal.errors import AccountNotFoundError, RenewalLockedError
from autorenew.renewal.manager import RenewalQueueManager
from autorenew.renewal.tasks import claim_next_task

router = APIRouter(prefix="/api/renewals", tags=["renewals"])


class ScheduledRenewalResponse(BaseModel):
    id: int
    system_id: str
    username: str
    expiration: Optional[datetime]
    minutes_until_expiration: Optional[int]
    is_expired: bool
    last_renewal_at: Optional[datetime]
    renewal_count: int


class TaskResponse(BaseModel):
    id: int
    account_id: int
    username: str
    password: str
    status: str
    attempts: int
    created_at: datetime
    claimed_at: Optional[datetime]
    metadata: Dict[str, Any]


class CompleteTaskRequest(BaseModel):
    success: bool
    error: Optional[str] = None
    screenshot_path: Optional[str] = None
    new_expiration: Optional[datetime] = None


def _task_response(task: RenewalTask) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        account_id=task.account_id,
        username=task.username,
        password=task.password,
        status=task.status.value,
        attempts=task.attempts,
        created_at=task.created_at,
        claimed_at=task.claimed_at,
        metadata=task.task_metadata or {},
    )


@router.get("/queue")
async def get_queue(manager: RenewalQueueManager = Depends(get_renewal_manager)):
    return manager.snapshot()


@router.delete("/queue")
async def clear_queue(manager: RenewalQueueManager = Depends(get_renewal_manager)):
    removed = manager.clear()
    return {"removed": removed}


@router.post("/{system_id}/force", status_code=202)
async def force_renew(
    system_id: str, manager: RenewalQueueManager = Depends(get_renewal_manager)
):
    try:
        item = manager.force_renew(system_id)
    except AccountNotFoundError:
        raise HTTPException(status_code=404, detail=f"找不到系統 {system_id}")
    except RenewalLockedError:
        raise HTTPException(status_code=409, detail=f"系統 {system_id} 正在續約中")
    return item.to_dict()


@router.get("/scheduled", response_model=List[ScheduledRenewalResponse])
async def list_scheduled(db: AsyncSession = Depends(get_db)):
    now = datetime.now()
    result = await db.execute(select(Account).order_by(Account.expiration))
    accounts = result.scalars().all()
    items = []
    for account in accounts:
        minutes = None
        expired = False
        if account.expiration is not None:
            minutes = int(minutes_until_expiration(account.expiration, now))
            expired = is_expired(account.expiration, now)
        items.append(
            ScheduledRenewalResponse(
                id=account.id,
                system_id=account.system_id,
                username=account.username,
                expiration=account.expiration,
                minutes_until_expiration=minutes,
                is_expired=expired,
                last_renewal_at=account.last_renewal_at,
                renewal_count=account.renewal_count,
            )
        )
    return items


@router.post("/tasks/claim", response_model=TaskResponse)
def claim_task(db: Session = Depends(get_sync_db)):
    settings = get_settings()
    task = claim_next_task(
        db,
        datetime.now(),
        claim_timeout=timedelta(minutes=settings.task_claim_timeout_minutes),
        max_attempts=settings.renewal_max_attempts,
    )
    if task is None:
        return Response(status_code=204)
    return _task_response(task)


@router.post("/tasks/{task_id}/complete")
def complete_task(
    task_id: int,
    body: CompleteTaskRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_sync_db),
    worker: TaskWorker = Depends(get_task_worker),
):
    task = db.get(RenewalTask, task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"找不到任務 {task_id}")
    if task.status != TaskStatus.claimed:
        raise HTTPException(
            status_code=409, detail=f"任務狀態為 {task.status.value}，無法回報結果"
        )

    result = RenewalResult(
        success=body.success,
        message=body.error or ("ok" if body.success else "reported failure"),
        screenshot_path=body.screenshot_path,
    )
    logger.bind(trace_id=task.trace_id).info(
        f"External worker reported task {task_id}: success={body.success}"
    )
    _, notice = worker.apply_result(db, task, result, new_expiration=body.new_expiration)
    if notice is not None:
        background_tasks.add_task(worker.send, notice)
    return _task_response(task)
