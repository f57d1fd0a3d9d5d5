from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autorenew.api.deps import get_executor
from autorenew.automation.executor import PortalExecutor
from autorenew.db.database import get_db
from autorenew.models.automation_config import (
    DISTRIBUTION_FIXED_POINTS,
    DISTRIBUTION_INDIVIDUAL,
    AutomationConfig,
)
from autorenew.models.automation_health import AutomationHealth

router = APIRouter(prefix="/api/automation", tags=["automation"])


class AutomationConfigResponse(BaseModel):
    is_enabled: bool
    renewal_advance_minutes: int
    distribution_mode: str


class UpdateConfigRequest(BaseModel):
    is_enabled: Optional[bool] = None
    renewal_advance_minutes: Optional[int] = Field(default=None, ge=1, le=7 * 24 * 60)
    distribution_mode: Optional[str] = None


class AutomationStatusResponse(BaseModel):
    is_active: bool
    is_logged_in: bool
    last_heartbeat: Optional[datetime]
    current_url: Optional[str]
    last_error: Optional[str]
    browser_running: bool
    login_blocked: bool


def _config_response(config: AutomationConfig) -> AutomationConfigResponse:
    return AutomationConfigResponse(
        is_enabled=config.is_enabled,
        renewal_advance_minutes=config.renewal_advance_minutes,
        distribution_mode=config.distribution_mode,
    )


@router.get("/status", response_model=AutomationStatusResponse)
async def get_status(
    db: AsyncSession = Depends(get_db),
    executor: PortalExecutor = Depends(get_executor),
):
    result = await db.execute(select(AutomationHealth).limit(1))
    health = result.scalar_one_or_none()
    return AutomationStatusResponse(
        is_active=health.is_active if health else False,
        is_logged_in=health.is_logged_in if health else False,
        last_heartbeat=health.last_heartbeat if health else None,
        current_url=health.current_url if health else None,
        last_error=health.last_error if health else None,
        browser_running=executor.is_running,
        login_blocked=executor.login_blocked,
    )


@router.get("/config", response_model=AutomationConfigResponse)
async def get_config(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(AutomationConfig).limit(1))
    config = result.scalar_one_or_none()
    if config is None:
        # 尚未設定時視為停用
        return AutomationConfigResponse(
            is_enabled=False,
            renewal_advance_minutes=60,
            distribution_mode=DISTRIBUTION_INDIVIDUAL,
        )
    return _config_response(config)


@router.put("/config", response_model=AutomationConfigResponse)
async def update_config(body: UpdateConfigRequest, db: AsyncSession = Depends(get_db)):
    if body.distribution_mode is not None and body.distribution_mode not in (
        DISTRIBUTION_INDIVIDUAL,
        DISTRIBUTION_FIXED_POINTS,
    ):
        raise HTTPException(
            status_code=400,
            detail=f"distribution_mode 僅支援 {DISTRIBUTION_INDIVIDUAL} 或 {DISTRIBUTION_FIXED_POINTS}",
        )

    result = await db.execute(select(AutomationConfig).limit(1))
    config = result.scalar_one_or_none()
    if config is None:
        config = AutomationConfig()
        db.add(config)

    for field, value in body.model_dump(exclude_none=True).items():
        setattr(config, field, value)
    if config.is_enabled is None:
        config.is_enabled = False
    if config.renewal_advance_minutes is None:
        config.renewal_advance_minutes = 60
    if config.distribution_mode is None:
        config.distribution_mode = DISTRIBUTION_INDIVIDUAL

    await db.commit()
    await db.refresh(config)
    return _config_response(config)


@router.post("/login/unblock")
async def unblock_login(executor: PortalExecutor = Depends(get_executor)):
    was_blocked = executor.login_blocked
    executor.clear_login_block()
    return {"was_blocked": was_blocked, "login_blocked": executor.login_blocked}
