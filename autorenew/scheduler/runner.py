from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from autorenew.config import get_settings
from autorenew.scheduler.jobs import (
    run_expiration_scan,
    run_heartbeat,
    run_task_worker,
    run_watchdog,
)

# 同一個 job 不會重疊執行，錯過的觸發合併為一次
JOB_DEFAULTS = {"max_instances": 1, "coalesce": True}


def create_scheduler() -> AsyncIOScheduler:
    settings = get_settings()
    scheduler = AsyncIOScheduler(job_defaults=JOB_DEFAULTS)

    scheduler.add_job(
        run_expiration_scan,
        "interval",
        seconds=settings.scan_interval_seconds,
        id="expiration_scan",
        name="Expiration Scan",
    )

    if settings.automation_enabled:
        scheduler.add_job(
            run_heartbeat,
            "interval",
            seconds=settings.heartbeat_interval_seconds,
            id="automation_heartbeat",
            name="Automation Heartbeat",
        )

        scheduler.add_job(
            run_watchdog,
            "interval",
            seconds=settings.watchdog_interval_seconds,
            id="automation_watchdog",
            name="Automation Watchdog",
        )

        scheduler.add_job(
            run_task_worker,
            "interval",
            seconds=settings.worker_interval_seconds,
            id="task_worker",
            name="Renewal Task Worker",
        )

    logger.info(f"Scheduler configured with {len(scheduler.get_jobs())} jobs")
    return scheduler


def start_scheduler() -> AsyncIOScheduler:
    """Must be called from a running event loop."""
    scheduler = create_scheduler()
    scheduler.start()
    logger.info("Scheduler started")
    return scheduler
