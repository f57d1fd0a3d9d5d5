from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from autorenew.api.deps import require_admin_key
from autorenew.api.router import api_router
from autorenew.config import get_settings
from autorenew.db.database import init_db
from autorenew.logging_setup import setup_logging
from autorenew.scheduler.jobs import get_services
from autorenew.scheduler.runner import start_scheduler

settings = get_settings()
scheduler: Optional[object] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler
    setup_logging()
    logger.info("Starting up...")
    await init_db()

    services = get_services()
    if settings.automation_enabled:
        # 瀏覽器啟動失敗不影響 API，交給 watchdog 重試
        await services.monitor.start_session()

    scheduler = start_scheduler()

    yield

    if scheduler:
        scheduler.shutdown(wait=False)
    if services.executor.is_running:
        await services.executor.stop()
    logger.info("Shutting down...")


# Disable interactive docs in production
docs_url = None if settings.is_production else "/docs"
redoc_url = None if settings.is_production else "/redoc"

app = FastAPI(
    title="Auto Renewal API",
    description="Subscription renewal orchestrator for the reseller portal",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=docs_url,
    redoc_url=redoc_url,
)

# Configure CORS origins
default_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
if settings.cors_origins:
    cors_origins = [origin.strip() for origin in settings.cors_origins.split(",")]
else:
    cors_origins = default_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Key"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.get("/api/admin/status", dependencies=[Depends(require_admin_key)])
async def admin_status():
    jobs = []
    if scheduler:
        for job in scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": str(job.next_run_time) if job.next_run_time else None,
                }
            )

    return {
        "scheduler_running": scheduler is not None and scheduler.running,
        "jobs": jobs,
    }
