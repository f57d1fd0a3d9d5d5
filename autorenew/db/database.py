from pathlib import Path
from typing import AsyncIterator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from autorenew.config import get_settings

settings = get_settings()


class Base(DeclarativeBase):
    pass


def _ensure_sqlite_dir(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)


_ensure_sqlite_dir(settings.database_url)

# 非同步引擎（給 API 讀取使用）
async_engine = create_async_engine(settings.database_url)
AsyncSessionLocal = async_sessionmaker(
    async_engine, class_=AsyncSession, expire_on_commit=False
)

# 同步引擎（給排程與續約核心使用）
# API 的同步路由在 threadpool 執行，SQLite 連線需允許跨執行緒
_sync_connect_args = (
    {"check_same_thread": False}
    if make_url(settings.sync_database_url).get_backend_name() == "sqlite"
    else {}
)
sync_engine = create_engine(settings.sync_database_url, connect_args=_sync_connect_args)
SyncSessionLocal = sessionmaker(bind=sync_engine, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    # Import models so every table is registered on Base.metadata
    import autorenew.models  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
