from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker

from autorenew.api.deps import (
    get_executor,
    get_renewal_manager,
    get_sync_db,
    get_task_worker,
)
from autorenew.automation.worker import TaskWorker
from autorenew.db.database import Base, get_db
from autorenew.main import app
from autorenew.models import Account, AutomationHealth, NotificationType, RenewalTask
from autorenew.renewal.eligibility import AccountSnapshot
from autorenew.renewal.manager import RenewalQueueManager


@pytest.fixture
def sync_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'api.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def manager(sync_factory):
    return RenewalQueueManager(sync_factory)


@pytest.fixture
async def api(tmp_path, sync_factory, manager):
    """App client whose async and sync sessions share one SQLite file."""
    async_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    async_factory = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with async_factory() as session:
            yield session

    def override_get_sync_db():
        with sync_factory() as session:
            yield session

    gateway = MagicMock()
    gateway.notify = AsyncMock(return_value=True)
    executor = MagicMock(is_running=True, login_blocked=True)
    executor.clear_login_block = MagicMock(
        side_effect=lambda: setattr(executor, "login_blocked", False)
    )
    worker = TaskWorker(executor, manager, gateway, sync_factory)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_db] = override_get_sync_db
    app.dependency_overrides[get_renewal_manager] = lambda: manager
    app.dependency_overrides[get_executor] = lambda: executor
    app.dependency_overrides[get_task_worker] = lambda: worker

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    await async_engine.dispose()


def _add_account(sync_factory, system_id="42", minutes=30):
    with sync_factory() as session:
        session.add(
            Account(
                system_id=system_id,
                username=f"user{system_id}",
                password="secret",
                expiration=datetime.now() + timedelta(minutes=minutes),
            )
        )
        session.commit()


@pytest.mark.asyncio
async def test_health():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        resp = await ac.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


class TestRenewalsApi:
    async def test_queue_snapshot_empty(self, api):
        resp = await api.get("/api/renewals/queue")

        assert resp.status_code == 200
        data = resp.json()
        assert data["queue"] == []
        assert data["counts"] == {"waiting": 0, "processing": 0, "completed": 0, "error": 0}
        assert data["is_running"] is False

    async def test_force_renew_creates_task(self, api, sync_factory):
        _add_account(sync_factory, minutes=5 * 24 * 60)

        resp = await api.post("/api/renewals/42/force")

        assert resp.status_code == 202
        assert resp.json()["status"] == "completed"
        with sync_factory() as session:
            task = session.query(RenewalTask).one()
            assert task.task_metadata["source"] == "force"

    async def test_force_renew_unknown(self, api):
        resp = await api.post("/api/renewals/nope/force")
        assert resp.status_code == 404

    async def test_force_renew_locked(self, api, sync_factory):
        _add_account(sync_factory)

        first = await api.post("/api/renewals/42/force")
        second = await api.post("/api/renewals/42/force")

        assert first.status_code == 202
        assert second.status_code == 409

    async def test_clear_queue(self, api, sync_factory, manager):
        _add_account(sync_factory)
        with sync_factory() as session:
            account = session.query(Account).one()
        manager.enqueue(AccountSnapshot.from_model(account))

        resp = await api.delete("/api/renewals/queue")

        assert resp.status_code == 200
        assert resp.json() == {"removed": 1}

    async def test_scheduled(self, api, sync_factory):
        _add_account(sync_factory, "1", minutes=120)
        _add_account(sync_factory, "2", minutes=-30)

        resp = await api.get("/api/renewals/scheduled")

        assert resp.status_code == 200
        data = resp.json()
        assert [item["system_id"] for item in data] == ["2", "1"]
        assert data[0]["is_expired"] is True
        assert data[1]["is_expired"] is False
        assert 118 <= data[1]["minutes_until_expiration"] <= 120


class TestTaskHandoffApi:
    async def test_claim_none(self, api):
        resp = await api.post("/api/renewals/tasks/claim")
        assert resp.status_code == 204

    async def test_claim_and_complete(self, api, sync_factory):
        _add_account(sync_factory)
        await api.post("/api/renewals/42/force")

        claim = await api.post("/api/renewals/tasks/claim")
        assert claim.status_code == 200
        task = claim.json()
        assert task["status"] == "claimed"
        assert task["attempts"] == 1
        assert task["password"] == "secret"
        assert task["metadata"]["trace_id"].startswith("renewal_")

        new_expiration = "2030-01-01T00:00:00"
        done = await api.post(
            f"/api/renewals/tasks/{task['id']}/complete",
            json={"success": True, "new_expiration": new_expiration},
        )

        assert done.status_code == 200
        assert done.json()["status"] == "done"
        with sync_factory() as session:
            account = session.query(Account).one()
            assert account.expiration == datetime(2030, 1, 1)

    async def test_report_failure_requeues(self, api, sync_factory):
        _add_account(sync_factory)
        await api.post("/api/renewals/42/force")
        task = (await api.post("/api/renewals/tasks/claim")).json()

        resp = await api.post(
            f"/api/renewals/tasks/{task['id']}/complete",
            json={"success": False, "error": "portal timeout"},
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "pending"

    async def test_complete_unclaimed_task_conflict(self, api, sync_factory):
        _add_account(sync_factory)
        await api.post("/api/renewals/42/force")
        with sync_factory() as session:
            task_id = session.query(RenewalTask).one().id

        resp = await api.post(
            f"/api/renewals/tasks/{task_id}/complete", json={"success": True}
        )

        assert resp.status_code == 409

    async def test_complete_unknown_task(self, api):
        resp = await api.post("/api/renewals/tasks/999/complete", json={"success": True})
        assert resp.status_code == 404

    async def test_complete_sends_notice_after_response(self, api, sync_factory):
        _add_account(sync_factory)
        await api.post("/api/renewals/42/force")
        task = (await api.post("/api/renewals/tasks/claim")).json()
        gateway = app.dependency_overrides[get_task_worker]().gateway

        await api.post(f"/api/renewals/tasks/{task['id']}/complete", json={"success": True})

        gateway.notify.assert_awaited_once()
        assert gateway.notify.await_args.args[:2] == (
            NotificationType.renewal_succeeded,
            task["id"],
        )

    async def test_abandoned_claim_is_handed_out_again(self, api, sync_factory):
        _add_account(sync_factory)
        await api.post("/api/renewals/42/force")
        first = (await api.post("/api/renewals/tasks/claim")).json()
        with sync_factory() as session:
            stale = session.get(RenewalTask, first["id"])
            stale.claimed_at = datetime.now() - timedelta(hours=1)
            session.commit()

        second = await api.post("/api/renewals/tasks/claim")

        assert second.status_code == 200
        assert second.json()["id"] == first["id"]
        assert second.json()["attempts"] == 2


class TestAutomationApi:
    async def test_status_without_health_record(self, api):
        resp = await api.get("/api/automation/status")

        assert resp.status_code == 200
        data = resp.json()
        assert data["is_active"] is False
        assert data["browser_running"] is True
        assert data["login_blocked"] is True

    async def test_status_with_health_record(self, api, sync_factory):
        with sync_factory() as session:
            session.add(
                AutomationHealth(
                    is_active=True,
                    is_logged_in=True,
                    current_url="https://onlineoffice.zip/#/dashboard",
                )
            )
            session.commit()

        data = (await api.get("/api/automation/status")).json()

        assert data["is_logged_in"] is True
        assert data["current_url"] == "https://onlineoffice.zip/#/dashboard"

    async def test_config_defaults_to_disabled(self, api):
        resp = await api.get("/api/automation/config")

        assert resp.status_code == 200
        assert resp.json() == {
            "is_enabled": False,
            "renewal_advance_minutes": 60,
            "distribution_mode": "individual",
        }

    async def test_update_config(self, api):
        resp = await api.put(
            "/api/automation/config",
            json={"is_enabled": True, "renewal_advance_minutes": 90},
        )

        assert resp.status_code == 200
        assert resp.json()["is_enabled"] is True
        assert (await api.get("/api/automation/config")).json()["renewal_advance_minutes"] == 90

    async def test_update_config_rejects_unknown_mode(self, api):
        resp = await api.put("/api/automation/config", json={"distribution_mode": "random"})
        assert resp.status_code == 400

    async def test_unblock_login(self, api):
        resp = await api.post("/api/automation/login/unblock")

        assert resp.status_code == 200
        assert resp.json() == {"was_blocked": True, "login_blocked": False}


class TestAdminKey:
    @patch("autorenew.api.deps.get_settings")
    async def test_production_requires_key(self, mock_settings, api):
        mock_settings.return_value = MagicMock(is_production=True, admin_api_key="k")

        denied = await api.get("/api/renewals/queue")
        allowed = await api.get("/api/renewals/queue", headers={"X-Admin-Key": "k"})

        assert denied.status_code == 401
        assert allowed.status_code == 200

    @patch("autorenew.api.deps.get_settings")
    async def test_production_without_configured_key(self, mock_settings, api):
        mock_settings.return_value = MagicMock(is_production=True, admin_api_key="")

        resp = await api.get("/api/automation/config")

        assert resp.status_code == 503
