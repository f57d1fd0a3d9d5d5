from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from autorenew.automation.executor import RenewalResult
from autorenew.automation.worker import TaskWorker
from autorenew.models import Account, NotificationType, RenewalTask, TaskStatus
from autorenew.renewal.eligibility import AccountSnapshot
from autorenew.renewal.manager import RenewalQueueManager
from autorenew.renewal.queue import QueueStatus
from autorenew.renewal.tasks import claim_next_task


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.is_healthy = AsyncMock(return_value=True)
    executor.renew = AsyncMock(return_value=RenewalResult(True, "Renewed"))
    return executor


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.notify = AsyncMock(return_value=True)
    return gateway


@pytest.fixture
def manager(session_factory, clock):
    return RenewalQueueManager(session_factory, clock=clock, sleep=AsyncMock())


@pytest.fixture
def worker(executor, manager, gateway, session_factory, clock):
    return TaskWorker(executor, manager, gateway, session_factory, clock=clock)


@pytest.fixture
def account(session_factory, clock, manager):
    """An account 10 minutes from expiry with a pending task dispatched for it."""
    with session_factory() as session:
        row = Account(
            system_id="42",
            username="joao",
            password="secret",
            expiration=clock.now + timedelta(minutes=10),
        )
        session.add(row)
        session.commit()
        snapshot = AccountSnapshot.from_model(row)

    manager.enqueue(snapshot)
    manager.dispatch(snapshot, trace_id="renewal_1_1")
    return snapshot


def _task(session_factory):
    with session_factory() as session:
        return session.query(RenewalTask).one()


class TestTaskWorker:
    async def test_no_tasks(self, worker, executor):
        assert await worker.run_once() is None
        executor.renew.assert_not_awaited()

    async def test_unhealthy_executor_leaves_task_pending(
        self, worker, executor, session_factory, account
    ):
        executor.is_healthy.return_value = False

        assert await worker.run_once() is None

        assert _task(session_factory).status == TaskStatus.pending

    async def test_success_extends_expiration(
        self, worker, executor, gateway, session_factory, clock, account
    ):
        clock.advance(minutes=1)

        assert await worker.run_once() is True

        executor.renew.assert_awaited_once_with("joao")
        task = _task(session_factory)
        assert task.status == TaskStatus.done
        assert task.attempts == 1
        assert task.completed_at == clock.now
        with session_factory() as session:
            stored = session.get(Account, account.id)
            assert stored.expiration == account.expiration + timedelta(hours=720)
            assert stored.last_renewal_at == clock.now

        gateway.notify.assert_awaited_once()
        assert gateway.notify.await_args.args[0] == NotificationType.renewal_succeeded

    async def test_success_on_expired_account_counts_from_now(
        self, worker, session_factory, clock, account
    ):
        clock.advance(hours=2)

        await worker.run_once()

        with session_factory() as session:
            assert session.get(Account, account.id).expiration == clock.now + timedelta(hours=720)

    async def test_failure_requeued_until_max_attempts(
        self, worker, executor, gateway, manager, session_factory, account
    ):
        executor.renew.return_value = RenewalResult(False, "row not found", "/tmp/a.png")

        assert await worker.run_once() is False
        assert _task(session_factory).status == TaskStatus.pending
        assert await worker.run_once() is False
        assert _task(session_factory).status == TaskStatus.pending
        gateway.notify.assert_not_awaited()

        assert await worker.run_once() is False

        task = _task(session_factory)
        assert task.status == TaskStatus.failed
        assert task.attempts == 3
        assert task.last_error == "row not found"
        assert manager.queue.get("42").status == QueueStatus.error

        gateway.notify.assert_awaited_once()
        call = gateway.notify.await_args
        assert call.args[0] == NotificationType.renewal_failed
        assert any(field["value"] == "/tmp/a.png" for field in call.kwargs["embed"]["fields"])

        assert await worker.run_once() is None

    async def test_executor_crash_counts_as_failure(
        self, worker, executor, session_factory, account
    ):
        executor.renew.side_effect = RuntimeError("page crashed")

        assert await worker.run_once() is False

        task = _task(session_factory)
        assert task.status == TaskStatus.pending
        assert "page crashed" in task.last_error


class TestAbandonedClaims:
    def _claim(self, session_factory, clock):
        with session_factory() as session:
            return claim_next_task(session, clock.now).id

    async def test_claim_within_lease_is_left_alone(
        self, worker, executor, session_factory, clock, account
    ):
        self._claim(session_factory, clock)
        clock.advance(minutes=10)

        assert await worker.run_once() is None

        executor.renew.assert_not_awaited()
        assert _task(session_factory).status == TaskStatus.claimed

    async def test_expired_claim_is_run_again(
        self, worker, executor, session_factory, clock, account
    ):
        task_id = self._claim(session_factory, clock)
        clock.advance(minutes=16)

        assert await worker.run_once() is True

        task = _task(session_factory)
        assert task.id == task_id
        assert task.status == TaskStatus.done
        assert task.attempts == 2
        executor.renew.assert_awaited_once_with("joao")

    async def test_expired_claim_out_of_attempts_gets_new_task(
        self, manager, session_factory, clock, account
    ):
        task_id = self._claim(session_factory, clock)
        with session_factory() as session:
            session.get(RenewalTask, task_id).attempts = 3
            session.commit()
        clock.advance(days=1)

        assert manager.dispatch(account) is True

        with session_factory() as session:
            tasks = {task.id: task for task in session.query(RenewalTask)}
        assert len(tasks) == 2
        assert tasks[task_id].status == TaskStatus.failed
        assert tasks[task_id].last_error.startswith("claim expired")
        (new_task,) = [task for task in tasks.values() if task.id != task_id]
        assert new_task.status == TaskStatus.pending
