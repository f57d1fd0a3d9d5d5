from unittest.mock import MagicMock, patch

from autorenew.scheduler.runner import create_scheduler


def _settings(**overrides):
    values = dict(
        automation_enabled=True,
        scan_interval_seconds=60,
        heartbeat_interval_seconds=30,
        watchdog_interval_seconds=60,
        worker_interval_seconds=10,
    )
    values.update(overrides)
    return MagicMock(**values)


class TestCreateScheduler:
    @patch("autorenew.scheduler.runner.get_settings")
    def test_all_loops_registered(self, mock_settings):
        mock_settings.return_value = _settings()

        scheduler = create_scheduler()

        jobs = {job.id: job for job in scheduler.get_jobs()}
        assert set(jobs) == {
            "expiration_scan",
            "automation_heartbeat",
            "automation_watchdog",
            "task_worker",
        }
        assert jobs["expiration_scan"].trigger.interval.total_seconds() == 60
        assert jobs["automation_heartbeat"].trigger.interval.total_seconds() == 30
        assert jobs["task_worker"].trigger.interval.total_seconds() == 10

    @patch("autorenew.scheduler.runner.get_settings")
    def test_jobs_never_overlap(self, mock_settings):
        mock_settings.return_value = _settings()

        scheduler = create_scheduler()

        for job in scheduler.get_jobs():
            assert job.max_instances == 1
            assert job.coalesce is True

    @patch("autorenew.scheduler.runner.get_settings")
    def test_automation_disabled_only_scans(self, mock_settings):
        mock_settings.return_value = _settings(automation_enabled=False)

        scheduler = create_scheduler()

        assert [job.id for job in scheduler.get_jobs()] == ["expiration_scan"]
