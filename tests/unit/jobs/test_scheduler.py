"""
Unit tests for src/jobs/scheduler.py
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.jobs import scheduler


@pytest.fixture
def fresh_scheduler(monkeypatch) -> AsyncIOScheduler:
    """An unstarted scheduler in place of the module one."""
    instance = AsyncIOScheduler(timezone="UTC")
    monkeypatch.setattr(scheduler, "_scheduler", instance)
    return instance


# ============================================================
# setup_jobs tests
# ============================================================


class TestSetupJobs:
    """Tests for setup_jobs."""

    def test_registers_jobs(self, fresh_scheduler):
        """Enqueue, maintenance and the startup enqueue are registered."""
        scheduler.setup_jobs()

        ids = {job.id for job in fresh_scheduler.get_jobs()}
        assert ids == {"matching_enqueue", "matching_maintenance", "matching_enqueue_startup"}

    def test_enqueue_interval_from_env(self, fresh_scheduler, monkeypatch):
        """The enqueue interval follows MATCHING_ENQUEUE_INTERVAL_MINUTES."""
        monkeypatch.setenv("MATCHING_ENQUEUE_INTERVAL_MINUTES", "7")

        scheduler.setup_jobs()

        job = fresh_scheduler.get_job("matching_enqueue")
        assert job.trigger.interval.total_seconds() == 7 * 60


# ============================================================
# start / job wrapper tests
# ============================================================


class TestStart:
    """Tests for start and the job wrappers."""

    def test_disabled_does_nothing(self, fresh_scheduler, monkeypatch):
        """MATCHING_ENABLED=false registers no jobs and starts no workers."""
        monkeypatch.setenv("MATCHING_ENABLED", "false")

        scheduler.start()

        assert fresh_scheduler.get_jobs() == []
        assert scheduler._worker_tasks == []

    @pytest.mark.asyncio
    async def test_enqueue_job_swallows_errors(self, monkeypatch, log_messages):
        """A failing enqueue job is logged, never raised."""
        monkeypatch.setattr(
            scheduler, "get_components", AsyncMock(side_effect=ConnectionError("refused"))
        )

        await scheduler.run_enqueue_job()

        assert ("ERROR", "Scheduler", "Enqueue job failed: refused") in log_messages

    @pytest.mark.asyncio
    async def test_maintenance_job_reports_errors(self, monkeypatch, log_messages):
        """Step errors of the maintenance sweep are logged as a warning."""
        components = MagicMock()
        components.maintenance.run = AsyncMock(return_value=MagicMock(errors={"archive": "timeout"}))
        monkeypatch.setattr(scheduler, "get_components", AsyncMock(return_value=components))

        await scheduler.run_maintenance_job()

        warnings = [m for level, module, m in log_messages if level == "WARNING"]
        assert warnings == ["Maintenance finished with errors: {'archive': 'timeout'}"]
