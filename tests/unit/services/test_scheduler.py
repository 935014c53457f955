"""
Tests for SchedulerOrchestrator

Tests cover:
- Job registration (daily and weekly cron)
- Single-flight guard per job name
- Status reporting after success and failure
- On-demand trigger
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from cloudscope.services.scans.aggregator import AggregatedScan
from cloudscope.services.scheduler import JOB_IDS, SchedulerOrchestrator
from cloudscope.shared.core.exceptions import ScanInProgressError


def create_mock_scan_service(result=None):
    scan_service = MagicMock()
    scan_service.run = AsyncMock(return_value=result or AggregatedScan())
    return scan_service


class TestSchedulerInstantiation:
    def test_initial_status(self, settings):
        scheduler = SchedulerOrchestrator(create_mock_scan_service(), settings)
        status = scheduler.get_status()
        assert status["running"] is False
        assert status["last_run_success"] is None
        assert status["last_run_time"] is None
        assert status["in_flight"] == []

    @pytest.mark.asyncio
    async def test_start_registers_daily_and_weekly_jobs(self, settings):
        scheduler = SchedulerOrchestrator(create_mock_scan_service(), settings)
        scheduler.start()
        try:
            jobs = {job.id: job for job in scheduler.scheduler.get_jobs()}
            assert set(jobs) == {"daily_scan", "weekly_scan"}

            daily = {f.name: str(f) for f in jobs["daily_scan"].trigger.fields}
            assert daily["hour"] == "2"
            assert daily["minute"] == "0"

            weekly = {f.name: str(f) for f in jobs["weekly_scan"].trigger.fields}
            assert weekly["day_of_week"] == "sun"
            assert weekly["hour"] == "3"
            assert scheduler.get_status()["running"] is True
        finally:
            await scheduler.stop()


class TestScheduledScanJob:
    @pytest.mark.asyncio
    async def test_runs_configured_providers_with_label(self, settings):
        scan_service = create_mock_scan_service()
        scheduler = SchedulerOrchestrator(scan_service, settings)

        await scheduler.scheduled_scan_job("weekly")

        scan_service.run.assert_awaited_once_with(settings.SCAN_PROVIDERS, scan_type="weekly")
        assert scheduler._last_run_success is True
        assert scheduler._last_run_time is not None

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, settings):
        release = asyncio.Event()
        scan_service = MagicMock()

        async def slow_run(*args, **kwargs):
            await release.wait()
            return AggregatedScan()

        scan_service.run = AsyncMock(side_effect=slow_run)
        scheduler = SchedulerOrchestrator(scan_service, settings)

        first = asyncio.create_task(scheduler.scheduled_scan_job("daily"))
        await asyncio.sleep(0)
        assert scheduler.is_job_running("daily")

        # Second tick returns immediately without starting another scan
        await scheduler.scheduled_scan_job("daily")
        assert scan_service.run.await_count == 1

        release.set()
        await first
        assert not scheduler.is_job_running("daily")

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, settings):
        scan_service = MagicMock()
        scan_service.run = AsyncMock(side_effect=RuntimeError("database unavailable"))
        scheduler = SchedulerOrchestrator(scan_service, settings)

        await scheduler.scheduled_scan_job("daily")

        assert scheduler._last_run_success is False
        assert scan_service.run.await_count == 1
        assert not scheduler.is_job_running("daily")

    @pytest.mark.asyncio
    async def test_manual_scan_in_progress_skips_tick(self, settings):
        scan_service = MagicMock()
        scan_service.run = AsyncMock(side_effect=ScanInProgressError("busy"))
        scheduler = SchedulerOrchestrator(scan_service, settings)

        await scheduler.scheduled_scan_job("daily")
        assert scheduler._last_run_success is None

    @pytest.mark.asyncio
    async def test_partial_scan_marks_run_unsuccessful(self, settings):
        from cloudscope.schemas.inventory import ProviderFailure
        result = AggregatedScan(failed=[ProviderFailure(provider="gcp", message="gcp scan failed: boom")])
        scheduler = SchedulerOrchestrator(create_mock_scan_service(result), settings)

        await scheduler.scheduled_scan_job("daily")
        assert scheduler._last_run_success is False


class TestTrigger:
    @pytest.mark.asyncio
    async def test_trigger_starts_job(self, settings):
        scan_service = create_mock_scan_service()
        scheduler = SchedulerOrchestrator(scan_service, settings)

        assert scheduler.trigger("daily") == "triggered"
        await asyncio.gather(*scheduler._background_tasks)
        scan_service.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_trigger_while_running(self, settings):
        scheduler = SchedulerOrchestrator(create_mock_scan_service(), settings)
        scheduler._running_jobs.add(JOB_IDS["weekly"])
        assert scheduler.trigger("weekly") == "already_running"

    def test_trigger_unknown_label(self, settings):
        scheduler = SchedulerOrchestrator(create_mock_scan_service(), settings)
        with pytest.raises(ValueError):
            scheduler.trigger("hourly")

    @pytest.mark.asyncio
    async def test_stop_waits_for_cancelled_trigger(self, settings):
        started = asyncio.Event()
        unwound = []
        scan_service = MagicMock()

        async def long_run(*args, **kwargs):
            started.set()
            try:
                await asyncio.Event().wait()
            finally:
                unwound.append(True)

        scan_service.run = AsyncMock(side_effect=long_run)
        scheduler = SchedulerOrchestrator(scan_service, settings)

        scheduler.trigger("daily")
        await started.wait()
        await scheduler.stop()

        assert unwound == [True]
        assert not scheduler.is_job_running("daily")
