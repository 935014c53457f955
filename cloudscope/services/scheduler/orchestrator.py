from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from datetime import datetime, timezone
import asyncio
import time
import uuid
from typing import Dict, Set

import structlog

from cloudscope.services.scans.service import ScanService
from cloudscope.services.scheduler.metrics import (
    SCHEDULER_JOB_RUNS,
    SCHEDULER_JOB_DURATION,
    SCHEDULER_JOB_SKIPPED,
    SCHEDULER_PROVIDER_FAILURES,
)
from cloudscope.shared.core.config import Settings
from cloudscope.shared.core.exceptions import ScanInProgressError

logger = structlog.get_logger()

# label -> APScheduler job id
JOB_IDS = {
    "daily": "daily_scan",
    "weekly": "weekly_scan",
}


class SchedulerOrchestrator:
    """Manages APScheduler and the recurring multi-cloud scans."""

    def __init__(self, scan_service: ScanService, settings: Settings):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scan_service = scan_service
        self.settings = settings
        self._running_jobs: Set[str] = set()
        self._background_tasks: Set[asyncio.Task] = set()
        self._last_run_success: bool | None = None
        self._last_run_time: str | None = None
        self._last_results: Dict[str, dict] = {}

    def is_job_running(self, label: str) -> bool:
        return JOB_IDS[label] in self._running_jobs

    async def scheduled_scan_job(self, label: str):
        """
        One scheduled scan of SCAN_PROVIDERS. A tick that finds the previous
        run of the same job still active is skipped; failures are logged and
        never retried.
        """
        job_name = JOB_IDS[label]
        if job_name in self._running_jobs:
            logger.warning("scheduled_scan_skipped", job=job_name, reason="previous_run_active")
            SCHEDULER_JOB_SKIPPED.labels(job_name=job_name).inc()
            return

        self._running_jobs.add(job_name)
        run_id = str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(correlation_id=run_id, job_type="scheduled_scan", job=job_name)
        start_time = time.time()

        try:
            aggregated = await self.scan_service.run(self.settings.SCAN_PROVIDERS, scan_type=label)
            for failure in aggregated.failed:
                SCHEDULER_PROVIDER_FAILURES.labels(job_name=job_name, provider=failure.provider.value).inc()

            status = "success" if aggregated.success and not aggregated.persistence_errors else "partial"
            logger.info(
                "scheduled_scan_completed",
                job=job_name,
                status=status,
                assets=len(aggregated.assets),
                failed=[f.provider.value for f in aggregated.failed],
                persistence_errors=len(aggregated.persistence_errors)
            )
            SCHEDULER_JOB_RUNS.labels(job_name=job_name, status=status).inc()
            self._last_run_success = status == "success"
            self._last_results[label] = {"status": status, "run_id": run_id}
        except ScanInProgressError:
            # A manual scan of the same provider set holds the scan guard
            logger.warning("scheduled_scan_skipped", job=job_name, reason="scan_in_progress")
            SCHEDULER_JOB_SKIPPED.labels(job_name=job_name).inc()
        except Exception as e:
            logger.error("scheduled_scan_failed", job=job_name, error=str(e), error_type=type(e).__name__)
            SCHEDULER_JOB_RUNS.labels(job_name=job_name, status="failure").inc()
            self._last_run_success = False
            self._last_results[label] = {"status": "failure", "run_id": run_id}
        finally:
            self._running_jobs.discard(job_name)
            self._last_run_time = datetime.now(timezone.utc).isoformat()
            SCHEDULER_JOB_DURATION.labels(job_name=job_name).observe(time.time() - start_time)
            structlog.contextvars.unbind_contextvars("correlation_id", "job_type", "job")

    def trigger(self, label: str) -> str:
        """
        Starts a job on demand without waiting for it.
        Returns 'triggered', or 'already_running' when the job is in flight.
        """
        if label not in JOB_IDS:
            raise ValueError(f"Unknown scheduler job: {label}")
        if self.is_job_running(label):
            return "already_running"

        task = asyncio.create_task(self.scheduled_scan_job(label))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        logger.info("scheduled_scan_triggered", job=JOB_IDS[label])
        return "triggered"

    def start(self):
        """Defines cron schedules and starts APScheduler."""
        # Daily scan: 2AM UTC
        self.scheduler.add_job(
            self.scheduled_scan_job,
            trigger=CronTrigger(hour=self.settings.SCHEDULER_DAILY_HOUR, minute=0, timezone="UTC"),
            id=JOB_IDS["daily"],
            args=["daily"],
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        # Weekly scan: Sun 3AM UTC
        self.scheduler.add_job(
            self.scheduled_scan_job,
            trigger=CronTrigger(
                day_of_week=self.settings.SCHEDULER_WEEKLY_DAY,
                hour=self.settings.SCHEDULER_WEEKLY_HOUR,
                minute=0,
                timezone="UTC"
            ),
            id=JOB_IDS["weekly"],
            args=["weekly"],
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info("scheduler_started", jobs=list(JOB_IDS.values()))

    async def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        # Let cancelled scans unwind before the engine is disposed
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("scheduler_stopped", cancelled=len(tasks))

    def get_status(self) -> dict:
        return {
            "running": self.scheduler.running,
            "last_run_success": self._last_run_success,
            "last_run_time": self._last_run_time,
            "jobs": [job.id for job in self.scheduler.get_jobs()],
            "in_flight": sorted(self._running_jobs),
        }
