"""
APScheduler-based reconciliation scheduler.

Registers one cron job per scheduled dataset. Jobs survive failed runs:
the job callable never raises, so APScheduler keeps the timer.
"""

import logging
from collections.abc import Callable
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler

from reconciliation.dataset import DatasetDefinition

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """
    Cron scheduler for dataset reconciliation jobs

    Args:
        blocking: Run the scheduler in the calling thread (CLI `schedule`)
            instead of a background thread (API server)
    """

    def __init__(self, blocking: bool = False, scheduler: BaseScheduler | None = None):
        if scheduler is None:
            scheduler = BlockingScheduler() if blocking else BackgroundScheduler()
        self.scheduler = scheduler
        self.jobs = []

    def add_dataset_job(
        self,
        dataset: DatasetDefinition,
        job_func: Callable[[], None],
    ) -> None:
        """
        Add the cron job of a scheduled dataset

        Args:
            dataset: Dataset with a non-empty schedule
            job_func: Zero-argument trigger invoked on each fire

        Raises:
            ValueError: If the dataset has no schedule
        """
        if dataset.schedule.empty:
            raise ValueError(f"Dataset [{dataset.id}] has no schedule")

        job = self.scheduler.add_job(
            job_func,
            trigger=dataset.schedule.trigger(),
            id=f"reconcile-{dataset.id}",
            name=f"Reconcile {dataset.id}",
            replace_existing=True,
            # Overlapping fires of a slow dataset are skipped, not queued
            max_instances=1,
            coalesce=True,
        )

        self.jobs.append(job)
        logger.info(
            f"Scheduled dataset [{dataset.id}] with cron [{dataset.schedule.cron_expression}]"
        )

    def remove_job(self, job_id: str) -> None:
        self.scheduler.remove_job(job_id)
        self.jobs = [job for job in self.jobs if job.id != job_id]
        logger.info(f"Removed job '{job_id}'")

    def start(self) -> None:
        """
        Start the scheduler

        Blocks the current thread for a blocking scheduler; use Ctrl+C to stop.
        """
        logger.info(f"Starting reconciliation scheduler with {len(self.jobs)} job(s)")

        try:
            self.scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Scheduler stopped by user")
            self.stop()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    def list_jobs(self) -> list[dict[str, Any]]:
        """
        List all scheduled jobs

        Returns:
            List of job information dictionaries
        """
        job_list = []

        for job in self.scheduler.get_jobs():
            next_run_time = getattr(job, "next_run_time", None)
            job_list.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": next_run_time.isoformat() if next_run_time else None,
                "trigger": str(job.trigger),
            })

        return job_list
