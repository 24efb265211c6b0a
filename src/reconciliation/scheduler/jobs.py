"""
Trigger callables handed to the scheduler.

Scheduled and startup triggers report failures only through logs and
the persisted Failed run; they never raise into the scheduler.
"""

import logging
import threading
from collections.abc import Callable, Iterable

from reconciliation.dataset import DatasetDefinition
from reconciliation.pipeline import DatasetRecService, run_ignore_failure
from utils.errors import extract_failure_cause

from .scheduler import ReconciliationScheduler

logger = logging.getLogger(__name__)


def scheduled_trigger(service: DatasetRecService, dataset_id: str) -> Callable[[], None]:
    """
    Build the zero-argument job for one dataset.

    Args:
        service: Pipeline service
        dataset_id: Dataset the job reconciles

    Returns:
        Callable that runs the dataset and discards the result
    """
    def trigger() -> None:
        logger.info(f"Scheduled reconciliation triggered for dataset [{dataset_id}]")
        try:
            run = service.run_for(dataset_id, {"trigger": "schedule"})
        except Exception as e:
            logger.error(
                f"Scheduled reconciliation failed for dataset [{dataset_id}]: "
                f"{extract_failure_cause(e)}"
            )
            return

        logger.info(f"Scheduled reconciliation completed for dataset [{dataset_id}]: {run.summary}")

    trigger.__name__ = f"reconcile_{dataset_id}"
    return trigger


def register_datasets(
    scheduler: ReconciliationScheduler,
    service: DatasetRecService,
    datasets: Iterable[DatasetDefinition],
) -> int:
    """
    Register a cron job for every dataset that declares a schedule.

    Returns:
        Number of jobs registered
    """
    registered = 0
    for dataset in datasets:
        if dataset.schedule.empty:
            continue
        scheduler.add_dataset_job(dataset, scheduled_trigger(service, dataset.id))
        logger.info(f"Next run of dataset [{dataset.id}]: {dataset.schedule.summary}")
        registered += 1

    return registered


def trigger_on_start(
    service: DatasetRecService,
    dataset_ids: Iterable[str],
    background: bool = True,
) -> threading.Thread | None:
    """
    Run the configured startup datasets, ignoring individual failures.

    Args:
        service: Pipeline service
        dataset_ids: Datasets to run once at startup
        background: Run in a daemon thread instead of blocking

    Returns:
        The started thread when running in the background
    """
    ids = list(dataset_ids)
    if not ids:
        return None

    def run_all() -> None:
        completed = [run.id for run in run_ignore_failure(service, ids, {"trigger": "startup"})]
        logger.info(f"Startup reconciliation finished: {len(completed)}/{len(ids)} runs successful")

    if not background:
        run_all()
        return None

    thread = threading.Thread(target=run_all, name="trigger-on-start", daemon=True)
    thread.start()
    return thread
