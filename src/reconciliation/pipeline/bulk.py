"""
Bulk triggering of reconciliation runs with per-dataset failure isolation.
"""

import logging
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any

from reconciliation.recrun import ReconciliationRun
from utils.errors import extract_failure_cause

from .service import DatasetRecService

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_RUNS = 4


def run_ignore_failure(
    service: DatasetRecService,
    dataset_ids: Iterable[str],
    metadata: dict[str, Any] | None = None,
    max_workers: int | None = None,
) -> Iterator[ReconciliationRun]:
    """
    Run several datasets concurrently, yielding successful runs as they finish.

    A failing dataset is logged with its root cause and skipped; it never
    stops the others. Blank dataset ids are ignored.

    Args:
        service: Pipeline service
        dataset_ids: Datasets to run
        metadata: Run metadata passed to every run
        max_workers: Concurrent runs (default: one per dataset, at most
            DEFAULT_MAX_CONCURRENT_RUNS)

    Example:
        >>> for run in run_ignore_failure(service, ["customers", "orders"]):
        ...     print(run.id, run.summary)
    """
    ids = [dataset_id for dataset_id in dataset_ids if dataset_id and dataset_id.strip()]
    if not ids:
        return

    logger.info(f"Triggering reconciliation for datasets {ids}")

    with ThreadPoolExecutor(
        max_workers=max_workers or min(len(ids), DEFAULT_MAX_CONCURRENT_RUNS),
        thread_name_prefix="dataset-trigger",
    ) as executor:
        future_to_dataset = {
            executor.submit(service.run_for, dataset_id, metadata): dataset_id
            for dataset_id in ids
        }

        for future in as_completed(future_to_dataset):
            dataset_id = future_to_dataset[future]
            try:
                run = future.result()
            except Exception as e:
                logger.warning(
                    f"Reconciliation failed for dataset [{dataset_id}]: {extract_failure_cause(e)}"
                )
                continue

            yield run
