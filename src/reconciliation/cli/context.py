"""
Wiring of the pipeline service from a loaded configuration.
"""

import logging

from reconciliation.dataset import ReconciliationConfiguration
from reconciliation.pipeline import DatasetRecService
from reconciliation.recrun import RecordStore, RunStore
from utils.metrics import ReconciliationMetrics

logger = logging.getLogger(__name__)


def build_service(
    config: ReconciliationConfiguration,
    metrics: ReconciliationMetrics | None = None,
) -> tuple[DatasetRecService, RunStore, RecordStore]:
    """
    Create the stores selected by configuration and the service using them.

    Returns:
        Tuple of (service, run_store, record_store)
    """
    run_store, record_store = config.create_stores()
    service = DatasetRecService.create(
        config.datasets,
        run_store,
        record_store,
        defaults=config.defaults,
        metrics=metrics,
    )
    logger.info(
        f"Loaded {len(config.datasets)} dataset(s) using {config.store.type.value} store"
    )
    return service, run_store, record_store
