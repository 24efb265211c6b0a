"""Run lifecycle: start, summarise and finalise reconciliation runs."""

import logging
from collections.abc import Iterable
from typing import Any

from reconciliation.hashing import ColumnMeta
from utils.tracing import add_span_attributes, add_span_event

from .models import ReconciliationRun
from .stores import RecordStore, RunStore

logger = logging.getLogger(__name__)


class RecRunService:
    """
    Owns the state transitions of reconciliation runs.

    Args:
        run_store: Store that assigns run ids and persists run state
        record_store: Store holding the run's records, used for aggregation
    """

    def __init__(self, run_store: RunStore, record_store: RecordStore):
        self.run_store = run_store
        self.record_store = record_store

    def start(self, dataset_id: str, metadata: dict[str, Any] | None = None) -> ReconciliationRun:
        run = self.run_store.save(
            ReconciliationRun(dataset_id=dataset_id, metadata=dict(metadata or {}))
        )
        add_span_event("run_started", run_id=run.id, dataset_id=dataset_id)
        logger.info(f"Starting reconciliation run for {run}...")
        return run

    def successful(
        self,
        run: ReconciliationRun,
        source_meta: Iterable[ColumnMeta] = (),
        target_meta: Iterable[ColumnMeta] = (),
    ) -> ReconciliationRun:
        """
        Aggregate the run's records and mark it Successful.

        The given run stays Pending until the Successful state is stored, so
        it can still be failed if the store update raises.

        Returns:
            A new run object with its MatchStatus summary attached
        """
        logger.info(f"Summarising results for {run}")
        summary = self.record_store.aggregate_match_status(run.id)

        completed = run.copy().with_meta(source_meta, target_meta).as_successful(summary)
        self.run_store.update(completed)
        add_span_attributes(**summary.as_counts())

        logger.info(f"Run completed for {completed}: {summary}")
        return completed

    def failed(self, run: ReconciliationRun, cause: BaseException) -> ReconciliationRun:
        logger.info(f"Recording failure for {run}", exc_info=cause)
        return self.run_store.update(run.as_failed(cause))
