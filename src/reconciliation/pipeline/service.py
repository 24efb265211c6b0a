"""
Dataset reconciliation pipeline.

A run streams the source side, then the target side, through the row
hasher into the record store, aggregates the per-key match statuses and
finalises the run. Any failure moves the run to Failed before the error
is re-raised to the caller.
"""

import logging
import time
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from opentelemetry import trace

from reconciliation.dataset import DataLoadDefinition, DatasetDefinition, Defaults
from reconciliation.hashing import (
    MIGRATION_KEY_COLUMN_NAME,
    ColumnMeta,
    HashingStrategy,
    Row,
    sanitize_columns,
)
from reconciliation.recrun import (
    RecordStore,
    ReconciliationRecord,
    ReconciliationRun,
    RecRunService,
    RunStore,
)
from utils.logging import ContextLogger
from utils.metrics import ReconciliationMetrics
from utils.tracing import trace_operation

from .batching import BatchProcessor

logger = logging.getLogger(__name__)


class DatasetNotFoundError(LookupError):
    """Raised when a run is requested for a dataset that is not configured."""

    def __init__(self, dataset_id: str):
        super().__init__(f"Dataset with id [{dataset_id}] not found!")
        self.dataset_id = dataset_id


class DataLoadException(RuntimeError):
    """Raised when one side of a dataset cannot be loaded."""


class _MetaCapture:
    """Passes rows through while remembering the non-key columns of the first."""

    def __init__(self, rows: Iterable[Row]):
        self._rows = rows
        self.meta: tuple[ColumnMeta, ...] = ()
        self.count = 0

    def __iter__(self) -> Iterator[Row]:
        key_name = MIGRATION_KEY_COLUMN_NAME.lower()
        for row in self._rows:
            if self.count == 0:
                self.meta = tuple(
                    c for c in sanitize_columns(list(row.columns)) if c.name.lower() != key_name
                )
            self.count += 1
            yield row


class DatasetRecService:
    """
    Runs reconciliations for configured datasets.

    Args:
        datasets: Dataset definitions by id
        run_service: Run lifecycle service
        record_store: Store for the per-key records
        defaults: Batch size and concurrency for the load phases
        metrics: Prometheus metrics (default: registered on the global registry)
    """

    def __init__(
        self,
        datasets: Mapping[str, DatasetDefinition],
        run_service: RecRunService,
        record_store: RecordStore,
        defaults: Defaults | None = None,
        metrics: ReconciliationMetrics | None = None,
    ):
        self.datasets = datasets
        self.run_service = run_service
        self.record_store = record_store
        self.defaults = defaults or Defaults()
        self.metrics = metrics or ReconciliationMetrics()
        self.batch_processor = BatchProcessor(
            batch_size=self.defaults.batch_size,
            concurrency=self.defaults.batch_concurrency,
            name="reconciliation-batch",
        )

    @classmethod
    def create(
        cls,
        datasets: Mapping[str, DatasetDefinition],
        run_store: RunStore,
        record_store: RecordStore,
        defaults: Defaults | None = None,
        metrics: ReconciliationMetrics | None = None,
    ) -> "DatasetRecService":
        """Wire a service from its stores."""
        return cls(
            datasets,
            RecRunService(run_store, record_store),
            record_store,
            defaults=defaults,
            metrics=metrics,
        )

    def run_for(self, dataset_id: str, metadata: dict[str, Any] | None = None) -> ReconciliationRun:
        """
        Reconcile one dataset.

        Args:
            dataset_id: Configured dataset id
            metadata: Free-form run metadata, e.g. {"trigger": "api"}

        Returns:
            The run in Successful status

        Raises:
            DatasetNotFoundError: If the dataset is not configured
            DataLoadException: If either side fails to load (the run is
                persisted as Failed first)
        """
        dataset = self.datasets.get(dataset_id)
        if dataset is None:
            raise DatasetNotFoundError(dataset_id)

        start_time = time.monotonic()

        with trace_operation(
            "reconciliation.run",
            kind=trace.SpanKind.INTERNAL,
            dataset_id=dataset_id,
            hashing_strategy=dataset.hashing_strategy.value,
        ) as span:
            run = self.run_service.start(dataset_id, metadata)
            span.set_attribute("run_id", str(run.id))
            run_logger = ContextLogger(__name__, dataset_id=dataset_id, run_id=run.id)

            try:
                source_meta = self._load(dataset, dataset.source, run, self._persist_source)
                run.with_meta(source_meta, ())
                target_meta = self._load(dataset, dataset.target, run, self._persist_target)
                run = self.run_service.successful(run, source_meta, target_meta)
            except Exception as e:
                self._fail(run, e, run_logger)
                self.metrics.record_run(dataset_id, False, time.monotonic() - start_time)
                raise

            self.metrics.record_run(
                dataset_id,
                True,
                time.monotonic() - start_time,
                status_counts=run.summary.as_counts(),
            )
            run_logger.info(f"Reconciliation complete: {run.summary}")
            return run

    def _fail(self, run: ReconciliationRun, error: Exception, run_logger: ContextLogger) -> None:
        try:
            self.run_service.failed(run, error)
        except Exception as store_error:
            # The load error is what the caller needs; the store error is only logged
            run_logger.error(
                f"Could not record failure of {run}: {store_error}",
                exc_info=store_error,
            )

    def _load(
        self,
        dataset: DatasetDefinition,
        definition: DataLoadDefinition,
        run: ReconciliationRun,
        persist,
    ) -> tuple[ColumnMeta, ...]:
        role = definition.role.value.lower()

        with trace_operation(
            f"reconciliation.load.{role}",
            kind=trace.SpanKind.CLIENT,
            dataset_id=dataset.id,
            datasource_ref=definition.datasource_ref,
        ) as span:
            try:
                with definition.run_query() as rows:
                    captured = _MetaCapture(rows)
                    self.batch_processor.process(
                        captured,
                        lambda batch: persist(run, dataset.hashing_strategy, batch),
                    )
            except Exception as e:
                raise DataLoadException(
                    f"Failed to load data from {role}(ref={definition.datasource_ref}) "
                    f"for dataset [{dataset.id}]: {e}"
                ) from e

            span.set_attribute("rows", captured.count)

        self.metrics.record_rows_hashed(dataset.id, role, captured.count)
        logger.info(
            f"Loaded {captured.count} {role} rows for dataset [{dataset.id}] into run {run.id}"
        )
        return captured.meta

    def _persist_source(
        self,
        run: ReconciliationRun,
        strategy: HashingStrategy,
        rows: list[Row],
    ) -> None:
        records = []
        for row in rows:
            hashed = strategy.hash(row)
            records.append(
                ReconciliationRecord(
                    run_id=run.id,
                    migration_key=hashed.migration_key,
                    source_data=hashed.hashed_value,
                )
            )
        self.record_store.save_all(records)

    def _persist_target(
        self,
        run: ReconciliationRun,
        strategy: HashingStrategy,
        rows: list[Row],
    ) -> None:
        # Later rows for the same key replace earlier ones
        hashes: dict[str, str] = {}
        for row in rows:
            hashed = strategy.hash(row)
            hashes[hashed.migration_key] = hashed.hashed_value

        existing = self.record_store.find_by_keys(run.id, hashes)
        for record in existing:
            record.target_data = hashes[record.migration_key]
        if existing:
            self.record_store.update_all(existing)

        found = {record.migration_key for record in existing}
        missing = [
            ReconciliationRecord(run_id=run.id, migration_key=key, target_data=value)
            for key, value in hashes.items()
            if key not in found
        ]
        if missing:
            self.record_store.save_all(missing)
