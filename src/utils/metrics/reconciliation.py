"""
Metrics for dataset reconciliation runs.

Tracks run outcomes and durations, rows hashed per side, and the
match-status breakdown of each completed run.
"""

import logging
import time

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
)

from .publisher import get_or_create_metric

logger = logging.getLogger(__name__)


class ReconciliationMetrics:
    """
    Metrics for dataset reconciliation runs

    Safe to instantiate more than once against the same registry.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize reconciliation metrics

        Args:
            registry: Custom Prometheus registry (default: global REGISTRY)
        """
        self.registry = registry or REGISTRY
        reg = self.registry

        self.runs_total = get_or_create_metric(
            lambda: Counter(
                "reconciliation_runs_total",
                "Total number of reconciliation runs",
                ["dataset_id", "status"],
                registry=reg,
            ),
            "reconciliation_runs_total",
            reg,
        )

        self.run_duration_seconds = get_or_create_metric(
            lambda: Histogram(
                "reconciliation_run_duration_seconds",
                "Duration of reconciliation runs in seconds",
                ["dataset_id"],
                buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
                registry=reg,
            ),
            "reconciliation_run_duration_seconds",
            reg,
        )

        self.last_run_timestamp = get_or_create_metric(
            lambda: Gauge(
                "reconciliation_last_run_timestamp",
                "Timestamp of the last completed reconciliation run",
                ["dataset_id"],
                registry=reg,
            ),
            "reconciliation_last_run_timestamp",
            reg,
        )

        self.rows_hashed_total = get_or_create_metric(
            lambda: Counter(
                "reconciliation_rows_hashed_total",
                "Total number of rows hashed",
                ["dataset_id", "role"],
                registry=reg,
            ),
            "reconciliation_rows_hashed_total",
            reg,
        )

        self.records_by_status = get_or_create_metric(
            lambda: Gauge(
                "reconciliation_match_status",
                "Records per match status in the last successful run",
                ["dataset_id", "status"],
                registry=reg,
            ),
            "reconciliation_match_status",
            reg,
        )

    def record_rows_hashed(self, dataset_id: str, role: str, count: int) -> None:
        self.rows_hashed_total.labels(dataset_id=dataset_id, role=role).inc(count)

    def record_run(
        self,
        dataset_id: str,
        success: bool,
        duration: float,
        status_counts: dict[str, int] | None = None,
    ) -> None:
        """
        Record a completed reconciliation run

        Args:
            dataset_id: Dataset that was reconciled
            success: Whether the run completed successfully
            duration: Duration in seconds
            status_counts: Records per match status, for successful runs
        """
        status = "success" if success else "failed"

        self.runs_total.labels(dataset_id=dataset_id, status=status).inc()
        self.run_duration_seconds.labels(dataset_id=dataset_id).observe(duration)
        self.last_run_timestamp.labels(dataset_id=dataset_id).set(time.time())

        for match_status, count in (status_counts or {}).items():
            self.records_by_status.labels(
                dataset_id=dataset_id,
                status=match_status,
            ).set(count)

        logger.debug(
            f"Recorded reconciliation run: dataset={dataset_id}, "
            f"status={status}, duration={duration:.2f}s"
        )
