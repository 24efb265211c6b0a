"""
Metrics publisher for the Prometheus HTTP server.

Starts the scrape endpoint used by the scheduler and API processes,
and provides safe registration for metrics that may be created more
than once per process.
"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Gauge,
    Info,
    start_http_server,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_or_create_metric(
    metric_factory: Callable[[], T],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> T:
    """
    Create a metric, or return the existing one if already registered.

    Args:
        metric_factory: Callable that creates the metric (e.g., lambda: Counter(...))
        metric_name: Name of the metric for lookup if already registered
        registry: Prometheus registry the factory registers into

    Returns:
        The metric instance (either newly created or existing)

    Example:
        RUNS_TOTAL = get_or_create_metric(
            lambda: Counter("runs_total", "Total runs", ["dataset_id"]),
            "runs_total"
        )
    """
    try:
        return metric_factory()
    except ValueError:
        existing = registry._names_to_collectors.get(metric_name)
        if existing is not None:
            return existing
        raise


class MetricsPublisher:
    """
    Publishes metrics to Prometheus

    Starts an HTTP server that exposes metrics on the /metrics endpoint.
    """

    def __init__(
        self,
        port: int = 9091,
        registry: CollectorRegistry | None = None,
    ):
        self.port = port
        self.registry = registry or REGISTRY
        self._server_started = False

    def start(self) -> None:
        """Start the metrics HTTP server"""
        if self._server_started:
            logger.warning(f"Metrics server already running on port {self.port}")
            return

        try:
            start_http_server(self.port, registry=self.registry)
        except OSError as e:
            if "Address already in use" in str(e):
                raise RuntimeError(
                    f"Metrics server port {self.port} is already in use"
                ) from e
            raise

        self._server_started = True
        logger.info(f"Metrics server started on port {self.port}")

    def is_started(self) -> bool:
        return self._server_started


class ApplicationInfo:
    """Application name, version and uptime."""

    def __init__(
        self,
        app_name: str = "dataset-reconciliation",
        version: str = "1.0.0",
        registry: CollectorRegistry | None = None,
    ):
        self.registry = registry or REGISTRY

        self.info = get_or_create_metric(
            lambda: Info("application", "Application metadata", registry=self.registry),
            "application_info",
            self.registry,
        )
        self.info.info({"name": app_name, "version": version})

        self._start_time = time.time()
        self.uptime_seconds = get_or_create_metric(
            lambda: Gauge(
                "application_uptime_seconds",
                "Application uptime in seconds",
                registry=self.registry,
            ),
            "application_uptime_seconds",
            self.registry,
        )

    def update_uptime(self) -> None:
        self.uptime_seconds.set(self.get_uptime())

    def get_uptime(self) -> float:
        return time.time() - self._start_time
