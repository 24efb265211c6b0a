"""
Prometheus metrics for the reconciliation service

Usage:
    from utils.metrics import initialize_metrics

    metrics = initialize_metrics(port=9091)
    metrics["reconciliation"].record_run("customers", success=True, duration=45.2)
"""

import logging
from typing import Any

from prometheus_client import CollectorRegistry

from .publisher import ApplicationInfo, MetricsPublisher, get_or_create_metric
from .reconciliation import ReconciliationMetrics

logger = logging.getLogger(__name__)


def initialize_metrics(
    port: int = 9091,
    registry: CollectorRegistry | None = None,
) -> dict[str, Any]:
    """
    Initialize metrics and start the metrics server

    Args:
        port: Port to expose metrics on (default: 9091)
        registry: Custom Prometheus registry (default: global REGISTRY)

    Returns:
        Dictionary with "publisher", "reconciliation" and "app_info" entries
    """
    logger.info(f"Initializing metrics on port {port}")

    publisher = MetricsPublisher(port=port, registry=registry)
    publisher.start()

    return {
        "publisher": publisher,
        "reconciliation": ReconciliationMetrics(registry=registry),
        "app_info": ApplicationInfo(registry=registry),
    }


__all__ = [
    "MetricsPublisher",
    "ReconciliationMetrics",
    "ApplicationInfo",
    "initialize_metrics",
    "get_or_create_metric",
]
