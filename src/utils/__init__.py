"""
Shared infrastructure for the reconciliation service

Provides:
- logging: structured logging setup and context loggers
- metrics: Prometheus metrics publishing
- tracing: OpenTelemetry spans
- db_pool: connection pools for PostgreSQL and SQL Server
- retry: backoff decorators for transient database errors
- errors: root-cause extraction for failed runs
"""

__version__ = "1.0.0"
__all__ = ["logging", "metrics", "tracing", "db_pool", "retry", "errors", "database_types"]
