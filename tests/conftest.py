"""
Pytest configuration and fixtures for reconciliation tests.

Provides in-memory stores, fake datasource loaders and dataset builders
so the pipeline can be exercised without a live database.
"""

from contextlib import contextmanager
from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry

from reconciliation.dataset import DataLoadDefinition, DataLoadRole, DatasetDefinition, Defaults, Schedule
from reconciliation.hashing import ColumnMeta, ColumnType, HashingStrategy, Row
from reconciliation.pipeline import DatasetRecService
from reconciliation.recrun import InMemoryRecordStore, InMemoryRunStore
from utils.metrics import ReconciliationMetrics

KEY_COLUMN = ColumnMeta("MigrationKey", ColumnType.STRING)
VALUE_COLUMN = ColumnMeta("value", ColumnType.STRING)


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "property: Hypothesis property-based tests")


def make_rows(pairs, columns=(KEY_COLUMN, VALUE_COLUMN)):
    """Build rows from (key, value, ...) tuples."""
    return [Row(tuple(values), tuple(columns)) for values in pairs]


class FakeLoader:
    """DatasourceLoader stand-in that streams canned rows."""

    def __init__(self, rows=(), error=None, fail_after=None):
        self.rows = list(rows)
        self.error = error
        self.fail_after = fail_after
        self.queries = []
        self.closed = False
        self.released = 0

    def _iterate(self):
        for index, row in enumerate(self.rows):
            if self.fail_after is not None and index == self.fail_after:
                raise self.error
            yield row

    @contextmanager
    def stream(self, query):
        self.queries.append(query)
        if self.error is not None and self.fail_after is None:
            raise self.error
        try:
            yield self._iterate()
        finally:
            self.released += 1

    def close(self):
        self.closed = True


def make_dataset(
    dataset_id="test-dataset",
    source_rows=(),
    target_rows=(),
    source_loader=None,
    target_loader=None,
    strategy=HashingStrategy.TYPE_LENIENT,
    cron_expression=None,
):
    """Build a DatasetDefinition bound to fake loaders."""
    source_loader = source_loader or FakeLoader(source_rows)
    target_loader = target_loader or FakeLoader(target_rows)
    return DatasetDefinition(
        id=dataset_id,
        source=DataLoadDefinition(
            dataset_id, DataLoadRole.SOURCE, "source-db", "SELECT * FROM source_table", source_loader
        ),
        target=DataLoadDefinition(
            dataset_id, DataLoadRole.TARGET, "target-db", "SELECT * FROM target_table", target_loader
        ),
        hashing_strategy=strategy,
        schedule=Schedule(cron_expression),
    )


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Get project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def registry() -> CollectorRegistry:
    """Isolated Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry) -> ReconciliationMetrics:
    return ReconciliationMetrics(registry=registry)


@pytest.fixture
def run_store() -> InMemoryRunStore:
    return InMemoryRunStore()


@pytest.fixture
def record_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def service_factory(run_store, record_store, metrics):
    """Create a DatasetRecService over the in-memory stores."""
    def factory(*datasets, batch_size=2, batch_concurrency=2):
        return DatasetRecService.create(
            {dataset.id: dataset for dataset in datasets},
            run_store,
            record_store,
            defaults=Defaults(batch_size=batch_size, batch_concurrency=batch_concurrency),
            metrics=metrics,
        )
    return factory


@pytest.fixture(autouse=True)
def clean_reconciliation_env(monkeypatch) -> None:
    """Keep the host environment from leaking into configuration and tracing."""
    for name in ("RECONCILIATION_CONFIG", "OTLP_ENDPOINT", "TRACE_CONSOLE"):
        monkeypatch.delenv(name, raising=False)
