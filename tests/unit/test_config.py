"""
Unit tests for dataset definitions and YAML configuration loading.

Connection pools are replaced with mocks through the pool_factory
argument, so no database driver connects.
"""

from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from reconciliation.dataset import (
    ConfigurationError,
    DataLoadRole,
    Defaults,
    Schedule,
    StoreType,
    interpolate_env,
    load_configuration,
    parse_configuration,
    resolve_query_statement,
)
from reconciliation.hashing import HashingStrategy
from reconciliation.recrun import InMemoryRecordStore, InMemoryRunStore
from reconciliation.recrun.postgres import PostgresRecordStore, PostgresRunStore
from utils.database_types import DatabaseType


class PoolFactory:
    """Records create_pool calls and hands out mock pools."""

    def __init__(self):
        self.calls = []
        self.pools = {}

    def __call__(self, db_type, pool_name, **settings):
        self.calls.append((db_type, pool_name, settings))
        pool = MagicMock(name=f"pool-{pool_name}")
        pool.pool_name = pool_name
        self.pools[pool_name] = pool
        return pool


def base_document(**overrides):
    document = {
        "reconciliation": {
            "defaults": {"batch_size": 500, "batch_concurrency": 3},
            "datasets": {
                "customers": {
                    "source": {"datasource_ref": "legacy", "query": "SELECT id AS MigrationKey FROM customer"},
                    "target": {"datasource_ref": "warehouse", "query": "SELECT id AS MigrationKey FROM customers"},
                },
            },
        },
        "datasources": {
            "legacy": {"type": "sqlserver", "host": "mssql", "database": "src", "user": "sa", "password": "x"},
            "warehouse": {"type": "postgresql", "host": "pg", "port": "5432", "database": "tgt",
                          "user": "postgres", "password": "y", "pool": {"max_size": 4}},
        },
    }
    document.update(overrides)
    return document


class TestSchedule:
    """Test cron schedule parsing"""

    def test_empty_schedule(self):
        schedule = Schedule()

        assert schedule.empty
        assert schedule.next_trigger_time() is None
        assert schedule.summary == ""

    def test_next_trigger_time(self):
        schedule = Schedule("0 2 * * *")
        now = datetime(2024, 1, 1, 12, 0, tzinfo=schedule.trigger().timezone)

        next_time = schedule.next_trigger_time(now)

        assert (next_time.day, next_time.hour, next_time.minute) == (2, 2, 0)

    @pytest.mark.parametrize("expression", ["* * *", "0 2 * * * *", "61 * * * *", "0 2 * * funday"])
    def test_invalid_expression(self, expression):
        with pytest.raises(ConfigurationError):
            Schedule(expression)


class TestDefaults:
    def test_defaults(self):
        defaults = Defaults()

        assert defaults.batch_size == 1000
        assert defaults.batch_concurrency == 5
        assert defaults.hashing_strategy == HashingStrategy.TYPE_LENIENT
        assert defaults.query_file_base_dir == Path("queries")

    @pytest.mark.parametrize("field", ["batch_size", "batch_concurrency"])
    def test_non_positive_rejected(self, field):
        with pytest.raises(ConfigurationError, match=field):
            Defaults(**{field: 0})


class TestResolveQueryStatement:
    """Test query resolution for one side of a dataset"""

    def test_literal_query_wins(self, tmp_path):
        assert resolve_query_statement("ds", DataLoadRole.SOURCE, "SELECT 1", "missing.sql", tmp_path) == "SELECT 1"

    def test_explicit_query_file(self, tmp_path):
        query_file = tmp_path / "custom.sql"
        query_file.write_text("SELECT 2")

        assert resolve_query_statement("ds", DataLoadRole.TARGET, None, query_file, tmp_path) == "SELECT 2"

    def test_default_query_file(self, tmp_path):
        (tmp_path / "ds-source.sql").write_text("SELECT 3")

        assert resolve_query_statement("ds", DataLoadRole.SOURCE, None, None, tmp_path) == "SELECT 3"

    def test_unreadable_query_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot load query"):
            resolve_query_statement("ds", DataLoadRole.TARGET, None, None, tmp_path)


class TestInterpolateEnv:
    def test_substitutes_nested_values(self):
        env = {"HOST": "db.internal"}

        result = interpolate_env({"a": ["${HOST}:5432", 1], "b": "${MISSING:-fallback}"}, env)

        assert result == {"a": ["db.internal:5432", 1], "b": "fallback"}

    def test_missing_variable_without_default(self):
        with pytest.raises(ConfigurationError, match="NOPE"):
            interpolate_env("${NOPE}", {})


class TestParseConfiguration:
    """Test resolving configuration documents"""

    def test_builds_datasets_and_loaders(self):
        factory = PoolFactory()

        config = parse_configuration(base_document(), pool_factory=factory, env={})

        dataset = config.get("customers")
        assert dataset.source.datasource_ref == "legacy"
        assert dataset.target.loader is config.loaders["warehouse"]
        assert dataset.hashing_strategy == HashingStrategy.TYPE_LENIENT
        assert dataset.schedule.empty
        assert config.defaults.batch_size == 500
        assert config.loaders["legacy"].database_type == DatabaseType.SQLSERVER

        pg_call = next(call for call in factory.calls if call[1] == "warehouse")
        assert pg_call[0] == DatabaseType.POSTGRESQL
        assert pg_call[2]["port"] == 5432
        assert pg_call[2]["max_size"] == 4

    def test_dataset_overrides(self):
        document = base_document()
        dataset = document["reconciliation"]["datasets"]["customers"]
        dataset["hashing_strategy"] = "TypeStrict"
        dataset["schedule"] = {"cron_expression": "*/5 * * * *"}

        config = parse_configuration(document, pool_factory=PoolFactory(), env={})

        assert config.get("customers").hashing_strategy == HashingStrategy.TYPE_STRICT
        assert [d.id for d in config.scheduled_datasets()] == ["customers"]

    def test_unknown_datasource_ref(self):
        document = base_document()
        document["reconciliation"]["datasets"]["customers"]["target"]["datasource_ref"] = "nowhere"
        factory = PoolFactory()

        with pytest.raises(ConfigurationError, match=r"Cannot locate datasource named \[nowhere\]"):
            parse_configuration(document, pool_factory=factory, env={})

        for pool in factory.pools.values():
            pool.close.assert_called_once()

    def test_invalid_datasource_closes_earlier_pools(self):
        document = base_document()
        document["datasources"]["broken"] = {"type": "postgresql", "host": "pg", "port": "not-a-number",
                                             "database": "x", "user": "u", "password": "p"}
        factory = PoolFactory()

        with pytest.raises(ConfigurationError, match=r"Cannot configure datasource \[broken\]"):
            parse_configuration(document, pool_factory=factory, env={})

        assert set(factory.pools) == {"legacy", "warehouse"}
        for pool in factory.pools.values():
            pool.close.assert_called_once()

    def test_pool_creation_error_closes_earlier_pools(self):
        factory = PoolFactory()
        create = factory.__call__

        def failing_factory(db_type, pool_name, **settings):
            if pool_name == "warehouse":
                raise ConnectionError("could not connect to server")
            return create(db_type, pool_name, **settings)

        with pytest.raises(ConnectionError):
            parse_configuration(base_document(), pool_factory=failing_factory, env={})

        factory.pools["legacy"].close.assert_called_once()

    def test_missing_side(self):
        document = base_document()
        del document["reconciliation"]["datasets"]["customers"]["target"]

        with pytest.raises(ConfigurationError, match="target is required"):
            parse_configuration(document, pool_factory=PoolFactory(), env={})

    def test_invalid_strategy(self):
        document = base_document()
        document["reconciliation"]["defaults"]["hashing_strategy"] = "Fuzzy"

        with pytest.raises(ConfigurationError, match="Unknown hashing strategy"):
            parse_configuration(document, pool_factory=PoolFactory(), env={})

    def test_invalid_cron(self):
        document = base_document()
        document["reconciliation"]["datasets"]["customers"]["schedule"] = {"cron_expression": "every day"}

        with pytest.raises(ConfigurationError, match="Cron expression"):
            parse_configuration(document, pool_factory=PoolFactory(), env={})

    def test_unknown_datasource_type(self):
        document = base_document()
        document["datasources"]["legacy"]["type"] = "oracle"

        with pytest.raises(ConfigurationError, match="Unsupported datasource type"):
            parse_configuration(document, pool_factory=PoolFactory(), env={})

    def test_env_interpolation(self):
        document = base_document()
        document["datasources"]["warehouse"]["password"] = "${PG_PASSWORD}"
        factory = PoolFactory()

        parse_configuration(document, pool_factory=factory, env={"PG_PASSWORD": "s3cret"})

        pg_call = next(call for call in factory.calls if call[1] == "warehouse")
        assert pg_call[2]["password"] == "s3cret"

    def test_interpolated_timeouts_become_integers(self):
        document = base_document()
        document["datasources"]["legacy"]["query_timeout"] = "${QUERY_TIMEOUT:-120}"

        factory = PoolFactory()
        parse_configuration(document, pool_factory=factory, env={})

        legacy_call = next(call for call in factory.calls if call[1] == "legacy")
        assert legacy_call[2]["query_timeout"] == 120

    def test_trigger_on_start(self):
        document = base_document()
        document["reconciliation"]["trigger_on_start"] = "customers"

        config = parse_configuration(document, pool_factory=PoolFactory(), env={})

        assert config.trigger_on_start == ["customers"]

    def test_memory_store_by_default(self):
        config = parse_configuration(base_document(), pool_factory=PoolFactory(), env={})

        run_store, record_store = config.create_stores()

        assert config.store.type == StoreType.MEMORY
        assert isinstance(run_store, InMemoryRunStore)
        assert isinstance(record_store, InMemoryRecordStore)

    def test_postgres_store(self):
        document = base_document(store={"type": "postgresql", "datasource_ref": "warehouse"})
        factory = PoolFactory()

        config = parse_configuration(document, pool_factory=factory, env={})
        run_store, record_store = config.create_stores()

        assert isinstance(run_store, PostgresRunStore)
        assert isinstance(record_store, PostgresRecordStore)
        assert run_store.pool is factory.pools["warehouse"]

    def test_postgres_store_requires_postgres_datasource(self):
        document = base_document(store={"type": "postgresql", "datasource_ref": "legacy"})

        with pytest.raises(ConfigurationError, match="must be a PostgreSQL datasource"):
            parse_configuration(document, pool_factory=PoolFactory(), env={})

    def test_close_closes_every_pool(self):
        factory = PoolFactory()
        config = parse_configuration(base_document(), pool_factory=factory, env={})

        config.close()

        assert all(pool.close.called for pool in factory.pools.values())


class TestLoadConfiguration:
    """Test loading configuration files"""

    def test_loads_yaml_file(self, tmp_path):
        path = tmp_path / "reconciliation.yml"
        path.write_text(yaml.safe_dump(base_document()))

        config = load_configuration(path, pool_factory=PoolFactory(), env={})

        assert list(config.datasets) == ["customers"]

    def test_path_from_environment(self, tmp_path):
        path = tmp_path / "reconciliation.yml"
        path.write_text(yaml.safe_dump(base_document()))

        config = load_configuration(pool_factory=PoolFactory(), env={"RECONCILIATION_CONFIG": str(path)})

        assert config.get("customers") is not None

    def test_no_path(self):
        with pytest.raises(ConfigurationError, match="No configuration file given"):
            load_configuration(pool_factory=PoolFactory(), env={})

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read configuration file"):
            load_configuration(tmp_path / "absent.yml", pool_factory=PoolFactory(), env={})

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yml"
        path.write_text("reconciliation: [unclosed")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_configuration(path, pool_factory=PoolFactory(), env={})
