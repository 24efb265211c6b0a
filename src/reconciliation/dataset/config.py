"""
YAML configuration loading for datasets, datasources and stores.

Configuration is read once at startup. Every datasource becomes a
DatasourceLoader backed by its own connection pool, and every dataset is
resolved against those loaders, so unknown references, unreadable query
files and invalid cron expressions fail here rather than mid-run.

Example:
    reconciliation:
      defaults:
        batch_size: 1000
        hashing_strategy: TypeLenient
      datasets:
        customers:
          schedule: {cron_expression: "0 2 * * *"}
          source: {datasource_ref: legacy, query: "SELECT id AS MigrationKey, name FROM customer"}
          target: {datasource_ref: warehouse}
    datasources:
      legacy: {type: sqlserver, host: "${SQLSERVER_HOST:-localhost}", ...}
      warehouse: {type: postgresql, host: "${POSTGRES_HOST}", ...}
"""

import logging
import os
import re
from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from reconciliation.hashing import HashingStrategy
from reconciliation.recrun import InMemoryRecordStore, InMemoryRunStore, RecordStore, RunStore
from reconciliation.recrun.postgres import PostgresRecordStore, PostgresRunStore
from utils.database_types import DatabaseType
from utils.db_pool import BaseConnectionPool, create_pool

from .definition import (
    ConfigurationError,
    DataLoadDefinition,
    DataLoadRole,
    DatasetDefinition,
    Defaults,
    Schedule,
    resolve_query_statement,
)
from .loader import DEFAULT_FETCH_SIZE, DatasourceLoader

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "RECONCILIATION_CONFIG"

ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

INTEGER_SETTINGS = ("port", "connect_timeout", "query_timeout")

PoolFactory = Callable[..., BaseConnectionPool]


def interpolate_env(value: Any, env: Mapping[str, str]) -> Any:
    """
    Replace ${VAR} and ${VAR:-default} references in string values.

    Raises:
        ConfigurationError: If a referenced variable is unset and has no default
    """
    if isinstance(value, dict):
        return {key: interpolate_env(item, env) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate_env(item, env) for item in value]
    if not isinstance(value, str):
        return value

    def substitute(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        if name in env:
            return env[name]
        if default is not None:
            return default
        raise ConfigurationError(f"Environment variable [{name}] is not set")

    return ENV_REFERENCE.sub(substitute, value)


class StoreType(str, Enum):
    MEMORY = "memory"
    POSTGRESQL = "postgresql"


@dataclass(frozen=True)
class StoreSettings:
    type: StoreType = StoreType.MEMORY
    datasource_ref: str | None = None


@dataclass
class ReconciliationConfiguration:
    """Resolved configuration: datasets bound to live datasource loaders."""

    datasets: dict[str, DatasetDefinition]
    defaults: Defaults = field(default_factory=Defaults)
    loaders: dict[str, DatasourceLoader] = field(default_factory=dict)
    trigger_on_start: list[str] = field(default_factory=list)
    store: StoreSettings = field(default_factory=StoreSettings)

    def get(self, dataset_id: str) -> DatasetDefinition | None:
        return self.datasets.get(dataset_id)

    def sorted_datasets(self) -> list[DatasetDefinition]:
        return [self.datasets[dataset_id] for dataset_id in sorted(self.datasets)]

    def scheduled_datasets(self) -> list[DatasetDefinition]:
        return [d for d in self.sorted_datasets() if not d.schedule.empty]

    def create_stores(self) -> tuple[RunStore, RecordStore]:
        """Build the run and record stores selected by the `store` section."""
        if self.store.type == StoreType.MEMORY:
            return InMemoryRunStore(), InMemoryRecordStore()

        pool = self.loaders[self.store.datasource_ref].pool
        return PostgresRunStore(pool), PostgresRecordStore(pool)

    def close(self) -> None:
        for loader in self.loaders.values():
            loader.close()


def _require_mapping(value: Any, where: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{where} must be a mapping, got {type(value).__name__}")
    return value


def _parse_strategy(name: str, where: str) -> HashingStrategy:
    try:
        return HashingStrategy.from_name(name)
    except ValueError as e:
        raise ConfigurationError(f"{where}: {e}") from e


def _parse_defaults(raw: dict) -> Defaults:
    raw = _require_mapping(raw, "reconciliation.defaults")
    fallback = Defaults()
    try:
        return Defaults(
            batch_size=int(raw.get("batch_size", fallback.batch_size)),
            batch_concurrency=int(raw.get("batch_concurrency", fallback.batch_concurrency)),
            hashing_strategy=_parse_strategy(
                raw.get("hashing_strategy", fallback.hashing_strategy.value),
                "reconciliation.defaults.hashing_strategy",
            ),
            query_file_base_dir=Path(raw.get("query_file_base_dir", fallback.query_file_base_dir)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid reconciliation.defaults: {e}") from e


def _build_loader(name: str, raw: Any, pool_factory: PoolFactory) -> DatasourceLoader:
    settings = dict(_require_mapping(raw, f"datasources.{name}"))

    try:
        db_type = DatabaseType.from_name(settings.pop("type", ""))
    except ValueError as e:
        raise ConfigurationError(f"Datasource [{name}]: {e}") from e

    pool_settings = _require_mapping(settings.pop("pool", None), f"datasources.{name}.pool")

    try:
        fetch_size = int(settings.pop("fetch_size", DEFAULT_FETCH_SIZE))
        for key in INTEGER_SETTINGS:
            if settings.get(key) is not None:
                settings[key] = int(settings[key])
        pool = pool_factory(db_type, name, **settings, **pool_settings)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Cannot configure datasource [{name}]: {e}") from e

    return DatasourceLoader(pool, db_type, fetch_size=fetch_size, name=name)


def _build_load_definition(
    dataset_id: str,
    role: DataLoadRole,
    raw: Any,
    loaders: dict[str, DatasourceLoader],
    defaults: Defaults,
) -> DataLoadDefinition:
    where = f"reconciliation.datasets.{dataset_id}.{role.value.lower()}"
    if raw is None:
        raise ConfigurationError(f"{where} is required")
    raw = _require_mapping(raw, where)

    datasource_ref = raw.get("datasource_ref")
    if not datasource_ref:
        raise ConfigurationError(f"{where}.datasource_ref must not be blank")
    if datasource_ref not in loaders:
        raise ConfigurationError(
            f"Cannot locate datasource named [{datasource_ref}] in configuration!"
        )

    return DataLoadDefinition(
        dataset_id=dataset_id,
        role=role,
        datasource_ref=datasource_ref,
        query_statement=resolve_query_statement(
            dataset_id,
            role,
            raw.get("query"),
            raw.get("query_file"),
            defaults.query_file_base_dir,
        ),
        loader=loaders[datasource_ref],
    )


def _build_dataset(
    dataset_id: str,
    raw: Any,
    loaders: dict[str, DatasourceLoader],
    defaults: Defaults,
) -> DatasetDefinition:
    raw = _require_mapping(raw, f"reconciliation.datasets.{dataset_id}")

    strategy = defaults.hashing_strategy
    if raw.get("hashing_strategy"):
        strategy = _parse_strategy(
            raw["hashing_strategy"],
            f"reconciliation.datasets.{dataset_id}.hashing_strategy",
        )

    schedule_raw = _require_mapping(raw.get("schedule"), f"reconciliation.datasets.{dataset_id}.schedule")

    return DatasetDefinition(
        id=dataset_id,
        source=_build_load_definition(dataset_id, DataLoadRole.SOURCE, raw.get("source"), loaders, defaults),
        target=_build_load_definition(dataset_id, DataLoadRole.TARGET, raw.get("target"), loaders, defaults),
        hashing_strategy=strategy,
        schedule=Schedule(schedule_raw.get("cron_expression")),
    )


def _parse_store(raw: Any, loaders: dict[str, DatasourceLoader]) -> StoreSettings:
    raw = _require_mapping(raw, "store")
    try:
        store_type = StoreType(str(raw.get("type", StoreType.MEMORY.value)).lower())
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown store type [{raw.get('type')}], expected one of {[t.value for t in StoreType]}"
        ) from e

    datasource_ref = raw.get("datasource_ref")
    if store_type == StoreType.POSTGRESQL:
        loader = loaders.get(datasource_ref)
        if loader is None:
            raise ConfigurationError(
                f"Cannot locate datasource named [{datasource_ref}] for the results store"
            )
        if loader.database_type != DatabaseType.POSTGRESQL:
            raise ConfigurationError(
                f"Results store datasource [{datasource_ref}] must be a PostgreSQL datasource"
            )

    return StoreSettings(type=store_type, datasource_ref=datasource_ref)


def parse_configuration(
    raw: Mapping[str, Any],
    pool_factory: PoolFactory = create_pool,
    env: Mapping[str, str] | None = None,
) -> ReconciliationConfiguration:
    """
    Resolve a configuration document into bound dataset definitions.

    Args:
        raw: Parsed configuration document
        pool_factory: Creates a connection pool for a datasource
        env: Environment used for ${VAR} interpolation (default: os.environ)

    Raises:
        ConfigurationError: On any invalid or unresolvable setting
    """
    document = interpolate_env(
        _require_mapping(dict(raw or {}), "configuration"),
        os.environ if env is None else env,
    )

    rec = _require_mapping(document.get("reconciliation"), "reconciliation")
    defaults = _parse_defaults(rec.get("defaults"))

    datasources = _require_mapping(document.get("datasources"), "datasources")
    loaders: dict[str, DatasourceLoader] = {}

    try:
        for name, settings in datasources.items():
            loaders[name] = _build_loader(name, settings, pool_factory)

        datasets = {
            str(dataset_id): _build_dataset(str(dataset_id), dataset_raw, loaders, defaults)
            for dataset_id, dataset_raw in _require_mapping(
                rec.get("datasets"), "reconciliation.datasets"
            ).items()
        }
        store = _parse_store(document.get("store"), loaders)
    except Exception:
        for loader in loaders.values():
            loader.close()
        raise

    trigger_on_start = rec.get("trigger_on_start") or []
    if isinstance(trigger_on_start, str):
        trigger_on_start = [trigger_on_start]

    by_descriptor = defaultdict(list)
    for dataset in datasets.values():
        by_descriptor[dataset.datasource_descriptor].append(dataset.id)
    logger.info(
        f"Loaded {len(datasets)} datasets available for triggering: "
        f"{dict(sorted(by_descriptor.items()))}"
    )
    logger.info(
        f"Reconciliation batch size is {defaults.batch_size} "
        f"and concurrency is {defaults.batch_concurrency}"
    )

    return ReconciliationConfiguration(
        datasets=datasets,
        defaults=defaults,
        loaders=loaders,
        trigger_on_start=[str(dataset_id) for dataset_id in trigger_on_start],
        store=store,
    )


def load_configuration(
    path: str | Path | None = None,
    pool_factory: PoolFactory = create_pool,
    env: Mapping[str, str] | None = None,
) -> ReconciliationConfiguration:
    """
    Load configuration from a YAML file.

    Args:
        path: Configuration file; defaults to $RECONCILIATION_CONFIG
        pool_factory: Creates a connection pool for a datasource
        env: Environment used for interpolation (default: os.environ)

    Raises:
        ConfigurationError: If the file is missing, unparseable or invalid
    """
    environment = os.environ if env is None else env
    path = path or environment.get(CONFIG_ENV_VAR)
    if not path:
        raise ConfigurationError(
            f"No configuration file given; pass --config or set {CONFIG_ENV_VAR}"
        )

    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file [{path}]: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file [{path}]: {e}") from e

    logger.info(f"Loading reconciliation configuration from {path}")
    return parse_configuration(raw, pool_factory=pool_factory, env=environment)
