"""
Datasets: configured pairs of source and target queries

Each dataset is resolved from configuration into a DatasetDefinition
whose two sides are bound to a DatasourceLoader.
"""

from .config import (
    ReconciliationConfiguration,
    StoreSettings,
    StoreType,
    interpolate_env,
    load_configuration,
    parse_configuration,
)
from .definition import (
    ConfigurationError,
    DataLoadDefinition,
    DataLoadRole,
    DatasetDefinition,
    Defaults,
    Schedule,
    resolve_query_statement,
)
from .loader import DatasourceLoader, describe_columns

__all__ = [
    "ConfigurationError",
    "DataLoadDefinition",
    "DataLoadRole",
    "DatasetDefinition",
    "Defaults",
    "Schedule",
    "resolve_query_statement",
    "DatasourceLoader",
    "describe_columns",
    "ReconciliationConfiguration",
    "StoreSettings",
    "StoreType",
    "interpolate_env",
    "load_configuration",
    "parse_configuration",
]
