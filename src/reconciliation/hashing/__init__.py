"""
Row hashing for dataset reconciliation

Reduces each row to (migration key, SHA-256 content hash) so that the
source and target sides can be compared without moving raw data.
"""

from .strategy import (
    HASH_FIELD_SEPARATOR,
    MIGRATION_KEY_COLUMN_NAME,
    ROWSTAT_COLUMN_NAME,
    HashingStrategy,
    MigrationKeyError,
    UnhashableValueError,
    sanitize_columns,
)
from .types import ColumnMeta, ColumnType, HashedRow, Row

__all__ = [
    "ColumnType",
    "ColumnMeta",
    "Row",
    "HashedRow",
    "HashingStrategy",
    "MigrationKeyError",
    "UnhashableValueError",
    "MIGRATION_KEY_COLUMN_NAME",
    "ROWSTAT_COLUMN_NAME",
    "HASH_FIELD_SEPARATOR",
    "sanitize_columns",
]
