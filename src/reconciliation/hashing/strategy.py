"""
Hashing strategies that reduce a row to a migration key and a content hash.

Every non-key column is fed into a single SHA-256 digest using a fixed
binary encoding for its type, followed by a separator after every column.
TypeStrict keeps declared widths and typed null markers; TypeLenient
widens numbers to 64 bits and lets nulls contribute nothing, so equal
values read from differently-typed databases hash the same.
"""

import hashlib
import logging
import struct
from decimal import Decimal
from enum import Enum
from typing import Any

from .types import ColumnMeta, ColumnType, HashedRow, Row

logger = logging.getLogger(__name__)

MIGRATION_KEY_COLUMN_NAME = "MigrationKey"

# Trailing synthetic column some SQL Server drivers append to result sets
ROWSTAT_COLUMN_NAME = "ROWSTAT"

# U+2029 PARAGRAPH SEPARATOR as a UTF-16LE code unit
HASH_FIELD_SEPARATOR = "\u2029".encode("utf-16-le")

_STRICT_FORMATS = {
    ColumnType.BOOLEAN: "<?",
    ColumnType.INT8: "<b",
    ColumnType.INT16: "<h",
    ColumnType.INT32: "<i",
    ColumnType.INT64: "<q",
    ColumnType.FLOAT32: "<f",
    ColumnType.FLOAT64: "<d",
}

_INT64_RANGE = 1 << 64


class MigrationKeyError(ValueError):
    """Row has no usable migration key column."""


class UnhashableValueError(ValueError):
    """Column value of a type the hasher cannot encode."""


def _to_int64(value: int) -> int:
    """Wrap an arbitrary-precision integer to signed 64 bits."""
    return ((value + (1 << 63)) % _INT64_RANGE) - (1 << 63)


def _encode_decimal(value: Decimal) -> bytes:
    sign, digits, exponent = value.as_tuple()
    if not isinstance(exponent, int):
        raise ValueError(f"non-finite decimal {value}")

    unscaled = int("".join(map(str, digits)) or "0")
    if sign:
        unscaled = -unscaled

    return struct.pack("<q", _to_int64(unscaled)) + struct.pack("<i", -exponent)


def sanitize_columns(columns: list[ColumnMeta]) -> list[ColumnMeta]:
    """Drop trailing ROWSTAT columns injected by the driver."""
    end = len(columns)
    while end > 0 and columns[end - 1].name == ROWSTAT_COLUMN_NAME:
        end -= 1
    return list(columns[:end])


class HashingStrategy(str, Enum):
    """How column values are encoded into the row digest."""

    TYPE_LENIENT = "TypeLenient"
    TYPE_STRICT = "TypeStrict"

    @classmethod
    def from_name(cls, name: str) -> "HashingStrategy":
        """
        Resolve a configured strategy name (case-insensitive).

        Raises:
            ValueError: If the name is not a known strategy
        """
        for strategy in cls:
            if strategy.value.lower() == (name or "").strip().lower():
                return strategy
        raise ValueError(
            f"Unknown hashing strategy [{name}], expected one of {[s.value for s in cls]}"
        )

    def _resolve_type(self, index: int, column: ColumnMeta, value: Any) -> ColumnType:
        column_type = column.column_type
        if column_type == ColumnType.OTHER:
            column_type = ColumnType.infer(value)
        if column_type is None or not column_type.accepts(value):
            raise UnhashableValueError(
                f"{self.value} hasher does not understand how to hash "
                f"{type(value).__name__} for column [{column.name}] at index [{index}]"
            )
        return column_type

    def encode(self, index: int, column: ColumnMeta, value: Any) -> bytes:
        """
        Encode one non-key column value for the digest.

        Args:
            index: Position of the column in the row
            column: Metadata of the column
            value: Raw value from the driver (may be None)

        Returns:
            Bytes to feed to the digest (possibly empty)

        Raises:
            UnhashableValueError: If the value cannot be encoded
        """
        if value is None:
            if self == HashingStrategy.TYPE_STRICT:
                type_name = column.column_type.value
                if column.column_type == ColumnType.OTHER:
                    type_name = column.type_name
                return f"{type_name}(NULL)".encode()
            return b""

        column_type = self._resolve_type(index, column, value)

        if column_type == ColumnType.STRING:
            return value.encode("utf-8")
        if column_type == ColumnType.BYTES:
            return bytes(value)

        try:
            if column_type == ColumnType.DECIMAL:
                return _encode_decimal(value)
            if self == HashingStrategy.TYPE_STRICT:
                return struct.pack(_STRICT_FORMATS[column_type], value)
            if column_type.is_float:
                return struct.pack("<d", float(value))
            return struct.pack("<q", int(value))
        except (struct.error, OverflowError, ValueError) as e:
            raise UnhashableValueError(
                f"{self.value} hasher cannot encode {value!r} as {column_type.value} "
                f"for column [{column.name}] at index [{index}]: {e}"
            ) from e

    def hash(self, row: Row, migration_key_column: str = MIGRATION_KEY_COLUMN_NAME) -> HashedRow:
        """
        Hash a row into its migration key and content hash.

        Exactly one column must match `migration_key_column`
        (case-insensitively) and hold a non-null value.

        Raises:
            MigrationKeyError: If the key column is missing, duplicated or null
            UnhashableValueError: If a column value cannot be encoded
        """
        columns = sanitize_columns(list(row.columns))
        key_name = migration_key_column.lower()

        migration_key = None
        digest = hashlib.sha256()
        meta = []

        for index, column in enumerate(columns):
            value = row.values[index]

            if column.name.lower() == key_name:
                if value is None:
                    raise MigrationKeyError(
                        f"{migration_key_column} has null value somewhere in dataset"
                    )
                if migration_key is not None:
                    raise MigrationKeyError(
                        f"More than one column named {migration_key_column} found in dataset"
                    )
                migration_key = str(value)
            else:
                digest.update(self.encode(index, column, value))
                meta.append(column)

            digest.update(HASH_FIELD_SEPARATOR)

        if migration_key is None:
            raise MigrationKeyError(
                f"No column named {migration_key_column} found in dataset"
            )

        return HashedRow(
            migration_key=migration_key,
            hashed_value=digest.hexdigest(),
            columns=tuple(meta),
        )
