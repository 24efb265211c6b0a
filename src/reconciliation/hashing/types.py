"""
Row and column types consumed by the row hasher.

A dataset loader turns each driver row into a `Row`: the raw values
plus one `ColumnMeta` per column, whose `ColumnType` is the closed set
of kinds the hasher knows how to encode.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class ColumnType(str, Enum):
    """
    Declared kind of a column as reported by the datasource.

    OTHER covers driver types outside the known set; values in such
    columns are classified from their Python type at hash time.
    """

    BOOLEAN = "Boolean"
    INT8 = "Int8"
    INT16 = "Int16"
    INT32 = "Int32"
    INT64 = "Int64"
    FLOAT32 = "Float32"
    FLOAT64 = "Float64"
    DECIMAL = "Decimal"
    STRING = "String"
    BYTES = "Bytes"
    OTHER = "Other"

    @property
    def is_integer(self) -> bool:
        return self in _INTEGER_TYPES

    @property
    def is_float(self) -> bool:
        return self in (ColumnType.FLOAT32, ColumnType.FLOAT64)

    def accepts(self, value: Any) -> bool:
        """Whether a non-null value is a valid Python representation of this type."""
        if self == ColumnType.BOOLEAN:
            return isinstance(value, bool)
        if self.is_integer:
            return isinstance(value, int) and not isinstance(value, bool)
        if self.is_float:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self == ColumnType.DECIMAL:
            return isinstance(value, Decimal)
        if self == ColumnType.STRING:
            return isinstance(value, str)
        if self == ColumnType.BYTES:
            return isinstance(value, (bytes, bytearray, memoryview))
        return False

    @classmethod
    def infer(cls, value: Any) -> "ColumnType | None":
        """
        Classify a Python value into the widest matching column type.

        Returns None when the value is not one of the supported kinds.
        """
        if isinstance(value, bool):
            return cls.BOOLEAN
        if isinstance(value, int):
            return cls.INT64
        if isinstance(value, float):
            return cls.FLOAT64
        if isinstance(value, Decimal):
            return cls.DECIMAL
        if isinstance(value, str):
            return cls.STRING
        if isinstance(value, (bytes, bytearray, memoryview)):
            return cls.BYTES
        return None


_INTEGER_TYPES = frozenset({
    ColumnType.INT8,
    ColumnType.INT16,
    ColumnType.INT32,
    ColumnType.INT64,
})


@dataclass(frozen=True)
class ColumnMeta:
    """
    Metadata for one column of a result set.

    Attributes:
        name: Column name as reported by the driver
        column_type: Declared kind used for hashing
        reported_type: Driver's own type name, kept for diagnostics
    """

    name: str
    column_type: ColumnType = ColumnType.OTHER
    reported_type: str = ""

    @property
    def type_name(self) -> str:
        return self.reported_type or self.column_type.value

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": self.type_name}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "ColumnMeta":
        type_name = data.get("type", "")
        try:
            return cls(data["name"], ColumnType(type_name))
        except ValueError:
            return cls(data["name"], ColumnType.OTHER, type_name)


@dataclass(frozen=True)
class Row:
    """One result-set row with its column metadata."""

    values: Sequence[Any]
    columns: Sequence[ColumnMeta]

    def __post_init__(self):
        if len(self.values) != len(self.columns):
            raise ValueError(
                f"Row has {len(self.values)} values but {len(self.columns)} columns"
            )


@dataclass(frozen=True)
class HashedRow:
    """
    Result of hashing one row.

    Attributes:
        migration_key: Logical key of the record, as a string
        hashed_value: Lowercase hex SHA-256 of the non-key columns
        columns: Metadata of the non-key columns, in order
    """

    migration_key: str
    hashed_value: str
    columns: tuple[ColumnMeta, ...] = field(default_factory=tuple)
