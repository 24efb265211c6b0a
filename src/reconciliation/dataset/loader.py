"""
Streams query results from a datasource as hashable rows.

Column metadata is derived once per result set from the DB-API cursor
description and mapped onto the closed set of ColumnType kinds.
"""

import logging
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from decimal import Decimal
from typing import Any

from reconciliation.hashing import ColumnMeta, ColumnType, Row
from utils.database_types import DatabaseType
from utils.db_pool import BaseConnectionPool

logger = logging.getLogger(__name__)

DEFAULT_FETCH_SIZE = 1000

# PostgreSQL type OIDs
POSTGRES_TYPE_CODES: dict[int, tuple[ColumnType, str]] = {
    16: (ColumnType.BOOLEAN, "bool"),
    17: (ColumnType.BYTES, "bytea"),
    19: (ColumnType.STRING, "name"),
    20: (ColumnType.INT64, "int8"),
    21: (ColumnType.INT16, "int2"),
    23: (ColumnType.INT32, "int4"),
    25: (ColumnType.STRING, "text"),
    700: (ColumnType.FLOAT32, "float4"),
    701: (ColumnType.FLOAT64, "float8"),
    1042: (ColumnType.STRING, "bpchar"),
    1043: (ColumnType.STRING, "varchar"),
    1700: (ColumnType.DECIMAL, "numeric"),
}

# pyodbc reports integer columns as `int`; the width comes from precision
SQLSERVER_INT_PRECISIONS: dict[int, tuple[ColumnType, str]] = {
    3: (ColumnType.INT16, "tinyint"),
    5: (ColumnType.INT16, "smallint"),
    10: (ColumnType.INT32, "int"),
    19: (ColumnType.INT64, "bigint"),
}


def _postgres_column(description: Sequence[Any]) -> ColumnMeta:
    name, type_code = description[0], description[1]
    column_type, type_name = POSTGRES_TYPE_CODES.get(
        type_code, (ColumnType.OTHER, f"oid:{type_code}")
    )
    return ColumnMeta(name, column_type, type_name)


def _sqlserver_column(description: Sequence[Any]) -> ColumnMeta:
    name, type_code = description[0], description[1]
    precision = description[4] if len(description) > 4 else None

    if type_code is bool:
        return ColumnMeta(name, ColumnType.BOOLEAN, "bit")
    if type_code is int:
        column_type, type_name = SQLSERVER_INT_PRECISIONS.get(
            precision, (ColumnType.INT64, "int")
        )
        return ColumnMeta(name, column_type, type_name)
    if type_code is float:
        if precision is not None and precision <= 24:
            return ColumnMeta(name, ColumnType.FLOAT32, "real")
        return ColumnMeta(name, ColumnType.FLOAT64, "float")
    if type_code is Decimal:
        return ColumnMeta(name, ColumnType.DECIMAL, "decimal")
    if type_code is str:
        return ColumnMeta(name, ColumnType.STRING, "varchar")
    if type_code in (bytes, bytearray):
        return ColumnMeta(name, ColumnType.BYTES, "varbinary")
    return ColumnMeta(name, ColumnType.OTHER, getattr(type_code, "__name__", str(type_code)))


def describe_columns(
    database_type: DatabaseType,
    description: Sequence[Sequence[Any]] | None,
) -> tuple[ColumnMeta, ...]:
    """
    Map a DB-API cursor description to column metadata.

    Args:
        database_type: Dialect that produced the description
        description: `cursor.description` after a query has executed

    Returns:
        One ColumnMeta per result column, in order
    """
    if not description:
        return ()
    to_column = (
        _postgres_column if database_type == DatabaseType.POSTGRESQL else _sqlserver_column
    )
    return tuple(to_column(column) for column in description)


class DatasourceLoader:
    """
    Executes reconciliation queries against one datasource.

    Args:
        pool: Connection pool of the datasource
        database_type: Dialect of the datasource
        fetch_size: Rows fetched from the cursor per round trip
        name: Datasource reference, for logs
    """

    def __init__(
        self,
        pool: BaseConnectionPool,
        database_type: DatabaseType,
        fetch_size: int = DEFAULT_FETCH_SIZE,
        name: str | None = None,
    ):
        self.pool = pool
        self.database_type = database_type
        self.fetch_size = fetch_size
        self.name = name or pool.pool_name

    def _open_cursor(self, conn):
        if self.database_type == DatabaseType.POSTGRESQL:
            # Server-side cursor so large results are not buffered client-side
            return conn.cursor(name=f"reconciliation_{uuid.uuid4().hex}", withhold=True)
        return conn.cursor()

    def _rows(self, cursor) -> Iterator[Row]:
        columns = None
        while True:
            batch = cursor.fetchmany(self.fetch_size)
            if not batch:
                return
            if columns is None:
                # Named cursors only describe the result after the first fetch
                columns = describe_columns(self.database_type, cursor.description)
            for values in batch:
                yield Row(tuple(values), columns)

    @contextmanager
    def stream(self, query: str) -> Iterator[Iterator[Row]]:
        """
        Run a query and stream its rows.

        The pooled connection is held for the duration of the block and
        released on every exit path.

        Yields:
            Lazy iterator over the result rows
        """
        logger.debug(f"Running query against datasource [{self.name}]")
        with self.pool.acquire() as conn:
            cursor = self._open_cursor(conn)
            try:
                cursor.execute(query)
                yield self._rows(cursor)
            finally:
                cursor.close()

    def close(self) -> None:
        self.pool.close()
