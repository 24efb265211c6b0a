"""
Database connection pooling for PostgreSQL and SQL Server.

Each configured datasource gets its own pool, created through
create_pool() from the datasource's connection settings.
"""

import logging
from typing import Any

from utils.database_types import DatabaseType

from .base import (
    BaseConnectionPool,
    ConnectionPoolError,
    PoolClosedError,
    PooledConnection,
    PoolExhaustedError,
)
from .postgres import PostgresConnectionPool
from .sqlserver import SQLServerConnectionPool

logger = logging.getLogger(__name__)

POOL_CLASSES: dict[DatabaseType, type[BaseConnectionPool]] = {
    DatabaseType.POSTGRESQL: PostgresConnectionPool,
    DatabaseType.SQLSERVER: SQLServerConnectionPool,
}


def create_pool(
    db_type: DatabaseType,
    pool_name: str,
    **settings: Any,
) -> BaseConnectionPool:
    """
    Create a connection pool for a datasource.

    Args:
        db_type: Database type of the datasource
        pool_name: Pool name, usually the datasource reference
        **settings: Connection parameters plus optional pool sizing
            (min_size, max_size, acquire_timeout, ...)

    Returns:
        Pool instance for the database type
    """
    logger.info(f"Creating {db_type.value} connection pool '{pool_name}'")
    return POOL_CLASSES[db_type](pool_name=pool_name, **settings)


__all__ = [
    "BaseConnectionPool",
    "PostgresConnectionPool",
    "SQLServerConnectionPool",
    "PooledConnection",
    "ConnectionPoolError",
    "PoolExhaustedError",
    "PoolClosedError",
    "create_pool",
]
