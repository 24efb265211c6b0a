"""PostgreSQL connection pool implementation."""

from typing import Any

import psycopg2
import psycopg2.extensions
from opentelemetry import trace

from utils.tracing import trace_operation

from .base import BaseConnectionPool


class PostgresConnectionPool(BaseConnectionPool):
    """
    Connection pool for PostgreSQL datasources and the PostgreSQL run store.

    Connections run in autocommit mode so that dataset queries can be
    streamed through WITH HOLD server-side cursors.
    """

    db_type = "postgresql"

    def __init__(
        self,
        host: str,
        database: str,
        user: str,
        password: str,
        port: int = 5432,
        connect_timeout: int = 10,
        query_timeout: int | None = None,
        application_name: str = "dataset-reconciliation",
        **kwargs: Any,
    ):
        """
        Args:
            host: PostgreSQL host
            database: Database name
            user: Username
            password: Password
            port: PostgreSQL port (default: 5432)
            connect_timeout: Seconds to wait for a new connection
            query_timeout: Seconds before the server cancels a statement
                (None leaves the server's statement_timeout in place)
            application_name: Reported in pg_stat_activity
            **kwargs: Additional arguments for BaseConnectionPool
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.connect_timeout = connect_timeout
        self.query_timeout = query_timeout
        self.application_name = application_name

        super().__init__(**kwargs)

    def _connect_kwargs(self) -> dict[str, Any]:
        kwargs = {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
            "application_name": self.application_name,
        }
        if self.query_timeout:
            kwargs["options"] = f"-c statement_timeout={int(self.query_timeout * 1000)}"
        return kwargs

    def _create_connection(self) -> psycopg2.extensions.connection:
        with trace_operation(
            "postgres_connect",
            kind=trace.SpanKind.CLIENT,
            db_host=self.host,
            db_name=self.database,
        ):
            conn = psycopg2.connect(**self._connect_kwargs())
            conn.set_session(autocommit=True)
            return conn

    def _is_connection_healthy(self, conn: psycopg2.extensions.connection) -> bool:
        if conn is None or conn.closed:
            return False

        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            return True
        except (psycopg2.Error, psycopg2.Warning):
            return False

    def _close_connection(self, conn: psycopg2.extensions.connection) -> None:
        if conn is not None and not conn.closed:
            conn.close()
