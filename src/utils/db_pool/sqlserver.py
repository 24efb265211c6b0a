"""SQL Server connection pool implementation."""

from typing import Any

import pyodbc
from opentelemetry import trace

from utils.tracing import trace_operation

from .base import BaseConnectionPool

DEFAULT_DRIVER = "ODBC Driver 18 for SQL Server"


def parse_connection_string(connection_string: str) -> dict[str, str]:
    """Split an ODBC connection string into upper-cased keys and their values."""
    parts = {}
    for part in connection_string.split(";"):
        key, sep, value = part.partition("=")
        if sep:
            parts[key.strip().upper()] = value.strip()
    return parts


class SQLServerConnectionPool(BaseConnectionPool):
    """
    Connection pool for SQL Server datasources.

    Reconciliation only reads from SQL Server, so connections can ask for
    read-only intent and be routed to a readable secondary.
    """

    db_type = "sqlserver"

    def __init__(
        self,
        host: str | None = None,
        port: int = 1433,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        driver: str = DEFAULT_DRIVER,
        connection_string: str | None = None,
        connect_timeout: int = 10,
        query_timeout: int | None = None,
        application_name: str = "dataset-reconciliation",
        read_only: bool = False,
        **kwargs: Any,
    ):
        """
        Args:
            host: SQL Server host (required if connection_string not provided)
            port: SQL Server port
            database: Database name (required if connection_string not provided)
            user: Username (required if connection_string not provided)
            password: Password (required if connection_string not provided)
            driver: ODBC driver name
            connection_string: Complete ODBC connection string, used as given
            connect_timeout: Seconds to wait for a new connection
            query_timeout: Seconds before a statement is cancelled (None waits forever)
            application_name: Reported as the client program name
            read_only: Request ApplicationIntent=ReadOnly
            **kwargs: Additional arguments for BaseConnectionPool
        """
        if connection_string:
            parts = parse_connection_string(connection_string)
            self.connection_string = connection_string
            self.host = parts.get("SERVER", "unknown")
            self.database = parts.get("DATABASE", "unknown")
        else:
            if not all([host, port, database, user, password]):
                raise ValueError(
                    "Either connection_string or all of "
                    "(host, port, database, user, password) must be provided"
                )
            self.host = host
            self.database = database
            self.connection_string = (
                f"DRIVER={{{driver}}};"
                f"SERVER={host},{port};"
                f"DATABASE={database};"
                f"UID={user};"
                f"PWD={password};"
                f"APP={application_name};"
                f"TrustServerCertificate=yes;"
                f"Encrypt=yes;"
            )
            if read_only:
                self.connection_string += "ApplicationIntent=ReadOnly;"

        self.connect_timeout = connect_timeout
        self.query_timeout = query_timeout

        super().__init__(**kwargs)

    def _create_connection(self) -> pyodbc.Connection:
        with trace_operation(
            "sqlserver_connect",
            kind=trace.SpanKind.CLIENT,
            db_host=self.host,
            db_name=self.database,
        ):
            conn = pyodbc.connect(self.connection_string, timeout=self.connect_timeout)
            conn.autocommit = True
            if self.query_timeout:
                conn.timeout = self.query_timeout
            return conn

    def _is_connection_healthy(self, conn: pyodbc.Connection) -> bool:
        if conn is None:
            return False

        try:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.fetchone()
            cursor.close()
            return True
        except pyodbc.Error:
            return False

    def _close_connection(self, conn: pyodbc.Connection) -> None:
        if conn is not None:
            conn.close()
