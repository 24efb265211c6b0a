"""
Database type enumeration for type-safe datasource identification.

Used by configuration to pick a connection pool implementation and by the
dataset loader to pick the type-code mapping for a result set.
"""

from enum import Enum


class DatabaseType(str, Enum):
    """
    Enumeration of supported database types.

    Inherits from str for JSON serialization compatibility and
    easy comparison with configuration values.
    """

    POSTGRESQL = "postgresql"
    SQLSERVER = "sqlserver"

    @classmethod
    def from_name(cls, name: str) -> "DatabaseType":
        """
        Resolve a configured datasource type.

        Accepts a few common aliases ("postgres", "mssql").

        Args:
            name: Datasource type as written in configuration

        Returns:
            DatabaseType enum value

        Raises:
            ValueError: If the name is not a supported database type
        """
        aliases = {
            "postgres": cls.POSTGRESQL,
            "postgresql": cls.POSTGRESQL,
            "pg": cls.POSTGRESQL,
            "sqlserver": cls.SQLSERVER,
            "mssql": cls.SQLSERVER,
        }
        normalized = (name or "").strip().lower()
        if normalized not in aliases:
            raise ValueError(
                f"Unsupported datasource type [{name}], "
                f"expected one of {sorted(t.value for t in cls)}"
            )
        return aliases[normalized]
