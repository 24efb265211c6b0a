"""
Unit tests for database type resolution
"""

import pytest

from utils.database_types import DatabaseType


class TestDatabaseType:
    @pytest.mark.parametrize("name,expected", [
        ("postgresql", DatabaseType.POSTGRESQL),
        ("Postgres", DatabaseType.POSTGRESQL),
        (" pg ", DatabaseType.POSTGRESQL),
        ("sqlserver", DatabaseType.SQLSERVER),
        ("MSSQL", DatabaseType.SQLSERVER),
    ])
    def test_from_name(self, name, expected):
        assert DatabaseType.from_name(name) is expected

    @pytest.mark.parametrize("name", ["oracle", "", None])
    def test_unsupported(self, name):
        with pytest.raises(ValueError, match="Unsupported datasource type"):
            DatabaseType.from_name(name)

    def test_string_comparison(self):
        assert DatabaseType.POSTGRESQL == "postgresql"
