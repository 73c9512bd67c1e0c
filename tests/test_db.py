"""Tests for named database configuration and the query client."""

from __future__ import annotations

import sys
from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest

from suiterunner.db.client import DatabaseClient, MySQLBackend, ODBCBackend, create_backend
from suiterunner.db.config import (
    DatabaseConfig,
    DatabaseConfigError,
    DatabaseType,
    clear_db_config_cache,
    get_db_config,
)


@pytest.fixture(autouse=True)
def fresh_cache() -> Generator[None, None, None]:
    clear_db_config_cache()
    yield
    clear_db_config_cache()


class TestGetDbConfig:
    """Tests for get_db_config."""

    def test_mysql(self) -> None:
        env = {
            "DB_ORDERS_TYPE": "MySQL",
            "DB_ORDERS_HOST": "db.local",
            "DB_ORDERS_USER": "qa",
            "DB_ORDERS_PASSWORD": "secret",
            "DB_ORDERS_NAME": "orders",
        }

        config = get_db_config("orders", env)

        assert config.type == DatabaseType.MYSQL
        assert config.mysql.host == "db.local"
        assert config.mysql.port == 3306
        assert config.mysql.database == "orders"

    def test_odbc(self) -> None:
        config = get_db_config("ledger", {"DB_LEDGER_TYPE": "db2", "DB_LEDGER_CONNSTRING": "DSN=x"})

        assert config.type == DatabaseType.DB2
        assert config.odbc_connection_string == "DSN=x"

    def test_cached(self) -> None:
        first = get_db_config("orders", {"DB_ORDERS_TYPE": "mysql"})
        second = get_db_config("orders", {})
        assert first is second

    def test_missing_type(self) -> None:
        with pytest.raises(DatabaseConfigError, match="Database type not specified for: orders"):
            get_db_config("orders", {})

    def test_unsupported_type(self) -> None:
        with pytest.raises(DatabaseConfigError, match="Unsupported DB type for: orders"):
            get_db_config("orders", {"DB_ORDERS_TYPE": "oracle"})

    def test_invalid_port(self) -> None:
        with pytest.raises(DatabaseConfigError, match="Invalid port"):
            get_db_config("orders", {"DB_ORDERS_TYPE": "mysql", "DB_ORDERS_PORT": "abc"})


class TestDatabaseClient:
    """Tests for backends and DatabaseClient."""

    def test_create_backend(self) -> None:
        mysql = get_db_config("orders", {"DB_ORDERS_TYPE": "mysql"})
        odbc = get_db_config("ledger", {"DB_LEDGER_TYPE": "odbc", "DB_LEDGER_CONNSTRING": "DSN=x"})

        assert isinstance(create_backend(mysql), MySQLBackend)
        assert isinstance(create_backend(odbc), ODBCBackend)

    def test_odbc_without_connection_string(self) -> None:
        config = DatabaseConfig(name="ledger", type=DatabaseType.ODBC)
        with pytest.raises(DatabaseConfigError, match="Invalid DB config"):
            create_backend(config)

    def test_odbc_rows_as_dicts(self) -> None:
        cursor = MagicMock()
        cursor.description = [("id",), ("name",)]
        cursor.fetchall.return_value = [(1, "Ada"), (2, "Grace")]
        connection = MagicMock()
        connection.cursor.return_value = cursor

        backend = ODBCBackend(DatabaseConfig(name="x", type=DatabaseType.ODBC, odbc_connection_string="DSN=x"))
        pyodbc = MagicMock()
        pyodbc.connect.return_value = connection
        with patch.dict(sys.modules, {"pyodbc": pyodbc}):
            rows = backend.fetchall("SELECT id, name FROM users")

        assert rows == [{"id": 1, "name": "Ada"}, {"id": 2, "name": "Grace"}]
        cursor.close.assert_called_once()

    def test_run_query_closes_backend(self) -> None:
        backend = MagicMock()
        backend.fetchall.return_value = [{"id": 1}]
        client = DatabaseClient()

        with patch.object(client, "backend_for", return_value=backend):
            rows = client.run_query("SELECT 1", "orders")

        assert rows == [{"id": 1}]
        backend.close.assert_called_once()
