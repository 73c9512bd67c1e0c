"""
Query client for named databases.

Driver modules are imported on first use so that suites which never touch a
database do not need the drivers installed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import structlog

from suiterunner.db.config import (
    DatabaseConfig,
    DatabaseConfigError,
    DatabaseType,
    get_db_config,
)

logger = structlog.get_logger(__name__)


class DatabaseBackend(ABC):
    """One connection to one database."""

    @abstractmethod
    def connect(self) -> Any:
        """Establish the connection."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    def fetchall(self, query: str) -> list[dict[str, Any]]:
        """Run a query and return every row as a dict."""


class MySQLBackend(DatabaseBackend):
    """MySQL backend (``mysql-connector-python``, dictionary cursors)."""

    def __init__(self, config: DatabaseConfig) -> None:
        if config.mysql is None:
            raise DatabaseConfigError(config.name, "Invalid DB config for")
        self.config = {
            "host": config.mysql.host,
            "port": config.mysql.port,
            "database": config.mysql.database,
            "user": config.mysql.user,
            "password": config.mysql.password,
        }
        self._connection: Any = None

    def connect(self) -> Any:
        if self._connection is None:
            import mysql.connector

            self._connection = mysql.connector.connect(**self.config)
        return self._connection

    def close(self) -> None:
        if self._connection:
            self._connection.close()
            self._connection = None

    def fetchall(self, query: str) -> list[dict[str, Any]]:
        cursor = self.connect().cursor(dictionary=True)
        try:
            cursor.execute(query)
            return list(cursor.fetchall()) if cursor.with_rows else []
        finally:
            cursor.close()


class ODBCBackend(DatabaseBackend):
    """ODBC backend (``pyodbc``), also used for DB2."""

    def __init__(self, config: DatabaseConfig) -> None:
        self.connection_string = config.odbc_connection_string or ""
        self._connection: Any = None

    def connect(self) -> Any:
        if self._connection is None:
            import pyodbc

            self._connection = pyodbc.connect(self.connection_string)
        return self._connection

    def close(self) -> None:
        if self._connection:
            self._connection.close()
            self._connection = None

    def fetchall(self, query: str) -> list[dict[str, Any]]:
        cursor = self.connect().cursor()
        try:
            cursor.execute(query)
            if cursor.description is None:
                return []
            columns = [column[0] for column in cursor.description]
            return [dict(zip(columns, row, strict=False)) for row in cursor.fetchall()]
        finally:
            cursor.close()


def create_backend(config: DatabaseConfig) -> DatabaseBackend:
    """Build the backend matching a config."""
    match config.type:
        case DatabaseType.MYSQL if config.mysql is not None:
            return MySQLBackend(config)
        case DatabaseType.ODBC | DatabaseType.DB2 if config.odbc_connection_string:
            return ODBCBackend(config)
        case _:
            raise DatabaseConfigError(config.name, "Invalid DB config for")


class DatabaseClient:
    """Runs ad-hoc queries against named databases, one connection per query."""

    def __init__(self) -> None:
        self._log = logger.bind(component="database_client")

    def backend_for(self, db_name: str) -> DatabaseBackend:
        return create_backend(get_db_config(db_name))

    def run_query(self, query: str, db: str) -> list[dict[str, Any]]:
        """
        Run ``query`` against the database named ``db``.

        Returns:
            Rows as dicts keyed by column name

        Raises:
            DatabaseConfigError: If the database is not configured
        """
        backend = self.backend_for(db)
        self._log.debug("Running query", db=db)
        try:
            rows = backend.fetchall(query)
        finally:
            backend.close()
        self._log.debug("Query finished", db=db, row_count=len(rows))
        return rows
