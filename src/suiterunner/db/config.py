"""
Named database connection settings.

A database called ``orders`` is configured through ``DB_ORDERS_TYPE``
(``mysql``, ``odbc`` or ``db2``) plus either the MySQL fields
``DB_ORDERS_HOST/_PORT/_USER/_PASSWORD/_NAME`` or an ODBC
``DB_ORDERS_CONNSTRING``.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_MYSQL_PORT = 3306


class DatabaseType(StrEnum):
    """Supported database drivers."""

    MYSQL = "mysql"
    ODBC = "odbc"
    DB2 = "db2"


class DatabaseConfigError(Exception):
    """Raised when a named database is missing or misconfigured."""

    def __init__(self, db_name: str, reason: str) -> None:
        self.db_name = db_name
        self.reason = reason
        super().__init__(f"{reason}: {db_name}")


@dataclass(frozen=True)
class MySQLSettings:
    host: str | None
    port: int
    user: str | None
    password: str | None
    database: str | None


@dataclass(frozen=True)
class DatabaseConfig:
    """Resolved connection settings for one named database."""

    name: str
    type: DatabaseType
    mysql: MySQLSettings | None = None
    odbc_connection_string: str | None = None


_cache: dict[str, DatabaseConfig] = {}
_cache_lock = threading.Lock()


def get_db_config(db_name: str, environ: Mapping[str, str] | None = None) -> DatabaseConfig:
    """
    Resolve (and cache) the connection settings of a named database.

    Args:
        db_name: Logical database name used in ``dbQuery`` pre-processors
        environ: Environment mapping to read; defaults to ``os.environ``

    Raises:
        DatabaseConfigError: If the type is missing or unsupported
    """
    with _cache_lock:
        if db_name in _cache:
            return _cache[db_name]

    env = os.environ if environ is None else environ
    prefix = f"DB_{db_name.upper()}"
    raw_type = env.get(f"{prefix}_TYPE")
    if not raw_type:
        raise DatabaseConfigError(db_name, "Database type not specified for")

    try:
        db_type = DatabaseType(raw_type.strip().lower())
    except ValueError as e:
        raise DatabaseConfigError(db_name, "Unsupported DB type for") from e

    if db_type == DatabaseType.MYSQL:
        port_text = env.get(f"{prefix}_PORT") or str(DEFAULT_MYSQL_PORT)
        try:
            port = int(port_text)
        except ValueError as e:
            raise DatabaseConfigError(db_name, f"Invalid port '{port_text}' for") from e
        config = DatabaseConfig(
            name=db_name,
            type=db_type,
            mysql=MySQLSettings(
                host=env.get(f"{prefix}_HOST"),
                port=port,
                user=env.get(f"{prefix}_USER"),
                password=env.get(f"{prefix}_PASSWORD"),
                database=env.get(f"{prefix}_NAME"),
            ),
        )
    else:
        config = DatabaseConfig(
            name=db_name,
            type=db_type,
            odbc_connection_string=env.get(f"{prefix}_CONNSTRING"),
        )

    with _cache_lock:
        _cache[db_name] = config
    logger.debug("Resolved database config", db=db_name, type=str(db_type))
    return config


def clear_db_config_cache() -> None:
    """Forget every cached config (used when the environment changes)."""
    with _cache_lock:
        _cache.clear()
