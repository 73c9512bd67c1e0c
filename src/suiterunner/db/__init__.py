"""Named database access for ``dbQuery`` pre-processors."""

from suiterunner.db.client import DatabaseClient
from suiterunner.db.config import (
    DatabaseConfig,
    DatabaseConfigError,
    DatabaseType,
    clear_db_config_cache,
    get_db_config,
)

__all__ = [
    "DatabaseClient",
    "DatabaseConfig",
    "DatabaseConfigError",
    "DatabaseType",
    "clear_db_config_cache",
    "get_db_config",
]
