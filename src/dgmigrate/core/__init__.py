"""Core utilities for distribution group migration."""

from dgmigrate.core.config import (
    MigrationConfig,
    get_exchange_credentials,
    get_graph_credentials,
    get_migration_config,
    get_onprem_exchange_settings,
)
from dgmigrate.core.errors import (
    BackupFormatError,
    ExchangeCommandError,
    GroupExistsError,
    GroupNotFoundError,
    MigrationError,
    PollingTimeoutError,
)

__all__ = [
    "BackupFormatError",
    "ExchangeCommandError",
    "GroupExistsError",
    "GroupNotFoundError",
    "MigrationConfig",
    "MigrationError",
    "PollingTimeoutError",
    "get_exchange_credentials",
    "get_graph_credentials",
    "get_migration_config",
    "get_onprem_exchange_settings",
]
