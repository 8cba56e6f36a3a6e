"""Distribution group migration modes."""

from dgmigrate.migration.result import Mode, ModeResult
from dgmigrate.migration.runner import MigrationRunner

__all__ = ["MigrationRunner", "Mode", "ModeResult"]
