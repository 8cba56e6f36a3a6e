"""Wires clients, configuration and backups for the migration modes."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from pathlib import Path
from typing import Any, TypeVar

from dgmigrate.core.backup import get_backup_dir
from dgmigrate.core.config import MigrationConfig, get_migration_config
from dgmigrate.core.errors import ExchangeCommandError
from dgmigrate.core.polling import wait_for_absence, wait_for_presence
from dgmigrate.entra.groups import EntraGroupManager
from dgmigrate.exchange.client import (
    ExchangeOnlineClient,
    ExchangePowerShellClient,
    OnPremExchangeClient,
)
from dgmigrate.migration.clone import clone_group
from dgmigrate.migration.contact import replace_with_contact
from dgmigrate.migration.convert import convert_group
from dgmigrate.migration.restore import restore_group
from dgmigrate.migration.result import Mode, ModeResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MigrationRunner:
    """Runs one migration mode against the configured endpoints.

    Clients are created on first use, so a mode only needs credentials
    for the endpoints it actually talks to.
    """

    def __init__(
        self,
        config: MigrationConfig | None = None,
        backup_dir: Path | str | None = None,
        prefix: str | None = None,
        skip_sync_cycle: bool = False,
    ) -> None:
        """Initialize the runner.

        Args:
            config: Migration settings (defaults to config/migration.json)
            backup_dir: Where backup files are written and looked up
            prefix: Override for the clone prefix
            skip_sync_cycle: Don't start a delta sync after changing the sync attribute
        """
        config = config or get_migration_config()
        if prefix:
            config = replace(config, clone_prefix=prefix)
        self.config = config
        self.backup_dir = get_backup_dir(backup_dir or config.backup_dir)
        self.skip_sync_cycle = skip_sync_cycle
        self._exchange: ExchangeOnlineClient | None = None
        self._onprem: OnPremExchangeClient | None = None
        self._entra: EntraGroupManager | None = None

    @property
    def exchange(self) -> ExchangeOnlineClient:
        """Lazy-load the Exchange Online client."""
        if self._exchange is None:
            self._exchange = ExchangeOnlineClient(timeout=self.config.powershell_timeout_seconds)
        return self._exchange

    @property
    def onprem(self) -> OnPremExchangeClient:
        """Lazy-load the on-premises Exchange client."""
        if self._onprem is None:
            self._onprem = OnPremExchangeClient(timeout=self.config.powershell_timeout_seconds)
        return self._onprem

    @property
    def entra(self) -> EntraGroupManager:
        """Lazy-load the Entra ID group manager."""
        if self._entra is None:
            self._entra = EntraGroupManager()
        return self._entra

    @property
    def prefix(self) -> str:
        """Prefix that marks clone names."""
        return self.config.clone_prefix

    def require(self, ok: bool, action: str, client: ExchangePowerShellClient) -> None:
        """Raise if a client call reported failure.

        Raises:
            ExchangeCommandError: With the client's last error output
        """
        if not ok:
            raise ExchangeCommandError(action, client.last_error)

    def require_lookup(self, client: ExchangePowerShellClient, action: str) -> None:
        """Raise if a lookup that came back empty failed instead of finding nothing.

        Raises:
            ExchangeCommandError: If the client recorded an error for its last call
        """
        if client.last_error:
            raise ExchangeCommandError(action, client.last_error)

    async def wait_for(self, fetch: Callable[[], Awaitable[T | None]], description: str) -> T:
        """Poll until ``fetch`` returns an object, using the configured interval."""
        return await wait_for_presence(
            fetch,
            description,
            interval=self.config.poll_interval_seconds,
            attempts=self.config.poll_max_attempts,
        )

    async def wait_for_gone(
        self,
        fetch: Callable[[], Awaitable[Any]],
        description: str,
        client: ExchangePowerShellClient | None = None,
    ) -> None:
        """Poll until ``fetch`` returns nothing, using the configured interval.

        With ``client`` given, an empty result from a failed call counts as
        still present, so the wait only ends on a lookup that succeeded.
        """

        async def _present() -> Any:
            found = await fetch()
            if not found and client is not None and client.last_error:
                logger.warning(f"Could not check {description}: {client.last_error}")
                return True
            return found

        await wait_for_absence(
            _present,
            description,
            interval=self.config.poll_interval_seconds,
            attempts=self.config.poll_max_attempts,
        )

    async def run(
        self,
        mode: Mode,
        identity: str | None = None,
        backup_file: Path | str | None = None,
    ) -> ModeResult:
        """Run a single mode.

        Args:
            mode: Which migration step to perform
            identity: Group name, alias or address
            backup_file: Backup to use (Convert and Restore)

        Returns:
            ModeResult describing what was done
        """
        if mode is Mode.RESTORE:
            return await restore_group(self, backup_file=backup_file, identity=identity)

        if not identity:
            raise ValueError(f"{mode.value} requires a group identity")

        if mode is Mode.CLONE:
            return await clone_group(self, identity)
        if mode is Mode.CONVERT:
            return await convert_group(self, identity, backup_file=backup_file)
        return await replace_with_contact(self, identity)
