"""Restore mode: recreate a cloud group from a backup file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from dgmigrate.core.backup import find_latest_backup, read_group_backup
from dgmigrate.core.errors import GroupExistsError, MigrationError
from dgmigrate.migration.naming import restored_addresses
from dgmigrate.migration.provision import provision_cloud_group
from dgmigrate.migration.result import Mode, ModeResult

if TYPE_CHECKING:
    from dgmigrate.migration.runner import MigrationRunner

logger = logging.getLogger(__name__)


async def restore_group(
    runner: MigrationRunner,
    backup_file: Path | str | None = None,
    identity: str | None = None,
) -> ModeResult:
    """Recreate a group in Exchange Online with its original names and state.

    Args:
        runner: Runner providing clients, config and backup directory
        backup_file: Backup to restore from
        identity: Group alias whose latest backup is used when no file is given

    Returns:
        ModeResult with the restored group name

    Raises:
        MigrationError: If neither a usable backup file nor identity is given
        GroupExistsError: If the name, alias or primary address is already taken
        ExchangeCommandError: If an Exchange lookup or change fails
    """
    if backup_file is None:
        if not identity:
            raise MigrationError("restore needs a backup file or a group alias")
        backup_file = find_latest_backup(identity, runner.backup_dir)
        if backup_file is None:
            raise MigrationError(f"No backup found for {identity} in {runner.backup_dir}")

    snapshot = read_group_backup(backup_file)
    group = snapshot.group
    result = ModeResult(mode=Mode.RESTORE, group=group.name, backup_path=Path(backup_file))
    result.record(f"Loaded backup of {group.name} taken {snapshot.created:%Y-%m-%d %H:%M}")

    exo = runner.exchange
    for taken in (group.name, group.alias, group.primary_smtp_address):
        if await exo.get_recipient(taken):
            raise GroupExistsError(taken)
        runner.require_lookup(exo, f"Get-Recipient {taken}")

    restored = await provision_cloud_group(
        runner,
        snapshot,
        group.names,
        result,
        hidden=group.hidden_from_address_lists,
        addresses=restored_addresses(group),
    )
    result.target = restored.name
    result.record(f"Restored {restored.name} as a cloud-only group")
    return result
