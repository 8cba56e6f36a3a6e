"""Clone mode: back up a synced group and create its hidden cloud-only copy."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dgmigrate.core.backup import GroupSnapshot, write_group_backup
from dgmigrate.core.errors import GroupExistsError, GroupNotFoundError, MigrationError
from dgmigrate.migration.naming import clone_names
from dgmigrate.migration.provision import provision_cloud_group
from dgmigrate.migration.result import Mode, ModeResult

if TYPE_CHECKING:
    from dgmigrate.migration.runner import MigrationRunner

logger = logging.getLogger(__name__)


async def clone_group(runner: MigrationRunner, identity: str) -> ModeResult:
    """Create a prefixed, hidden cloud copy of an on-premises synced group.

    The source group is left untouched. Its settings, members and Send-As
    trustees are written to a backup file first and then copied to the clone.

    Args:
        runner: Runner providing clients, config and backup directory
        identity: Name, alias or address of the synced group

    Returns:
        ModeResult with the clone name and backup path

    Raises:
        GroupNotFoundError: If the source group does not exist
        GroupExistsError: If the clone name or address is already taken
        MigrationError: If the source is not synchronized from on-premises
        ExchangeCommandError: If an Exchange lookup or change fails
    """
    result = ModeResult(mode=Mode.CLONE, group=identity)
    exo = runner.exchange

    source = await exo.get_distribution_group(identity)
    if source is None:
        runner.require_lookup(exo, f"Get-DistributionGroup {identity}")
        raise GroupNotFoundError(identity)
    if source.name.startswith(runner.prefix):
        raise MigrationError(f"{source.name} already carries the clone prefix '{runner.prefix}'")
    if not source.is_dir_synced:
        raise MigrationError(f"{source.name} is not synchronized from on-premises")
    result.group = source.name

    names = clone_names(source, runner.prefix)
    for taken in (names.name, names.alias, names.primary_smtp_address):
        if await exo.get_recipient(taken):
            raise GroupExistsError(taken)
        runner.require_lookup(exo, f"Get-Recipient {taken}")

    members = await exo.get_distribution_group_members(source.identity)
    runner.require(members is not None, f"Get-DistributionGroupMember {source.name}", exo)
    send_as = await exo.get_send_as_trustees(source.identity)
    runner.require(send_as is not None, f"Get-RecipientPermission {source.name}", exo)
    snapshot = GroupSnapshot(group=source, members=members, send_as=send_as)
    result.backup_path = write_group_backup(snapshot, runner.backup_dir)
    result.record(f"Backed up {source.name} to {result.backup_path}")

    clone = await provision_cloud_group(runner, snapshot, names, result, hidden=True)
    result.target = clone.name
    result.record(f"Clone {clone.name} is ready and hidden from address lists")
    return result
