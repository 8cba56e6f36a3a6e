"""Convert mode: move the group identity from the synced object to the clone."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from dgmigrate.core.backup import find_latest_backup, read_group_backup
from dgmigrate.core.errors import GroupNotFoundError, MigrationError
from dgmigrate.exchange.client import ExchangeOnlineClient
from dgmigrate.exchange.models import DistributionGroupInfo
from dgmigrate.migration.naming import clone_names, restored_addresses
from dgmigrate.migration.result import Mode, ModeResult

if TYPE_CHECKING:
    from dgmigrate.core.backup import GroupSnapshot
    from dgmigrate.migration.runner import MigrationRunner

logger = logging.getLogger(__name__)


async def _synced_group(exo: ExchangeOnlineClient, address: str) -> DistributionGroupInfo | None:
    group = await exo.get_distribution_group(address)
    return group if group and group.is_dir_synced else None


async def _load_snapshot(
    runner: MigrationRunner,
    identity: str,
    backup_file: Path | str | None,
) -> GroupSnapshot:
    """Load the backup Clone wrote for this group."""
    if backup_file:
        return read_group_backup(backup_file)

    current = await runner.exchange.get_distribution_group(identity)
    alias = current.alias if current else identity
    if alias.startswith(runner.prefix):
        alias = alias[len(runner.prefix) :]

    path = find_latest_backup(alias, runner.backup_dir)
    if path is None:
        raise MigrationError(
            f"No backup found for {identity} in {runner.backup_dir}; "
            "run clone first or pass a backup file"
        )
    return read_group_backup(path)


async def convert_group(
    runner: MigrationRunner,
    identity: str,
    backup_file: Path | str | None = None,
) -> ModeResult:
    """Take a group out of sync scope and give its identity to the clone.

    Steps: stamp the sync attribute on-premises, wait for the synced group
    to disappear from Entra ID and Exchange Online, then rename the clone
    and restore the original addresses (plus X500 of the legacy DN).

    Args:
        runner: Runner providing clients, config and backup directory
        identity: Name, alias or address of the original group
        backup_file: Backup written by Clone (defaults to the latest one)

    Returns:
        ModeResult with the converted group name

    Raises:
        GroupNotFoundError: If the clone or the on-premises group is missing
        MigrationError: If no backup is available
        PollingTimeoutError: If directory sync does not complete in time
        ExchangeCommandError: If an Exchange lookup or change fails
    """
    result = ModeResult(mode=Mode.CONVERT, group=identity)
    exo = runner.exchange
    onprem = runner.onprem
    config = runner.config

    snapshot = await _load_snapshot(runner, identity, backup_file)
    original = snapshot.group
    address = original.primary_smtp_address
    result.group = original.name
    names = clone_names(original, runner.prefix)

    clone = await exo.get_distribution_group(names.primary_smtp_address)
    if clone is None:
        runner.require_lookup(exo, f"Get-DistributionGroup {names.primary_smtp_address}")
        raise GroupNotFoundError(names.name)

    onprem_group = await onprem.get_distribution_group(address)
    if onprem_group is None:
        runner.require_lookup(onprem, f"Get-DistributionGroup {address}")
        raise GroupNotFoundError(address, "on-premises Exchange")

    # Pick up membership changes made since the clone was taken
    synced = await _synced_group(exo, address)
    if synced is None:
        runner.require_lookup(exo, f"Get-DistributionGroup {address}")
    else:
        members = await exo.get_distribution_group_members(synced.identity)
        runner.require(members is not None, f"Get-DistributionGroupMember {synced.name}", exo)
        runner.require(
            await exo.update_distribution_group_members(clone.identity, members),
            f"Update-DistributionGroupMember {clone.name}",
            exo,
        )
        result.record(f"Refreshed {len(members)} members on {clone.name}")

    attribute = config.sync_attribute
    if onprem_group.settings.get(attribute) == config.sync_exclusion_value:
        result.record(f"{onprem_group.name} is already excluded from sync")
    else:
        runner.require(
            await onprem.set_distribution_group(
                onprem_group.identity, {attribute: config.sync_exclusion_value}
            ),
            f"Set {attribute} on {onprem_group.name}",
            onprem,
        )
        result.record(
            f"Set {attribute}={config.sync_exclusion_value} on {onprem_group.name} on-premises"
        )

    if not runner.skip_sync_cycle:
        runner.require(await onprem.start_directory_sync(), "Start-ADSyncSyncCycle", onprem)

    await runner.wait_for_gone(
        lambda: runner.entra.is_synced_group_present(address),
        f"synced group {address} to leave Entra ID",
    )
    result.record(f"Synced group {address} removed from Entra ID")

    await runner.wait_for_gone(
        lambda: _synced_group(exo, address),
        f"synced group {address} to leave Exchange Online",
        client=exo,
    )
    result.record(f"Synced group {address} removed from Exchange Online")

    runner.require(
        await exo.set_distribution_group(
            clone.identity,
            {
                "Name": original.name,
                "Alias": original.alias,
                "DisplayName": original.display_name,
                "HiddenFromAddressListsEnabled": original.hidden_from_address_lists,
            },
        ),
        f"Rename {clone.name}",
        exo,
    )
    result.record(f"Renamed {clone.name} to {original.name}")

    addresses = restored_addresses(original)
    runner.require(
        await exo.set_email_addresses(names.primary_smtp_address, addresses),
        f"Set EmailAddresses on {original.name}",
        exo,
    )
    result.record(f"Restored {len(addresses)} proxy addresses on {original.name}")

    async def _converted() -> DistributionGroupInfo | None:
        group = await exo.get_distribution_group(address)
        if group and not group.is_dir_synced and group.name == original.name:
            return group
        return None

    converted = await runner.wait_for(_converted, f"{original.name} to answer on {address}")
    result.target = converted.name
    result.record(f"{original.name} is now a cloud-only group")
    return result
