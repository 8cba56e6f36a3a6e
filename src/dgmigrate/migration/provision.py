"""Create a cloud-only group from captured state (shared by Clone and Restore)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from dgmigrate.core.backup import GroupSnapshot
from dgmigrate.core.errors import ExchangeCommandError
from dgmigrate.exchange.models import (
    MULTI_VALUED_SETTINGS,
    DistributionGroupInfo,
    RecipientNames,
)
from dgmigrate.migration.result import ModeResult

if TYPE_CHECKING:
    from dgmigrate.migration.runner import MigrationRunner

logger = logging.getLogger(__name__)


def split_settings(
    group: DistributionGroupInfo,
    exclude: tuple[str, ...] = (),
) -> tuple[dict[str, Any], dict[str, list[str]]]:
    """Split copyable settings into scalar values and recipient references.

    Empty values are dropped because a new group already has the defaults.

    Returns:
        Tuple of (scalar settings, multi-valued recipient settings)
    """
    scalars: dict[str, Any] = {}
    references: dict[str, list[str]] = {}
    for prop, value in group.settings.items():
        if prop in exclude or value in (None, "", []):
            continue
        if prop in MULTI_VALUED_SETTINGS:
            references[prop] = list(value)
        else:
            scalars[prop] = value
    return scalars, references


async def provision_cloud_group(
    runner: MigrationRunner,
    snapshot: GroupSnapshot,
    names: RecipientNames,
    result: ModeResult,
    hidden: bool,
    addresses: list[str] | None = None,
) -> DistributionGroupInfo:
    """Create a cloud group and give it the state captured in ``snapshot``.

    Args:
        runner: Runner providing the Exchange Online client and polling
        snapshot: Source group state (settings, members, Send-As)
        names: Names for the new group
        result: Run result that completed steps are recorded on
        hidden: Whether to hide the new group from address lists
        addresses: Full proxy address list to set, or None to keep the default

    Returns:
        The created group as Exchange reports it after all changes
    """
    exo = runner.exchange
    source = snapshot.group

    created = await exo.new_distribution_group(names, source.group_kind)
    if created is None:
        raise ExchangeCommandError(f"New-DistributionGroup {names.name}", exo.last_error)
    result.record(f"Created {source.group_kind.lower()} group {names.name}")

    group = await runner.wait_for(
        lambda: exo.get_distribution_group(names.primary_smtp_address),
        f"{names.name} to become available",
    )

    scalars, references = split_settings(source, exclude=(runner.config.sync_attribute,))
    scalars["HiddenFromAddressListsEnabled"] = hidden
    runner.require(
        await exo.set_distribution_group(group.identity, scalars),
        f"Set-DistributionGroup {names.name}",
        exo,
    )
    result.record(f"Applied {len(scalars)} settings to {names.name}")

    # Referenced recipients may not exist in the cloud; a missing one
    # should not abort an otherwise complete copy
    for prop, values in references.items():
        if await exo.set_distribution_group(group.identity, {prop: values}):
            result.record(f"Copied {prop} ({len(values)}) to {names.name}")
        else:
            error = exo.last_error or "unknown error"
            result.warn(f"Could not copy {prop} to {names.name}: {error}")

    if addresses:
        runner.require(
            await exo.set_email_addresses(group.identity, addresses),
            f"Set EmailAddresses on {names.name}",
            exo,
        )
        result.record(f"Set {len(addresses)} proxy addresses on {names.name}")

    if snapshot.members:
        runner.require(
            await exo.update_distribution_group_members(group.identity, snapshot.members),
            f"Update-DistributionGroupMember {names.name}",
            exo,
        )
        result.record(f"Added {len(snapshot.members)} members to {names.name}")

    for trustee in snapshot.send_as:
        if await exo.add_send_as_permission(group.identity, trustee):
            result.record(f"Granted Send-As on {names.name} to {trustee}")
        else:
            result.warn(f"Could not grant Send-As on {names.name} to {trustee}")

    return group
