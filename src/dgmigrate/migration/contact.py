"""Contact mode: replace the on-premises group with a mail contact.

After Convert the group lives in the cloud, but on-premises Exchange still
holds a mail-enabled copy that captures mail sent from on-premises
mailboxes and applications. This mode mail-disables that copy and puts a
hidden mail contact with the same addresses in its place, routing to the
cloud group.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dgmigrate.core.backup import SOURCE_ON_PREMISES, GroupSnapshot, write_group_backup
from dgmigrate.core.errors import (
    ExchangeCommandError,
    GroupExistsError,
    GroupNotFoundError,
    MigrationError,
)
from dgmigrate.migration.naming import restored_addresses, routing_address
from dgmigrate.migration.result import Mode, ModeResult

if TYPE_CHECKING:
    from dgmigrate.migration.runner import MigrationRunner

logger = logging.getLogger(__name__)

ONPREM = "on-premises Exchange"


async def replace_with_contact(runner: MigrationRunner, identity: str) -> ModeResult:
    """Mail-disable the on-premises group and create a routing mail contact.

    Args:
        runner: Runner providing clients, config and backup directory
        identity: Name, alias or address of the on-premises group

    Returns:
        ModeResult with the contact name and the on-premises backup path

    Raises:
        GroupNotFoundError: If the on-premises or cloud group is missing
        GroupExistsError: If a mail contact with the group name exists
        MigrationError: If the group is still in sync scope
        ExchangeCommandError: If an Exchange lookup or change fails
    """
    result = ModeResult(mode=Mode.CONTACT, group=identity)
    onprem = runner.onprem
    exo = runner.exchange
    config = runner.config

    group = await onprem.get_distribution_group(identity)
    if group is None:
        runner.require_lookup(onprem, f"Get-DistributionGroup {identity}")
        raise GroupNotFoundError(identity, ONPREM)
    result.group = group.name

    attribute = config.sync_attribute
    if group.settings.get(attribute) != config.sync_exclusion_value:
        raise MigrationError(
            f"{group.name} is still in sync scope ({attribute} is not "
            f"'{config.sync_exclusion_value}'); run convert first"
        )

    cloud = await exo.get_distribution_group(group.primary_smtp_address)
    if cloud is None:
        runner.require_lookup(exo, f"Get-DistributionGroup {group.primary_smtp_address}")
        raise GroupNotFoundError(group.primary_smtp_address)
    if cloud.is_dir_synced:
        raise MigrationError(
            f"{cloud.name} in Exchange Online is still the synced object; wait for convert"
        )

    if await onprem.get_mail_contact(group.name):
        raise GroupExistsError(group.name, ONPREM)
    runner.require_lookup(onprem, f"Get-MailContact {group.name}")

    members = await onprem.get_distribution_group_members(group.identity)
    runner.require(members is not None, f"Get-DistributionGroupMember {group.name}", onprem)
    send_as = await onprem.get_send_as_trustees(group.identity)
    runner.require(send_as is not None, f"Get-ADPermission {group.name}", onprem)
    snapshot = GroupSnapshot(
        group=group, members=members, send_as=send_as, source=SOURCE_ON_PREMISES
    )
    result.backup_path = write_group_backup(snapshot, runner.backup_dir)
    result.record(f"Backed up on-premises {group.name} to {result.backup_path}")

    target = routing_address(cloud.email_addresses, config.routing_domain, cloud.alias)

    runner.require(
        await onprem.disable_distribution_group(group.identity),
        f"Disable-DistributionGroup {group.name}",
        onprem,
    )
    result.record(f"Mail-disabled on-premises group {group.name}")

    await runner.wait_for_gone(
        lambda: onprem.get_recipient(group.primary_smtp_address),
        f"{group.primary_smtp_address} to be released on-premises",
        client=onprem,
    )

    contact = await onprem.new_mail_contact(group.names, target, config.contact_ou)
    if contact is None:
        raise ExchangeCommandError(f"New-MailContact {group.name}", onprem.last_error)
    result.record(f"Created mail contact {contact.name} -> {target}")

    contact = await runner.wait_for(
        lambda: onprem.get_mail_contact(group.name),
        f"mail contact {group.name} to become available",
    )

    addresses = restored_addresses(group)
    if not any(a.lower() == f"smtp:{target.lower()}" for a in addresses):
        addresses.append(f"smtp:{target}")

    runner.require(
        await onprem.set_mail_contact(
            contact.identity,
            {
                "EmailAddressPolicyEnabled": False,
                "EmailAddresses": addresses,
                "HiddenFromAddressListsEnabled": True,
                attribute: config.sync_exclusion_value,
            },
        ),
        f"Set-MailContact {contact.name}",
        onprem,
    )
    result.record(
        f"Stamped {len(addresses)} addresses on {contact.name}, hidden it and excluded it from sync"
    )

    result.target = contact.name
    return result
