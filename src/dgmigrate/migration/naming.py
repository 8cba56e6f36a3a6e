"""Naming bookkeeping for clones: prefixing, unprefixing and address lists."""

from dgmigrate.exchange.models import DistributionGroupInfo, RecipientNames

# Exchange limit for Name and Alias
MAX_NAME_LENGTH = 64


def add_prefix(value: str, prefix: str) -> str:
    """Prefix a name, leaving already prefixed values unchanged.

    Raises:
        ValueError: If the result exceeds the Exchange name length limit
    """
    if not value:
        raise ValueError("Cannot prefix an empty value")
    result = value if value.startswith(prefix) else f"{prefix}{value}"
    if len(result) > MAX_NAME_LENGTH:
        raise ValueError(f"'{result}' exceeds {MAX_NAME_LENGTH} characters")
    return result


def strip_prefix(value: str, prefix: str) -> str:
    """Remove the clone prefix from a name.

    Raises:
        ValueError: If the value does not carry the prefix
    """
    if not prefix or not value.startswith(prefix) or len(value) == len(prefix):
        raise ValueError(f"'{value}' does not start with prefix '{prefix}'")
    return value[len(prefix) :]


def prefix_address(address: str, prefix: str) -> str:
    """Prefix the local part of an SMTP address."""
    local, sep, domain = address.partition("@")
    if not sep or not local or not domain:
        raise ValueError(f"Not an SMTP address: '{address}'")
    return f"{add_prefix(local, prefix)}@{domain}"


def clone_names(group: DistributionGroupInfo, prefix: str) -> RecipientNames:
    """Names for the hidden cloud copy of a group.

    Display names are not length-limited the same way, so only Name and
    Alias go through the limit check.
    """
    return RecipientNames(
        name=add_prefix(group.name, prefix),
        alias=add_prefix(group.alias, prefix),
        display_name=(
            group.display_name
            if group.display_name.startswith(prefix)
            else f"{prefix}{group.display_name}"
        ),
        primary_smtp_address=prefix_address(group.primary_smtp_address, prefix),
    )


def original_names(clone: DistributionGroupInfo, prefix: str) -> RecipientNames:
    """Names of the group a clone was made from.

    The primary address cannot be derived from the clone alone when the
    original used a different domain, so callers normally take it from the
    backup instead.
    """
    local, _, domain = clone.primary_smtp_address.partition("@")
    return RecipientNames(
        name=strip_prefix(clone.name, prefix),
        alias=strip_prefix(clone.alias, prefix),
        display_name=strip_prefix(clone.display_name, prefix),
        primary_smtp_address=f"{strip_prefix(local, prefix)}@{domain}",
    )


def _address_value(address: str) -> str:
    _, _, value = address.partition(":")
    return value.lower() if value else address.lower()


def restored_addresses(group: DistributionGroupInfo) -> list[str]:
    """The proxy address list to put on a recreated group.

    Keeps the original addresses with the primary first, and adds the X500
    address of the original legacy DN so cached recipients still resolve.
    """
    addresses: list[str] = []
    seen: set[str] = set()

    primary = f"SMTP:{group.primary_smtp_address}"
    candidates = [primary] if group.primary_smtp_address else []
    for address in group.email_addresses:
        if address.startswith("SMTP:") and group.primary_smtp_address:
            # Only one primary is allowed; demote any other uppercase entry
            address = "smtp:" + address[5:]
        candidates.append(address)
    if group.x500_address:
        candidates.append(group.x500_address)

    for address in candidates:
        key = f"{address.partition(':')[0].lower()}:{_address_value(address)}"
        if key in seen:
            continue
        seen.add(key)
        addresses.append(address)
    return addresses


def routing_address(addresses: list[str], routing_domain: str, alias: str) -> str:
    """Find the address mail should be routed to for a cloud recipient.

    Prefers an existing proxy address in the routing domain
    (tenant.mail.onmicrosoft.com); otherwise builds alias@routing_domain.
    """
    suffix = "@" + routing_domain.lower()
    for address in addresses:
        prefix, _, value = address.partition(":")
        if prefix.lower() == "smtp" and value.lower().endswith(suffix):
            return value
    return f"{alias}@{routing_domain}"
