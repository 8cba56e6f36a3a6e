"""Data models for Exchange recipients handled during a migration."""

from dataclasses import dataclass, field
from typing import Any

# Multi-valued delivery settings copied from the source group
MULTI_VALUED_SETTINGS: tuple[str, ...] = (
    "ManagedBy",
    "AcceptMessagesOnlyFromSendersOrMembers",
    "RejectMessagesFromSendersOrMembers",
    "ModeratedBy",
    "BypassModerationFromSendersOrMembers",
    "GrantSendOnBehalfTo",
)

SCALAR_SETTINGS: tuple[str, ...] = (
    "MemberJoinRestriction",
    "MemberDepartRestriction",
    "ModerationEnabled",
    "RequireSenderAuthenticationEnabled",
    "ReportToManagerEnabled",
    "ReportToOriginatorEnabled",
    "SendOofMessageToOriginatorEnabled",
    "SendModerationNotifications",
    "MailTip",
)

CUSTOM_ATTRIBUTES: tuple[str, ...] = tuple(f"CustomAttribute{i}" for i in range(1, 16))

COPYABLE_SETTINGS: tuple[str, ...] = MULTI_VALUED_SETTINGS + SCALAR_SETTINGS + CUSTOM_ATTRIBUTES

# Python field name -> Exchange property name
GROUP_FIELDS: dict[str, str] = {
    "identity": "Identity",
    "name": "Name",
    "alias": "Alias",
    "display_name": "DisplayName",
    "primary_smtp_address": "PrimarySmtpAddress",
    "recipient_type_details": "RecipientTypeDetails",
    "legacy_exchange_dn": "LegacyExchangeDN",
    "email_addresses": "EmailAddresses",
    "is_dir_synced": "IsDirSynced",
    "hidden_from_address_lists": "HiddenFromAddressListsEnabled",
}


def as_list(value: Any) -> list[str]:
    """Normalize a PowerShell value to a list of strings.

    ConvertTo-Json emits a single item as a scalar and an empty
    collection as null.
    """
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value if v not in (None, "")]
    if isinstance(value, str):
        return [value] if value else []
    return [str(value)]


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


@dataclass
class RecipientNames:
    """The naming attributes that identify a recipient."""

    name: str
    alias: str
    display_name: str
    primary_smtp_address: str


@dataclass
class DistributionGroupInfo:
    """A distribution group or mail-enabled security group as Exchange reports it."""

    identity: str
    name: str
    alias: str
    display_name: str
    primary_smtp_address: str
    recipient_type_details: str = "MailUniversalDistributionGroup"
    legacy_exchange_dn: str | None = None
    email_addresses: list[str] = field(default_factory=list)
    is_dir_synced: bool = False
    hidden_from_address_lists: bool = False
    settings: dict[str, Any] = field(default_factory=dict)

    @property
    def is_security_group(self) -> bool:
        """Whether the group is mail-enabled security rather than distribution-only."""
        return "Security" in self.recipient_type_details

    @property
    def group_kind(self) -> str:
        """Value for New-DistributionGroup -Type."""
        return "Security" if self.is_security_group else "Distribution"

    @property
    def names(self) -> RecipientNames:
        """Naming attributes of this group."""
        return RecipientNames(
            name=self.name,
            alias=self.alias,
            display_name=self.display_name,
            primary_smtp_address=self.primary_smtp_address,
        )

    @property
    def x500_address(self) -> str | None:
        """X500 proxy address built from the legacy Exchange DN."""
        if not self.legacy_exchange_dn:
            return None
        return f"X500:{self.legacy_exchange_dn}"

    @classmethod
    def from_powershell(cls, data: dict[str, Any]) -> "DistributionGroupInfo":
        """Build from a Get-DistributionGroup JSON object."""
        settings: dict[str, Any] = {}
        for prop in COPYABLE_SETTINGS:
            if prop not in data:
                continue
            value = data[prop]
            settings[prop] = as_list(value) if prop in MULTI_VALUED_SETTINGS else value

        return cls(
            identity=str(data.get("Identity") or data.get("Name") or ""),
            name=data.get("Name") or "",
            alias=data.get("Alias") or "",
            display_name=data.get("DisplayName") or "",
            primary_smtp_address=data.get("PrimarySmtpAddress") or "",
            recipient_type_details=str(
                data.get("RecipientTypeDetails") or "MailUniversalDistributionGroup"
            ),
            legacy_exchange_dn=data.get("LegacyExchangeDN") or None,
            email_addresses=as_list(data.get("EmailAddresses")),
            is_dir_synced=_as_bool(data.get("IsDirSynced")),
            hidden_from_address_lists=_as_bool(data.get("HiddenFromAddressListsEnabled")),
            settings=settings,
        )

    def to_properties(self) -> dict[str, Any]:
        """Flatten to Exchange property names, as stored in the backup file."""
        props: dict[str, Any] = {
            prop: getattr(self, attr) for attr, prop in GROUP_FIELDS.items()
        }
        props.update(self.settings)
        return props

    @classmethod
    def from_properties(cls, props: dict[str, Any]) -> "DistributionGroupInfo":
        """Inverse of to_properties."""
        return cls.from_powershell(props)


@dataclass
class MailContactInfo:
    """A mail contact as Exchange reports it."""

    identity: str
    name: str
    alias: str
    display_name: str
    external_email_address: str
    email_addresses: list[str] = field(default_factory=list)
    hidden_from_address_lists: bool = False

    @classmethod
    def from_powershell(cls, data: dict[str, Any]) -> "MailContactInfo":
        """Build from a Get-MailContact JSON object."""
        return cls(
            identity=str(data.get("Identity") or data.get("Name") or ""),
            name=data.get("Name") or "",
            alias=data.get("Alias") or "",
            display_name=data.get("DisplayName") or "",
            external_email_address=data.get("ExternalEmailAddress") or "",
            email_addresses=as_list(data.get("EmailAddresses")),
            hidden_from_address_lists=_as_bool(data.get("HiddenFromAddressListsEnabled")),
        )
