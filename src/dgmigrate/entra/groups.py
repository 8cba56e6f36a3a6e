"""Entra ID group lookups used to follow directory sync."""

import logging
from dataclasses import dataclass

from azure.identity import ClientSecretCredential
from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph import GraphServiceClient
from msgraph.generated.groups.groups_request_builder import GroupsRequestBuilder
from msgraph.generated.models.group import Group

from dgmigrate.core.config import get_graph_credentials

logger = logging.getLogger(__name__)

GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]

GROUP_SELECT = [
    "id",
    "displayName",
    "mail",
    "mailEnabled",
    "securityEnabled",
    "onPremisesSyncEnabled",
    "proxyAddresses",
]


def get_graph_client() -> GraphServiceClient:
    """Create an app-only Graph client from the MS_GRAPH_* settings.

    Reading groups needs Group.Read.All granted to the app registration.
    """
    tenant_id, client_id, client_secret = get_graph_credentials()
    credential = ClientSecretCredential(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret,
    )
    return GraphServiceClient(credentials=credential, scopes=GRAPH_SCOPES)


@dataclass
class EntraGroup:
    """Represents an Entra ID group."""

    id: str
    display_name: str
    mail: str | None
    mail_enabled: bool
    security_enabled: bool
    on_premises_sync_enabled: bool
    proxy_addresses: list[str]


class EntraGroupManager:
    """Query groups in Entra ID."""

    def __init__(self, client: GraphServiceClient | None = None) -> None:
        """Initialize the group manager.

        Args:
            client: Graph client to use (defaults to one built from the environment)
        """
        self.client: GraphServiceClient = client or get_graph_client()

    def _to_entra_group(self, group: Group) -> EntraGroup:
        """Convert MS Graph Group to EntraGroup."""
        return EntraGroup(
            id=group.id or "",
            display_name=group.display_name or "",
            mail=group.mail,
            mail_enabled=group.mail_enabled or False,
            security_enabled=group.security_enabled or False,
            on_premises_sync_enabled=group.on_premises_sync_enabled or False,
            proxy_addresses=group.proxy_addresses or [],
        )

    async def get_groups_by_mail(self, mail: str) -> list[EntraGroup]:
        """Find groups whose primary mail address matches.

        Args:
            mail: SMTP address to search for

        Returns:
            List of matching EntraGroup objects (empty if none)
        """
        escaped = mail.replace("'", "''")
        query_params = GroupsRequestBuilder.GroupsRequestBuilderGetQueryParameters(
            filter=f"mail eq '{escaped}'",
            select=GROUP_SELECT,
        )
        config = RequestConfiguration(query_parameters=query_params)

        result = await self.client.groups.get(request_configuration=config)
        if result and result.value:
            return [self._to_entra_group(group) for group in result.value]
        return []

    async def is_synced_group_present(self, mail: str) -> bool:
        """Check whether an on-premises synced group still holds the address.

        Args:
            mail: SMTP address of the synced group

        Returns:
            True while a directory-synced group with this mail exists
        """
        groups = await self.get_groups_by_mail(mail)
        synced = [g for g in groups if g.on_premises_sync_enabled]
        if synced:
            logger.debug(f"Synced group still present in Entra ID: {mail} ({synced[0].id})")
        return bool(synced)
