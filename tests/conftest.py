"""Shared pytest fixtures."""

from unittest.mock import AsyncMock

import pytest

from dgmigrate.core.config import MigrationConfig
from dgmigrate.exchange.models import DistributionGroupInfo, MailContactInfo
from dgmigrate.migration.runner import MigrationRunner


def _make_group(**overrides) -> DistributionGroupInfo:
    """Build a synced distribution group as Exchange Online reports it."""
    values = {
        "identity": "Sales",
        "name": "Sales",
        "alias": "Sales",
        "display_name": "Sales Team",
        "primary_smtp_address": "sales@contoso.com",
        "recipient_type_details": "MailUniversalDistributionGroup",
        "legacy_exchange_dn": (
            "/o=ExchangeLabs/ou=Exchange Administrative Group/cn=Recipients/cn=sales"
        ),
        "email_addresses": [
            "SMTP:sales@contoso.com",
            "smtp:sales@contoso.mail.onmicrosoft.com",
            "smtp:team@contoso.com",
        ],
        "is_dir_synced": True,
        "hidden_from_address_lists": False,
        "settings": {
            "ManagedBy": ["Alice Smith"],
            "AcceptMessagesOnlyFromSendersOrMembers": [],
            "ModerationEnabled": False,
            "RequireSenderAuthenticationEnabled": True,
            "MailTip": None,
            "CustomAttribute1": "Finance",
            "CustomAttribute15": "",
        },
    }
    values.update(overrides)
    return DistributionGroupInfo(**values)


def _make_contact(**overrides) -> MailContactInfo:
    """Build a mail contact as on-premises Exchange reports it."""
    values = {
        "identity": "contoso.local/Migrated Contacts/Sales",
        "name": "Sales",
        "alias": "Sales",
        "display_name": "Sales Team",
        "external_email_address": "SMTP:sales@contoso.mail.onmicrosoft.com",
        "email_addresses": ["SMTP:sales@contoso.mail.onmicrosoft.com"],
    }
    values.update(overrides)
    return MailContactInfo(**values)


@pytest.fixture
def group_factory():
    """Factory for DistributionGroupInfo test objects."""
    return _make_group


@pytest.fixture
def contact_factory():
    """Factory for MailContactInfo test objects."""
    return _make_contact


@pytest.fixture
def temp_backup_dir(tmp_path):
    """Temporary directory for backup tests."""
    backup_dir = tmp_path / "backups"
    backup_dir.mkdir()
    return backup_dir


@pytest.fixture
def migration_config():
    """Migration config that polls without waiting."""
    return MigrationConfig(
        organization="contoso.onmicrosoft.com",
        routing_domain="contoso.mail.onmicrosoft.com",
        clone_prefix="Cloud-",
        sync_attribute="CustomAttribute15",
        sync_exclusion_value="NoSync",
        poll_interval_seconds=0,
        poll_max_attempts=3,
        contact_ou="contoso.local/Migrated Contacts",
    )


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set mock environment variables for testing."""
    monkeypatch.setenv("MS_GRAPH_TENANT_ID", "test-tenant-id")
    monkeypatch.setenv("MS_GRAPH_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("MS_GRAPH_CLIENT_SECRET", "test-client-secret")
    monkeypatch.setenv("EXCHANGE_ORGANIZATION", "contoso.onmicrosoft.com")
    monkeypatch.setenv("EXCHANGE_CERTIFICATE_THUMBPRINT", "ABC123")
    monkeypatch.setenv("ONPREM_EXCHANGE_URI", "http://exch01.contoso.local/PowerShell/")


def _mock_client() -> AsyncMock:
    client = AsyncMock()
    client.last_error = None
    return client


@pytest.fixture
def runner(migration_config, temp_backup_dir):
    """MigrationRunner with mocked Exchange Online, on-premises and Entra clients."""
    runner = MigrationRunner(config=migration_config, backup_dir=temp_backup_dir)
    runner._exchange = _mock_client()
    runner._onprem = _mock_client()
    runner._entra = AsyncMock()
    return runner


@pytest.fixture
def pwsh_responses():
    """Side effect factory replaying (result, error) pairs on a mocked client call.

    Each call sets ``last_error`` the way a real pwsh invocation does.
    """

    def _make(client, *responses):
        pending = list(responses)

        def _next(*args, **kwargs):
            result, error = pending.pop(0)
            client.last_error = error
            return result

        return _next

    return _make
