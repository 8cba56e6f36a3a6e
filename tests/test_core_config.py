"""Tests for configuration loading."""

import json
from unittest.mock import patch

import pytest

import dgmigrate.core.config as config_module
from dgmigrate.core.config import (
    MigrationConfig,
    get_exchange_credentials,
    get_graph_credentials,
    get_migration_config,
    get_onprem_exchange_settings,
    get_project_root,
    load_migration_config,
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all credential variables from the environment."""
    for name in (
        "MS_GRAPH_TENANT_ID",
        "MS_GRAPH_CLIENT_ID",
        "MS_GRAPH_CLIENT_SECRET",
        "EXCHANGE_TENANT_ID",
        "EXCHANGE_CLIENT_ID",
        "EXCHANGE_ORGANIZATION",
        "EXCHANGE_CERTIFICATE_THUMBPRINT",
        "EXCHANGE_CERTIFICATE_PATH",
        "EXCHANGE_CERTIFICATE_PASSWORD",
        "ONPREM_EXCHANGE_URI",
        "ONPREM_EXCHANGE_AUTHENTICATION",
        "ONPREM_EXCHANGE_USERNAME",
        "ONPREM_EXCHANGE_PASSWORD",
        "ADSYNC_SERVER",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    def _write(data):
        path = tmp_path / "migration.json"
        path.write_text(json.dumps(data))
        return path

    return _write


class TestGetGraphCredentials:
    """Tests for get_graph_credentials function."""

    @patch("dgmigrate.core.config.load_dotenv")
    def test_returns_credentials(self, mock_load_dotenv, clean_env, mock_env_vars):
        tenant_id, client_id, client_secret = get_graph_credentials()

        assert tenant_id == "test-tenant-id"
        assert client_id == "test-client-id"
        assert client_secret == "test-client-secret"

    @patch("dgmigrate.core.config.load_dotenv")
    def test_missing_credentials(self, mock_load_dotenv, clean_env):
        with pytest.raises(ValueError, match="MS Graph credentials not set"):
            get_graph_credentials()


class TestGetExchangeCredentials:
    """Tests for get_exchange_credentials function."""

    @patch("dgmigrate.core.config.load_dotenv")
    def test_falls_back_to_graph_ids(self, mock_load_dotenv, clean_env, mock_env_vars):
        creds = get_exchange_credentials()

        assert creds.tenant_id == "test-tenant-id"
        assert creds.client_id == "test-client-id"
        assert creds.organization == "contoso.onmicrosoft.com"
        assert creds.certificate_thumbprint == "ABC123"

    @patch("dgmigrate.core.config.get_migration_config")
    @patch("dgmigrate.core.config.load_dotenv")
    def test_organization_from_migration_config(
        self, mock_load_dotenv, mock_config, clean_env, mock_env_vars, monkeypatch
    ):
        monkeypatch.delenv("EXCHANGE_ORGANIZATION")
        mock_config.return_value = MigrationConfig(
            organization="fabrikam.onmicrosoft.com",
            routing_domain="fabrikam.mail.onmicrosoft.com",
        )

        creds = get_exchange_credentials()

        assert creds.organization == "fabrikam.onmicrosoft.com"

    @patch("dgmigrate.core.config.load_dotenv")
    def test_no_certificate(self, mock_load_dotenv, clean_env, mock_env_vars, monkeypatch):
        monkeypatch.delenv("EXCHANGE_CERTIFICATE_THUMBPRINT")

        with pytest.raises(ValueError, match="EXCHANGE_CERTIFICATE_THUMBPRINT"):
            get_exchange_credentials()

    @patch("dgmigrate.core.config.load_dotenv")
    def test_certificate_path_requires_password(
        self, mock_load_dotenv, clean_env, mock_env_vars, monkeypatch
    ):
        monkeypatch.delenv("EXCHANGE_CERTIFICATE_THUMBPRINT")
        monkeypatch.setenv("EXCHANGE_CERTIFICATE_PATH", "/certs/exo.pfx")

        with pytest.raises(ValueError, match="EXCHANGE_CERTIFICATE_PASSWORD is required"):
            get_exchange_credentials()

    @patch("dgmigrate.core.config.load_dotenv")
    def test_certificate_path_empty_password(
        self, mock_load_dotenv, clean_env, mock_env_vars, monkeypatch
    ):
        monkeypatch.setenv("EXCHANGE_CERTIFICATE_PATH", "/certs/exo.pfx")
        monkeypatch.setenv("EXCHANGE_CERTIFICATE_PASSWORD", "")

        creds = get_exchange_credentials()

        assert creds.certificate_path == "/certs/exo.pfx"
        assert creds.certificate_password == ""


class TestGetOnPremExchangeSettings:
    """Tests for get_onprem_exchange_settings function."""

    @patch("dgmigrate.core.config.load_dotenv")
    def test_defaults(self, mock_load_dotenv, clean_env, mock_env_vars):
        settings = get_onprem_exchange_settings()

        assert settings.connection_uri == "http://exch01.contoso.local/PowerShell/"
        assert settings.authentication == "Kerberos"
        assert settings.username is None
        assert settings.adsync_server is None

    @patch("dgmigrate.core.config.load_dotenv")
    def test_explicit_credential(self, mock_load_dotenv, clean_env, mock_env_vars, monkeypatch):
        monkeypatch.setenv("ONPREM_EXCHANGE_USERNAME", "CONTOSO\\svc-migrate")
        monkeypatch.setenv("ONPREM_EXCHANGE_PASSWORD", "secret")
        monkeypatch.setenv("ONPREM_EXCHANGE_AUTHENTICATION", "Negotiate")
        monkeypatch.setenv("ADSYNC_SERVER", "aadc01.contoso.local")

        settings = get_onprem_exchange_settings()

        assert settings.username == "CONTOSO\\svc-migrate"
        assert settings.authentication == "Negotiate"
        assert settings.adsync_server == "aadc01.contoso.local"

    @patch("dgmigrate.core.config.load_dotenv")
    def test_missing_uri(self, mock_load_dotenv, clean_env):
        with pytest.raises(ValueError, match="ONPREM_EXCHANGE_URI"):
            get_onprem_exchange_settings()

    @patch("dgmigrate.core.config.load_dotenv")
    def test_half_credential(self, mock_load_dotenv, clean_env, mock_env_vars, monkeypatch):
        monkeypatch.setenv("ONPREM_EXCHANGE_USERNAME", "CONTOSO\\svc-migrate")

        with pytest.raises(ValueError, match="must be set together"):
            get_onprem_exchange_settings()


class TestLoadMigrationConfig:
    """Tests for load_migration_config function."""

    def test_minimal_config_uses_defaults(self, config_file):
        path = config_file(
            {
                "organization": "contoso.onmicrosoft.com",
                "routing_domain": "contoso.mail.onmicrosoft.com",
            }
        )

        config = load_migration_config(path)

        assert config.organization == "contoso.onmicrosoft.com"
        assert config.clone_prefix == "Cloud-"
        assert config.sync_attribute == "CustomAttribute15"
        assert config.sync_exclusion_value == "NoSync"
        assert config.poll_interval_seconds == 30
        assert config.contact_ou is None

    def test_full_config(self, config_file):
        path = config_file(
            {
                "organization": "contoso.onmicrosoft.com",
                "routing_domain": "contoso.mail.onmicrosoft.com",
                "clone_prefix": "EXO-",
                "sync_attribute": "CustomAttribute10",
                "sync_exclusion_value": "CloudOnly",
                "poll_interval_seconds": 10,
                "poll_max_attempts": 5,
                "contact_ou": "",
            }
        )

        config = load_migration_config(path)

        assert config.clone_prefix == "EXO-"
        assert config.sync_attribute == "CustomAttribute10"
        assert config.poll_max_attempts == 5
        assert config.contact_ou is None

    def test_invalid_sync_attribute(self, config_file):
        path = config_file(
            {
                "organization": "contoso.onmicrosoft.com",
                "routing_domain": "contoso.mail.onmicrosoft.com",
                "sync_attribute": "extensionAttribute1",
            }
        )

        with pytest.raises(ValueError, match="sync_attribute"):
            load_migration_config(path)

    def test_missing_required_key(self, config_file):
        path = config_file({"organization": "contoso.onmicrosoft.com"})

        with pytest.raises(ValueError, match="missing: routing_domain"):
            load_migration_config(path)

    def test_missing_all_required_keys(self, config_file):
        path = config_file({"organization": "", "clone_prefix": "Cloud-"})

        with pytest.raises(ValueError, match="missing: organization, routing_domain"):
            load_migration_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_migration_config(tmp_path / "missing.json")

    def test_project_config_loads(self):
        config = load_migration_config()

        assert config.routing_domain.endswith(".mail.onmicrosoft.com")
        assert (get_project_root() / "config" / "migration.json").exists()


class TestGetMigrationConfig:
    """Tests for the cached config accessor."""

    def test_cached(self, monkeypatch):
        monkeypatch.setattr(config_module, "_migration_config", None)

        with patch("dgmigrate.core.config.load_migration_config") as mock_load:
            mock_load.return_value = MigrationConfig(organization="a", routing_domain="b")
            first = get_migration_config()
            second = get_migration_config()

        assert first is second
        mock_load.assert_called_once()
