"""Configuration loading utilities."""

import json
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def get_graph_credentials() -> tuple[str, str, str]:
    """Get MS Graph API credentials from environment.

    Returns:
        Tuple of (tenant_id, client_id, client_secret)

    Raises:
        ValueError: If any required credential is not set
    """
    load_dotenv()

    tenant_id = os.getenv("MS_GRAPH_TENANT_ID")
    client_id = os.getenv("MS_GRAPH_CLIENT_ID")
    client_secret = os.getenv("MS_GRAPH_CLIENT_SECRET")

    if not tenant_id or not client_id or not client_secret:
        raise ValueError(
            "MS Graph credentials not set. Required: "
            "MS_GRAPH_TENANT_ID, MS_GRAPH_CLIENT_ID, MS_GRAPH_CLIENT_SECRET"
        )

    return tenant_id, client_id, client_secret


@dataclass
class ExchangeCredentials:
    """Credentials for Exchange Online PowerShell authentication."""

    tenant_id: str
    client_id: str
    organization: str
    certificate_thumbprint: str | None = None
    certificate_path: str | None = None
    certificate_password: str | None = None


def get_exchange_credentials() -> ExchangeCredentials:
    """Get Exchange Online credentials from environment.

    Uses certificate-based authentication for app-only access.
    Either certificate_thumbprint (Windows) or certificate_path + password
    (cross-platform) must be provided.

    Environment variables:
        EXCHANGE_TENANT_ID: Tenant ID (falls back to MS_GRAPH_TENANT_ID)
        EXCHANGE_CLIENT_ID: App client ID (falls back to MS_GRAPH_CLIENT_ID)
        EXCHANGE_ORGANIZATION: Organization domain (falls back to migration config)
        EXCHANGE_CERTIFICATE_THUMBPRINT: Certificate thumbprint (Windows)
        EXCHANGE_CERTIFICATE_PATH: Path to .pfx certificate file
        EXCHANGE_CERTIFICATE_PASSWORD: Password for .pfx file

    Returns:
        ExchangeCredentials with certificate configuration

    Raises:
        ValueError: If neither certificate method is configured
    """
    load_dotenv()

    # Get tenant/client, with fallback to Graph credentials
    tenant_id = os.getenv("EXCHANGE_TENANT_ID") or os.getenv("MS_GRAPH_TENANT_ID")
    client_id = os.getenv("EXCHANGE_CLIENT_ID") or os.getenv("MS_GRAPH_CLIENT_ID")

    if not tenant_id or not client_id:
        raise ValueError(
            "Exchange credentials not set. Required: "
            "EXCHANGE_TENANT_ID/MS_GRAPH_TENANT_ID and EXCHANGE_CLIENT_ID/MS_GRAPH_CLIENT_ID"
        )

    organization = os.getenv("EXCHANGE_ORGANIZATION")
    if not organization:
        organization = get_migration_config().organization
    thumbprint = os.getenv("EXCHANGE_CERTIFICATE_THUMBPRINT")
    cert_path = os.getenv("EXCHANGE_CERTIFICATE_PATH")
    cert_password = os.getenv("EXCHANGE_CERTIFICATE_PASSWORD")

    if not thumbprint and not cert_path:
        raise ValueError(
            "Exchange credentials not set. Required: "
            "EXCHANGE_CERTIFICATE_THUMBPRINT (Windows) or "
            "EXCHANGE_CERTIFICATE_PATH + EXCHANGE_CERTIFICATE_PASSWORD (cross-platform)"
        )

    if cert_path and cert_password is None:
        raise ValueError(
            "EXCHANGE_CERTIFICATE_PASSWORD is required when using EXCHANGE_CERTIFICATE_PATH "
            "(can be empty string for Key Vault generated certs)"
        )

    return ExchangeCredentials(
        tenant_id=tenant_id,
        client_id=client_id,
        organization=organization,
        certificate_thumbprint=thumbprint,
        certificate_path=cert_path,
        certificate_password=cert_password,
    )


@dataclass
class OnPremExchangeSettings:
    """Connection settings for the on-premises Exchange remote PowerShell endpoint."""

    connection_uri: str
    authentication: str = "Kerberos"
    username: str | None = None
    password: str | None = None
    adsync_server: str | None = None


def get_onprem_exchange_settings() -> OnPremExchangeSettings:
    """Get on-premises Exchange connection settings from environment.

    Environment variables:
        ONPREM_EXCHANGE_URI: Remote PowerShell URI (http://exch01/PowerShell/)
        ONPREM_EXCHANGE_AUTHENTICATION: Kerberos (default), Basic or Negotiate
        ONPREM_EXCHANGE_USERNAME / ONPREM_EXCHANGE_PASSWORD: Optional explicit credential
        ADSYNC_SERVER: Entra Connect server used to start a delta sync cycle

    Raises:
        ValueError: If the URI is missing or only half of the credential is set
    """
    load_dotenv()

    uri = os.getenv("ONPREM_EXCHANGE_URI")
    if not uri:
        raise ValueError("On-premises Exchange not configured. Required: ONPREM_EXCHANGE_URI")

    username = os.getenv("ONPREM_EXCHANGE_USERNAME") or None
    password = os.getenv("ONPREM_EXCHANGE_PASSWORD") or None
    if bool(username) != bool(password):
        raise ValueError(
            "ONPREM_EXCHANGE_USERNAME and ONPREM_EXCHANGE_PASSWORD must be set together"
        )

    return OnPremExchangeSettings(
        connection_uri=uri,
        authentication=os.getenv("ONPREM_EXCHANGE_AUTHENTICATION") or "Kerberos",
        username=username,
        password=password,
        adsync_server=os.getenv("ADSYNC_SERVER") or None,
    )


@dataclass
class MigrationConfig:
    """Migration settings loaded from config/migration.json.

    Everything tenant specific lives in the JSON file so that a new
    environment only needs a different config, not a code change.
    """

    organization: str
    routing_domain: str
    clone_prefix: str = "Cloud-"
    sync_attribute: str = "CustomAttribute15"
    sync_exclusion_value: str = "NoSync"
    poll_interval_seconds: float = 30
    poll_max_attempts: int = 60
    backup_dir: str = "backups"
    contact_ou: str | None = None
    powershell_timeout_seconds: int = 120


def get_project_root() -> Path:
    """Get the project root directory."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").exists():
            return parent
    raise RuntimeError("Could not find project root (no pyproject.toml found)")


def load_migration_config(config_path: Path | str | None = None) -> MigrationConfig:
    """Load migration configuration from config file.

    Args:
        config_path: Path to the JSON file. Defaults to config/migration.json
            under the project root.

    Returns:
        MigrationConfig

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If organization or routing_domain is missing
    """
    if config_path is None:
        config_path = get_project_root() / "config" / "migration.json"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open() as f:
        config_data = json.load(f)

    missing = [key for key in ("organization", "routing_domain") if not config_data.get(key)]
    if missing:
        raise ValueError(
            f"Migration config {config_path} incomplete. "
            f"Required: organization, routing_domain (missing: {', '.join(missing)})"
        )

    sync_attribute = config_data.get("sync_attribute", "CustomAttribute15")
    if not sync_attribute.startswith("CustomAttribute"):
        raise ValueError(f"sync_attribute must be CustomAttribute1-15, got: {sync_attribute}")

    return MigrationConfig(
        organization=config_data["organization"],
        routing_domain=config_data["routing_domain"],
        clone_prefix=config_data.get("clone_prefix", "Cloud-"),
        sync_attribute=sync_attribute,
        sync_exclusion_value=config_data.get("sync_exclusion_value", "NoSync"),
        poll_interval_seconds=config_data.get("poll_interval_seconds", 30),
        poll_max_attempts=config_data.get("poll_max_attempts", 60),
        backup_dir=config_data.get("backup_dir", "backups"),
        contact_ou=config_data.get("contact_ou") or None,
        powershell_timeout_seconds=config_data.get("powershell_timeout_seconds", 120),
    )


# Cached config instance
_migration_config: MigrationConfig | None = None


def get_migration_config() -> MigrationConfig:
    """Get cached migration config.

    Loads config once and caches it for subsequent calls.
    """
    global _migration_config
    if _migration_config is None:
        _migration_config = load_migration_config()
    return _migration_config
