"""Exchange PowerShell clients.

Executes Exchange cmdlets via subprocess against two endpoints:

- Exchange Online, through the official ExchangeOnlineManagement module
  with app-only certificate authentication.
- On-premises Exchange, through a remote PowerShell session
  (New-PSSession -ConfigurationName Microsoft.Exchange).

Each call opens one connection, runs its commands and disconnects.
Results come back as JSON via ConvertTo-Json.

Prerequisites:
1. PowerShell 7+ (pwsh) with the Exchange Online Management module:
   Install-Module -Name ExchangeOnlineManagement

2. For Exchange Online app-only authentication:
   - Entra ID App Registration with Exchange.ManageAsApp permission
   - A certificate uploaded to the app (thumbprint or .pfx file)
   - App assigned "Exchange Recipient Administrator" role

3. For on-premises Exchange:
   - WinRM access to http(s)://<server>/PowerShell/
   - Kerberos (domain joined host) or an explicit credential

References:
- https://learn.microsoft.com/en-us/powershell/exchange/app-only-auth-powershell-v2
- https://learn.microsoft.com/en-us/powershell/exchange/connect-to-exchange-servers-using-remote-powershell
"""

import asyncio
import json
import logging
import re
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from dgmigrate.core.config import (
    OnPremExchangeSettings,
    get_exchange_credentials,
    get_onprem_exchange_settings,
)
from dgmigrate.exchange.models import (
    COPYABLE_SETTINGS,
    MULTI_VALUED_SETTINGS,
    DistributionGroupInfo,
    MailContactInfo,
    RecipientNames,
)

logger = logging.getLogger(__name__)

# Retry configuration for transient Entra ID / Exchange sync errors
TRANSIENT_ERROR_PATTERNS = [
    r"Resource .* does not exist",
    r"object in sync between Azure Active Directory and Exchange Online",
    r"couldn't be found on",
    r"transient",
]
MAX_RETRY_ATTEMPTS = 3
RETRY_DELAYS_SECONDS = [10, 20, 30]  # Delays between retries

DEFAULT_TIMEOUT_SECONDS = 120

GROUP_PROPERTIES: tuple[str, ...] = (
    "Identity",
    "Name",
    "Alias",
    "DisplayName",
    "PrimarySmtpAddress",
    "RecipientTypeDetails",
    "LegacyExchangeDN",
    "EmailAddresses",
    "IsDirSynced",
    "HiddenFromAddressListsEnabled",
    *COPYABLE_SETTINGS,
)

CONTACT_PROPERTIES: tuple[str, ...] = (
    "Identity",
    "Name",
    "Alias",
    "DisplayName",
    "ExternalEmailAddress",
    "EmailAddresses",
    "HiddenFromAddressListsEnabled",
)

RECIPIENT_PROPERTIES: tuple[str, ...] = (
    "Identity",
    "Name",
    "PrimarySmtpAddress",
    "RecipientTypeDetails",
)

# Rich Exchange types that must be flattened to strings before ConvertTo-Json
STRING_PROPERTIES = frozenset(
    {
        "Identity",
        "PrimarySmtpAddress",
        "RecipientTypeDetails",
        "ExternalEmailAddress",
        "MemberJoinRestriction",
        "MemberDepartRestriction",
        "SendModerationNotifications",
    }
)
COLLECTION_PROPERTIES = frozenset({"EmailAddresses", *MULTI_VALUED_SETTINGS})


def is_transient_error(error_msg: str) -> bool:
    """Check if an error message indicates a transient directory sync error."""
    return any(re.search(pattern, error_msg, re.IGNORECASE) for pattern in TRANSIENT_ERROR_PATTERNS)


def ps_quote(value: Any) -> str:
    """Quote a value as a PowerShell single-quoted string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def ps_value(value: Any) -> str:
    """Render a Python value as a PowerShell argument."""
    if value is None:
        return "$null"
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, list | tuple | set):
        return "@(" + ", ".join(ps_quote(v) for v in value) + ")"
    return ps_quote(value)


def build_parameters(properties: dict[str, Any]) -> str:
    """Render a property dict as cmdlet parameters (-Name value ...)."""
    return " ".join(f"-{name} {ps_value(value)}" for name, value in properties.items())


def select_expression(properties: tuple[str, ...]) -> str:
    """Build a Select-Object property list that serializes cleanly to JSON.

    Collections are expanded to string arrays and rich Exchange types are
    converted with their string form, which keeps the output identical for
    Exchange Online and deserialized on-premises objects.
    """
    parts = []
    for prop in properties:
        if prop in COLLECTION_PROPERTIES:
            parts.append("@{n='" + prop + "';e={@($_." + prop + ' | ForEach-Object { "$_" })}}')
        elif prop in STRING_PROPERTIES:
            parts.append("@{n='" + prop + "';e={\"$($_." + prop + ')"}}')
        else:
            parts.append(prop)
    return ", ".join(parts)


def _first_object(result: Any) -> dict | None:
    """Return the single object from a JSON result, or None."""
    if isinstance(result, list):
        objects = [r for r in result if isinstance(r, dict)]
        if len(objects) > 1:
            logger.warning(f"Identity matched {len(objects)} objects, using the first")
        return objects[0] if objects else None
    if isinstance(result, dict) and "raw" not in result and result:
        return result
    return None


class ExchangePowerShellClient(ABC):
    """Base client running Exchange cmdlets through pwsh.

    Subclasses provide the connect/disconnect commands for their endpoint.
    Failures are logged and reported as None/False; the stderr of the last
    failed call is kept in ``last_error``.
    """

    endpoint_name = "Exchange"

    def __init__(self, timeout: int = DEFAULT_TIMEOUT_SECONDS) -> None:
        """Initialize the client.

        Args:
            timeout: Seconds before a single pwsh invocation is abandoned
        """
        self.timeout = timeout
        self.last_error: str | None = None

    @abstractmethod
    def _build_connect_commands(self) -> list[str]:
        """Commands that open the session, prepended to every script."""

    @abstractmethod
    def _build_disconnect_commands(self) -> list[str]:
        """Commands that close the session, appended to every script."""

    def _run_powershell(self, commands: list[str], parse_json: bool = True) -> Any:
        """Run PowerShell commands and return the result.

        Args:
            commands: List of PowerShell commands to execute
            parse_json: If True, parse output as JSON

        Returns:
            Parsed JSON, raw string output, or None on failure
        """
        full_script = [
            *self._build_connect_commands(),
            *commands,
            *self._build_disconnect_commands(),
        ]

        script = "; ".join(full_script)
        self.last_error = None

        try:
            result = subprocess.run(  # noqa: S603
                ["pwsh", "-NoProfile", "-NonInteractive", "-Command", script],  # noqa: S607
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            self.last_error = "PowerShell command timed out"
            logger.error(f"{self.endpoint_name}: PowerShell command timed out")
            return None
        except FileNotFoundError:
            self.last_error = "PowerShell (pwsh) not found"
            logger.error("PowerShell (pwsh) not found. Install PowerShell 7+.")
            return None

        if result.returncode != 0:
            self.last_error = result.stderr or result.stdout
            logger.error(f"{self.endpoint_name} PowerShell error: {self.last_error}")
            return None

        output = result.stdout.strip()
        if not output:
            return {} if parse_json else ""

        if not parse_json:
            return output

        try:
            return json.loads(output)
        except json.JSONDecodeError:
            # Banner text may precede JSON - try to find JSON in output
            starts = [i for i in (output.find("{"), output.find("[")) if i != -1]
            if starts:
                try:
                    return json.loads(output[min(starts) :])
                except json.JSONDecodeError:
                    pass
            if "{" in output or "[" in output:
                logger.warning(f"Failed to parse JSON output: {output[:200]}")
            return {"raw": output}

    async def _run(self, commands: list[str], parse_json: bool = True) -> Any:
        return await asyncio.to_thread(self._run_powershell, commands, parse_json)

    async def _run_action(self, action: str, commands: list[str]) -> bool:
        """Run state-changing commands, retrying transient sync errors.

        Args:
            action: Short description used in log messages
            commands: Commands to run; a trailing SUCCESS marker is appended

        Returns:
            True if the commands completed
        """
        script = [*commands, "Write-Output 'SUCCESS'"]
        delays = RETRY_DELAYS_SECONDS[:MAX_RETRY_ATTEMPTS]

        for attempt in range(len(delays) + 1):
            result = await self._run(script, parse_json=False)
            if result is not None and "SUCCESS" in str(result):
                logger.info(f"{action}")
                return True

            error = self.last_error or ""
            if attempt < len(delays) and is_transient_error(error):
                delay = delays[attempt]
                logger.info(
                    f"Transient error during '{action}', retry {attempt + 1}/{len(delays)} "
                    f"after {delay}s"
                )
                await asyncio.sleep(delay)
                continue
            break

        logger.error(f"Failed: {action}")
        return False

    async def check_connection(self) -> bool:
        """Connect, run a no-op and disconnect."""
        result = await self._run(["Write-Output 'CONNECTED'"], parse_json=False)
        return result is not None and "CONNECTED" in str(result)

    async def get_distribution_group(self, identity: str) -> DistributionGroupInfo | None:
        """Get a distribution group or mail-enabled security group by identity.

        Args:
            identity: Group name, alias, or email address

        Returns:
            DistributionGroupInfo if found, None otherwise
        """
        commands = [
            f"$group = Get-DistributionGroup -Identity {ps_quote(identity)} "
            "-ErrorAction SilentlyContinue",
            "if ($group) { $group | Select-Object "
            f"{select_expression(GROUP_PROPERTIES)} | ConvertTo-Json -Depth 3 }}",
        ]

        data = _first_object(await self._run(commands))
        if data and "Name" in data:
            return DistributionGroupInfo.from_powershell(data)
        return None

    async def get_distribution_group_members(self, identity: str) -> list[str] | None:
        """Get members of a distribution group.

        Args:
            identity: Group name, alias, or email address

        Returns:
            List of member primary SMTP addresses (lowercase), or None if the
            lookup failed
        """
        commands = [
            f"Get-DistributionGroupMember -Identity {ps_quote(identity)} -ResultSize Unlimited "
            "| Select-Object " + select_expression(("PrimarySmtpAddress",)) + " | ConvertTo-Json",
        ]

        result = await self._run(commands)
        if result is None:
            return None
        if not result:
            return []

        items = result if isinstance(result, list) else [result]
        return [
            m["PrimarySmtpAddress"].lower()
            for m in items
            if isinstance(m, dict) and m.get("PrimarySmtpAddress")
        ]

    async def set_distribution_group(self, identity: str, properties: dict[str, Any]) -> bool:
        """Set properties on a distribution group.

        Args:
            identity: Group name, alias, or email address
            properties: Exchange property name -> value

        Returns:
            True if successful
        """
        if not properties:
            return True

        command = (
            f"Set-DistributionGroup -Identity {ps_quote(identity)} "
            f"{build_parameters(properties)} "
            "-BypassSecurityGroupManagerCheck -ErrorAction Stop"
        )
        return await self._run_action(
            f"Set {', '.join(properties)} on {identity}",
            [command],
        )

    async def set_email_addresses(self, identity: str, addresses: list[str]) -> bool:
        """Replace the proxy address list of a distribution group.

        The entry with an uppercase ``SMTP:`` prefix becomes the primary address.
        """
        return await self.set_distribution_group(identity, {"EmailAddresses": addresses})

    async def get_recipient(self, identity: str) -> dict | None:
        """Look up any recipient holding the given identity or address.

        Returns:
            Dict with Identity, Name, PrimarySmtpAddress, RecipientTypeDetails or None
        """
        commands = [
            f"$recipient = Get-Recipient -Identity {ps_quote(identity)} "
            "-ErrorAction SilentlyContinue",
            "if ($recipient) { $recipient | Select-Object "
            f"{select_expression(RECIPIENT_PROPERTIES)} | ConvertTo-Json }}",
        ]
        return _first_object(await self._run(commands))

    def _parse_trustees(self, result: Any) -> list[str] | None:
        if result is None:
            return None
        if not result:
            return []
        items = result if isinstance(result, list) else [result]
        return [t["Trustee"] for t in items if isinstance(t, dict) and t.get("Trustee")]


class ExchangeOnlineClient(ExchangePowerShellClient):
    """Client for Exchange Online PowerShell operations.

    Executes Exchange cmdlets via subprocess using the official
    ExchangeOnlineManagement PowerShell module.
    """

    endpoint_name = "Exchange Online"

    def __init__(
        self,
        certificate_thumbprint: str | None = None,
        certificate_path: Path | str | None = None,
        certificate_password: str | None = None,
        organization: str | None = None,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the Exchange Online client.

        Args:
            certificate_thumbprint: Thumbprint of installed certificate (Windows)
            certificate_path: Path to .pfx certificate file (cross-platform)
            certificate_password: Password for the .pfx file
            organization: The organization domain (overrides env config)
            timeout: Seconds before a single pwsh invocation is abandoned
        """
        super().__init__(timeout=timeout)
        creds = get_exchange_credentials()
        self.tenant_id = creds.tenant_id
        self.client_id = creds.client_id
        self.organization = organization or creds.organization
        self.certificate_thumbprint = certificate_thumbprint or creds.certificate_thumbprint
        self.certificate_path = certificate_path or creds.certificate_path
        self.certificate_password = certificate_password or creds.certificate_password

    def _build_connect_command(self) -> str:
        """Build the Connect-ExchangeOnline command."""
        # Suppress banner output with *>$null to prevent it from mixing with JSON output
        # Prefer certificate_path over thumbprint (thumbprint is Windows-only)
        if self.certificate_path:
            # For empty password (Key Vault certs), skip the -CertificatePassword param
            if self.certificate_password:
                secure_str = (
                    f"-CertificatePassword (ConvertTo-SecureString "
                    f"-String {ps_quote(self.certificate_password)} -AsPlainText -Force) "
                )
            else:
                secure_str = ""
            return (
                f"Connect-ExchangeOnline "
                f"-AppId {ps_quote(self.client_id)} "
                f"-CertificateFilePath {ps_quote(self.certificate_path)} "
                f"{secure_str}"
                f"-Organization {ps_quote(self.organization)} *>$null"
            )
        elif self.certificate_thumbprint:
            return (
                f"Connect-ExchangeOnline "
                f"-AppId {ps_quote(self.client_id)} "
                f"-CertificateThumbprint {ps_quote(self.certificate_thumbprint)} "
                f"-Organization {ps_quote(self.organization)} *>$null"
            )
        else:
            raise ValueError("Either certificate_thumbprint or certificate_path must be provided")

    def _build_connect_commands(self) -> list[str]:
        return [
            "Import-Module ExchangeOnlineManagement -ErrorAction Stop",
            self._build_connect_command(),
        ]

    def _build_disconnect_commands(self) -> list[str]:
        return ["Disconnect-ExchangeOnline -Confirm:$false *>$null"]

    async def new_distribution_group(
        self,
        names: RecipientNames,
        group_kind: str = "Distribution",
    ) -> DistributionGroupInfo | None:
        """Create a cloud-only distribution group.

        Args:
            names: Name, alias, display name and primary address of the new group
            group_kind: "Distribution" or "Security"

        Returns:
            Created DistributionGroupInfo or None on failure
        """
        create_cmd = (
            f"New-DistributionGroup -Name {ps_quote(names.name)} "
            f"-Alias {ps_quote(names.alias)} "
            f"-DisplayName {ps_quote(names.display_name)} "
            f"-PrimarySmtpAddress {ps_quote(names.primary_smtp_address)} "
            f"-Type {ps_quote(group_kind)} -ErrorAction Stop"
        )
        commands = [
            f"$group = {create_cmd}",
            f"$group | Select-Object {select_expression(GROUP_PROPERTIES)} "
            "| ConvertTo-Json -Depth 3",
        ]

        data = _first_object(await self._run(commands))
        if data and "Name" in data:
            logger.info(f"Created {group_kind.lower()} group: {names.name}")
            return DistributionGroupInfo.from_powershell(data)

        logger.error(f"Failed to create distribution group: {names.name}")
        return None

    async def update_distribution_group_members(self, identity: str, members: list[str]) -> bool:
        """Replace the membership of a distribution group.

        Args:
            identity: Group name, alias, or email address
            members: Member addresses the group should contain; an empty
                list removes every current member

        Returns:
            True if successful
        """
        if not members:
            command = (
                f"Get-DistributionGroupMember -Identity {ps_quote(identity)} -ResultSize Unlimited "
                "| ForEach-Object { "
                f"Remove-DistributionGroupMember -Identity {ps_quote(identity)} "
                "-Member $_.Guid.ToString() -BypassSecurityGroupManagerCheck -Confirm:$false "
                "-ErrorAction Stop }"
            )
            return await self._run_action(f"Removed all members from {identity}", [command])

        command = (
            f"Update-DistributionGroupMember -Identity {ps_quote(identity)} "
            f"-Members {ps_value(members)} "
            "-BypassSecurityGroupManagerCheck -Confirm:$false -ErrorAction Stop"
        )
        return await self._run_action(f"Set {len(members)} members on {identity}", [command])

    async def get_send_as_trustees(self, identity: str) -> list[str] | None:
        """Get explicit Send-As trustees of a recipient.

        Inherited and NT AUTHORITY entries are ignored.
        """
        commands = [
            f"Get-RecipientPermission -Identity {ps_quote(identity)} -AccessRights SendAs "
            "-ErrorAction SilentlyContinue "
            "| Where-Object { -not $_.IsInherited -and $_.Trustee -notlike 'NT AUTHORITY\\*' } "
            "| Select-Object @{n='Trustee';e={\"$($_.Trustee)\"}} | ConvertTo-Json",
        ]
        return self._parse_trustees(await self._run(commands))

    async def add_send_as_permission(self, identity: str, trustee: str) -> bool:
        """Grant Send-As on a recipient."""
        command = (
            f"Add-RecipientPermission -Identity {ps_quote(identity)} "
            f"-Trustee {ps_quote(trustee)} -AccessRights SendAs -Confirm:$false -ErrorAction Stop"
        )
        return await self._run_action(f"Granted Send-As on {identity} to {trustee}", [command])


class OnPremExchangeClient(ExchangePowerShellClient):
    """Client for on-premises Exchange through a remote PowerShell session."""

    endpoint_name = "On-premises Exchange"

    def __init__(
        self,
        settings: OnPremExchangeSettings | None = None,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the on-premises client.

        Args:
            settings: Connection settings (defaults to environment)
            timeout: Seconds before a single pwsh invocation is abandoned
        """
        super().__init__(timeout=timeout)
        self.settings = settings or get_onprem_exchange_settings()

    def _credential_commands(self) -> list[str]:
        if not self.settings.username:
            return []
        return [
            "$cred = New-Object System.Management.Automation.PSCredential("
            f"{ps_quote(self.settings.username)}, "
            f"(ConvertTo-SecureString -String {ps_quote(self.settings.password)} "
            "-AsPlainText -Force))"
        ]

    def _build_connect_commands(self) -> list[str]:
        credential = " -Credential $cred" if self.settings.username else ""
        return [
            *self._credential_commands(),
            "$session = New-PSSession -ConfigurationName Microsoft.Exchange "
            f"-ConnectionUri {ps_quote(self.settings.connection_uri)} "
            f"-Authentication {ps_quote(self.settings.authentication)}{credential} "
            "-ErrorAction Stop",
            "Import-PSSession $session -DisableNameChecking -AllowClobber *>$null",
        ]

    def _build_disconnect_commands(self) -> list[str]:
        return ["Remove-PSSession $session"]

    async def get_send_as_trustees(self, identity: str) -> list[str] | None:
        """Get explicit Send-As trustees from the AD permissions of a recipient."""
        commands = [
            f"Get-ADPermission -Identity {ps_quote(identity)} -ErrorAction SilentlyContinue "
            "| Where-Object { $_.ExtendedRights -like '*Send-As*' -and -not $_.IsInherited "
            "-and $_.User -notlike 'NT AUTHORITY\\*' } "
            "| Select-Object @{n='Trustee';e={\"$($_.User)\"}} | ConvertTo-Json",
        ]
        return self._parse_trustees(await self._run(commands))

    async def disable_distribution_group(self, identity: str) -> bool:
        """Mail-disable a group, keeping the AD object."""
        command = (
            f"Disable-DistributionGroup -Identity {ps_quote(identity)} "
            "-Confirm:$false -ErrorAction Stop"
        )
        return await self._run_action(f"Mail-disabled group {identity}", [command])

    async def get_mail_contact(self, identity: str) -> MailContactInfo | None:
        """Get a mail contact by identity."""
        commands = [
            f"$contact = Get-MailContact -Identity {ps_quote(identity)} "
            "-ErrorAction SilentlyContinue",
            "if ($contact) { $contact | Select-Object "
            f"{select_expression(CONTACT_PROPERTIES)} | ConvertTo-Json -Depth 3 }}",
        ]

        data = _first_object(await self._run(commands))
        if data and "Name" in data:
            return MailContactInfo.from_powershell(data)
        return None

    async def new_mail_contact(
        self,
        names: RecipientNames,
        external_email_address: str,
        organizational_unit: str | None = None,
    ) -> MailContactInfo | None:
        """Create a mail contact.

        Args:
            names: Name, alias and display name of the contact
            external_email_address: Target address mail is forwarded to
            organizational_unit: OU to create the contact in (default container if None)

        Returns:
            Created MailContactInfo or None on failure
        """
        cmd_parts = [
            f"New-MailContact -Name {ps_quote(names.name)}",
            f"-Alias {ps_quote(names.alias)}",
            f"-DisplayName {ps_quote(names.display_name)}",
            f"-ExternalEmailAddress {ps_quote('SMTP:' + external_email_address)}",
        ]
        if organizational_unit:
            cmd_parts.append(f"-OrganizationalUnit {ps_quote(organizational_unit)}")
        cmd_parts.append("-ErrorAction Stop")

        commands = [
            f"$contact = {' '.join(cmd_parts)}",
            f"$contact | Select-Object {select_expression(CONTACT_PROPERTIES)} "
            "| ConvertTo-Json -Depth 3",
        ]

        data = _first_object(await self._run(commands))
        if data and "Name" in data:
            logger.info(f"Created mail contact: {names.name} -> {external_email_address}")
            return MailContactInfo.from_powershell(data)

        logger.error(f"Failed to create mail contact: {names.name}")
        return None

    async def set_mail_contact(self, identity: str, properties: dict[str, Any]) -> bool:
        """Set properties on a mail contact."""
        if not properties:
            return True
        command = (
            f"Set-MailContact -Identity {ps_quote(identity)} "
            f"{build_parameters(properties)} -ErrorAction Stop"
        )
        return await self._run_action(
            f"Set {', '.join(properties)} on contact {identity}", [command]
        )

    async def start_directory_sync(self) -> bool:
        """Start a delta sync cycle on the Entra Connect server.

        Returns:
            True if the cycle was started or no server is configured
        """
        server = self.settings.adsync_server
        if not server:
            logger.info("No ADSYNC_SERVER configured, waiting for the scheduled sync cycle")
            return True

        credential = " -Credential $cred" if self.settings.username else ""
        command = (
            f"Invoke-Command -ComputerName {ps_quote(server)}{credential} -ScriptBlock {{ "
            "Import-Module ADSync -ErrorAction Stop; "
            "Start-ADSyncSyncCycle -PolicyType Delta } -ErrorAction Stop | Out-Null"
        )
        return await self._run_action(f"Started delta sync cycle on {server}", [command])
