#!/usr/bin/env python3
"""Check connections to Exchange Online, on-premises Exchange and MS Graph."""

import argparse
import asyncio
import logging
import sys

from dgmigrate.core.config import get_graph_credentials
from dgmigrate.entra.groups import EntraGroupManager
from dgmigrate.exchange.client import ExchangeOnlineClient, OnPremExchangeClient

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("azure.identity").setLevel(logging.WARNING)


async def check_exchange_online() -> bool:
    """Connect to Exchange Online with the configured certificate."""
    print("Testing Exchange Online connection...")
    try:
        client = ExchangeOnlineClient()
    except (ValueError, FileNotFoundError) as e:
        print(f"✗ Exchange Online not configured: {e}")
        return False

    if await client.check_connection():
        print(f"✓ Exchange Online connection successful ({client.organization})")
        return True
    print(f"✗ Exchange Online connection failed: {client.last_error}")
    return False


async def check_onprem_exchange() -> bool:
    """Open a remote PowerShell session to on-premises Exchange."""
    print("Testing on-premises Exchange connection...")
    try:
        client = OnPremExchangeClient()
    except ValueError as e:
        print(f"✗ On-premises Exchange not configured: {e}")
        return False

    if await client.check_connection():
        print(f"✓ On-premises Exchange connection successful ({client.settings.connection_uri})")
        return True
    print(f"✗ On-premises Exchange connection failed: {client.last_error}")
    return False


async def check_graph() -> bool:
    """Query Entra ID groups through MS Graph."""
    try:
        tenant_id, client_id, _ = get_graph_credentials()
    except ValueError as e:
        print(f"✗ MS Graph credentials not configured: {e}")
        return False

    print("Testing MS Graph connection...")
    try:
        await EntraGroupManager().get_groups_by_mail("connection-test@invalid.example")
    except Exception as e:
        print(f"✗ MS Graph query failed: {e}")
        return False

    print("✓ MS Graph connection successful")
    print(f"  Tenant ID: {tenant_id[:8]}...")
    print(f"  Client ID: {client_id[:8]}...")
    return True


async def check_all(skip_onprem: bool = False) -> bool:
    """Run all connection checks."""
    print("Connection Check")
    print("=" * 40)
    print()

    results = {
        "Exchange Online": await check_exchange_online(),
        "MS Graph": await check_graph(),
    }
    if not skip_onprem:
        results["On-premises Exchange"] = await check_onprem_exchange()

    print()
    print("=" * 40)
    print("Summary:")
    for name, success in results.items():
        status = "✓" if success else "✗"
        print(f"  {status} {name}")

    return all(results.values())


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Check connections used by the migration")
    parser.add_argument(
        "--skip-onprem",
        action="store_true",
        help="Don't test the on-premises Exchange connection",
    )

    args = parser.parse_args()
    success = asyncio.run(check_all(skip_onprem=args.skip_onprem))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
