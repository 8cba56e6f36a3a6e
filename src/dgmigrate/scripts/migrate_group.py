"""CLI script to migrate an on-premises synced distribution group to the cloud.

Run the modes in order for each group:

1. --clone    Back up the synced group and create a hidden "Cloud-" copy
2. --convert  Exclude the group from sync and give its identity to the copy
3. --contact  Replace the on-premises group with a routing mail contact

--restore recreates a cloud group from a backup file if something goes wrong.

Prerequisites:
1. PowerShell 7+ with ExchangeOnlineManagement module
2. Azure AD App with Exchange.ManageAsApp permission (certificate auth)
3. Graph app credentials with Group.Read.All (convert)
4. Remote PowerShell access to on-premises Exchange (convert, contact)
"""

import argparse
import asyncio
import logging
import sys

from dgmigrate.core.errors import MigrationError
from dgmigrate.migration import MigrationRunner, Mode, ModeResult

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

# Silence verbose HTTP request logging
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("azure.identity").setLevel(logging.WARNING)
logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)


def print_result(result: ModeResult) -> None:
    """Print a run summary in a readable format."""
    logger.info("")
    logger.info("-" * 50)
    logger.info(f"Summary ({result.mode.value}):")
    logger.info(f"  Group: {result.group}")
    if result.target:
        logger.info(f"  Result: {result.target}")
    if result.backup_path:
        logger.info(f"  Backup: {result.backup_path}")
    logger.info(f"  Steps completed: {len(result.steps)}")
    if result.warnings:
        logger.info(f"  Warnings: {len(result.warnings)}")
        for warning in result.warnings:
            logger.warning(f"    {warning}")


async def run_migration(
    mode: Mode,
    identity: str | None = None,
    backup_file: str | None = None,
    backup_dir: str | None = None,
    prefix: str | None = None,
    skip_sync_cycle: bool = False,
) -> int:
    """Run one migration mode.

    Args:
        mode: Which mode to run
        identity: Group name, alias or address
        backup_file: Backup file for convert/restore
        backup_dir: Directory for backup files
        prefix: Clone prefix override
        skip_sync_cycle: Don't trigger a delta sync in convert

    Returns:
        Exit code
    """
    logger.info("=" * 50)
    logger.info(f"Distribution Group Migration: {mode.value}")
    logger.info("=" * 50)

    try:
        runner = MigrationRunner(
            backup_dir=backup_dir,
            prefix=prefix,
            skip_sync_cycle=skip_sync_cycle,
        )
        result = await runner.run(mode, identity=identity, backup_file=backup_file)
    except (MigrationError, ValueError, FileNotFoundError) as e:
        logger.error(f"{mode.value} failed: {e}")
        return 1

    print_result(result)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Migrate on-premises synced distribution groups to cloud-only groups",
    )
    modes = parser.add_mutually_exclusive_group(required=True)
    modes.add_argument(
        "--clone",
        dest="mode",
        action="store_const",
        const=Mode.CLONE,
        help="Back up the synced group and create a hidden prefixed cloud copy",
    )
    modes.add_argument(
        "--convert",
        dest="mode",
        action="store_const",
        const=Mode.CONVERT,
        help="Exclude the group from sync and rename the cloud copy to the original",
    )
    modes.add_argument(
        "--contact",
        dest="mode",
        action="store_const",
        const=Mode.CONTACT,
        help="Mail-disable the on-premises group and create a routing mail contact",
    )
    modes.add_argument(
        "--restore",
        dest="mode",
        action="store_const",
        const=Mode.RESTORE,
        help="Recreate a cloud group from a backup file",
    )
    parser.add_argument(
        "--group",
        help="Group name, alias or primary SMTP address",
    )
    parser.add_argument(
        "--backup-file",
        help="Backup file to use (convert, restore). Defaults to the latest for the group",
    )
    parser.add_argument(
        "--backup-dir",
        help="Directory for backup files (default from config/migration.json)",
    )
    parser.add_argument(
        "--prefix",
        help="Prefix for clone names (default from config/migration.json)",
    )
    parser.add_argument(
        "--skip-sync-cycle",
        action="store_true",
        help="Don't start a delta sync on the Entra Connect server during convert",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main():
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if args.mode is Mode.RESTORE:
        if not args.group and not args.backup_file:
            parser.error("--restore requires --backup-file or --group")
    elif not args.group:
        parser.error(f"--{args.mode.value} requires --group")

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    exit_code = asyncio.run(
        run_migration(
            mode=args.mode,
            identity=args.group,
            backup_file=args.backup_file,
            backup_dir=args.backup_dir,
            prefix=args.prefix,
            skip_sync_cycle=args.skip_sync_cycle,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
