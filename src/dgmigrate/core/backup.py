"""XML backup files of distribution group state.

A backup holds three entries: GroupInfo (the group's properties), Members
(member primary SMTP addresses) and SendAs (Send-As trustees). Clone and
Contact write one before they change anything; Convert and Restore read
them back.
"""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from dgmigrate.core.errors import BackupFormatError
from dgmigrate.exchange.models import DistributionGroupInfo

logger = logging.getLogger(__name__)

# Default backup directory relative to project root
DEFAULT_BACKUP_DIR = Path(__file__).parent.parent.parent.parent / "backups"

BACKUP_VERSION = "1"
SOURCE_EXCHANGE_ONLINE = "ExchangeOnline"
SOURCE_ON_PREMISES = "OnPremises"

ENTRY_GROUP_INFO = "GroupInfo"
ENTRY_MEMBERS = "Members"
ENTRY_SEND_AS = "SendAs"


@dataclass
class GroupSnapshot:
    """The state of a group captured in a backup file."""

    group: DistributionGroupInfo
    members: list[str] = field(default_factory=list)
    send_as: list[str] = field(default_factory=list)
    source: str = SOURCE_EXCHANGE_ONLINE
    created: datetime = field(default_factory=datetime.now)


def get_backup_dir(base_dir: Path | str | None = None) -> Path:
    """Get or create the backup directory.

    Args:
        base_dir: Base directory for backups. If None, uses default.

    Returns:
        Path to backup directory
    """
    backup_path = DEFAULT_BACKUP_DIR if base_dir is None else Path(base_dir)
    backup_path.mkdir(parents=True, exist_ok=True)
    return backup_path


def _safe_name(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", value) or "group"


def _write_value(parent: ET.Element, value: Any) -> None:
    """Store a value and its type tag on an element."""
    if value is None:
        parent.set("Type", "Null")
    elif isinstance(value, bool):
        parent.set("Type", "Bool")
        parent.text = "true" if value else "false"
    elif isinstance(value, int):
        parent.set("Type", "Int")
        parent.text = str(value)
    elif isinstance(value, list | tuple):
        parent.set("Type", "List")
        for item in value:
            ET.SubElement(parent, "Item").text = str(item)
    else:
        parent.set("Type", "String")
        parent.text = str(value)


def _read_value(element: ET.Element) -> Any:
    value_type = element.get("Type", "String")
    if value_type == "Null":
        return None
    if value_type == "Bool":
        return (element.text or "").strip().lower() == "true"
    if value_type == "Int":
        try:
            return int(element.text or "0")
        except ValueError as e:
            raise BackupFormatError(f"Invalid Int value: {element.text!r}") from e
    if value_type == "List":
        return [item.text or "" for item in element.findall("Item")]
    if value_type == "String":
        return element.text or ""
    raise BackupFormatError(f"Unknown value type: {value_type}")


def snapshot_to_xml(snapshot: GroupSnapshot) -> ET.Element:
    """Build the XML document for a snapshot."""
    root = ET.Element(
        "GroupBackup",
        Version=BACKUP_VERSION,
        Created=snapshot.created.isoformat(timespec="seconds"),
        Source=snapshot.source,
    )

    info = ET.SubElement(root, "Entry", Key=ENTRY_GROUP_INFO)
    for name, value in snapshot.group.to_properties().items():
        prop = ET.SubElement(info, "Property", Name=name)
        _write_value(prop, value)

    members = ET.SubElement(root, "Entry", Key=ENTRY_MEMBERS)
    _write_value(members, list(snapshot.members))

    send_as = ET.SubElement(root, "Entry", Key=ENTRY_SEND_AS)
    _write_value(send_as, list(snapshot.send_as))

    return root


def snapshot_from_xml(root: ET.Element) -> GroupSnapshot:
    """Parse a backup document.

    Raises:
        BackupFormatError: If the document is not a group backup
    """
    if root.tag != "GroupBackup":
        raise BackupFormatError(f"Not a group backup (root element {root.tag})")

    entries = {entry.get("Key"): entry for entry in root.findall("Entry")}
    missing = [
        key for key in (ENTRY_GROUP_INFO, ENTRY_MEMBERS, ENTRY_SEND_AS) if key not in entries
    ]
    if missing:
        raise BackupFormatError(f"Backup is missing entries: {', '.join(missing)}")

    properties = {
        prop.get("Name"): _read_value(prop)
        for prop in entries[ENTRY_GROUP_INFO].findall("Property")
        if prop.get("Name")
    }
    if not properties.get("Name"):
        raise BackupFormatError("GroupInfo has no Name")

    created_text = root.get("Created")
    try:
        created = datetime.fromisoformat(created_text) if created_text else datetime.now()
    except ValueError as e:
        raise BackupFormatError(f"Invalid Created timestamp: {created_text!r}") from e

    return GroupSnapshot(
        group=DistributionGroupInfo.from_properties(properties),
        members=_read_value(entries[ENTRY_MEMBERS]) or [],
        send_as=_read_value(entries[ENTRY_SEND_AS]) or [],
        source=root.get("Source", SOURCE_EXCHANGE_ONLINE),
        created=created,
    )


def write_group_backup(
    snapshot: GroupSnapshot,
    backup_dir: Path | str | None = None,
) -> Path:
    """Write a group snapshot to an XML backup file.

    Args:
        snapshot: Group state to save
        backup_dir: Directory to save backup. If None, uses default.

    Returns:
        Path to the created backup file
    """
    backup_dir = get_backup_dir(backup_dir)
    timestamp = snapshot.created.strftime("%Y%m%d_%H%M%S")
    filename = f"{snapshot.source}_{_safe_name(snapshot.group.alias)}_{timestamp}.xml"
    filepath = backup_dir / filename

    tree = ET.ElementTree(snapshot_to_xml(snapshot))
    ET.indent(tree)
    tree.write(filepath, encoding="utf-8", xml_declaration=True)

    logger.info(
        f"Backed up {snapshot.group.name} ({len(snapshot.members)} members, "
        f"{len(snapshot.send_as)} Send-As) to {filepath}"
    )
    return filepath


def read_group_backup(path: Path | str) -> GroupSnapshot:
    """Read a group snapshot from an XML backup file.

    Raises:
        FileNotFoundError: If the file does not exist
        BackupFormatError: If the file is not a valid group backup
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Backup file not found: {path}")

    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise BackupFormatError(f"Invalid XML in {path}: {e}") from e

    snapshot = snapshot_from_xml(root)
    logger.info(f"Loaded backup of {snapshot.group.name} from {path}")
    return snapshot


def list_backups(
    backup_dir: Path | str | None = None,
    alias: str | None = None,
    source: str | None = None,
) -> list[Path]:
    """List backup files in the backup directory.

    Args:
        backup_dir: Directory to search. If None, uses default.
        alias: Only include backups of this group alias
        source: Only include backups from this source

    Returns:
        List of backup file paths, sorted by modification time (newest first)
    """
    backup_dir = get_backup_dir(backup_dir)
    source_pattern = re.escape(source) if source else r"[^_]+"
    alias_pattern = re.escape(_safe_name(alias)) if alias else r".+"
    name_pattern = re.compile(rf"^{source_pattern}_{alias_pattern}_\d{{8}}_\d{{6}}\.xml$")

    backups = [p for p in backup_dir.glob("*.xml") if name_pattern.match(p.name)]
    return sorted(backups, key=lambda p: p.stat().st_mtime, reverse=True)


def find_latest_backup(
    alias: str,
    backup_dir: Path | str | None = None,
    source: str = SOURCE_EXCHANGE_ONLINE,
) -> Path | None:
    """Return the newest backup of a group, or None if there is none."""
    backups = list_backups(backup_dir, alias=alias, source=source)
    return backups[0] if backups else None
