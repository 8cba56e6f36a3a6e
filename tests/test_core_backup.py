"""Tests for XML group backups."""

import os
import xml.etree.ElementTree as ET
from datetime import datetime

import pytest

from dgmigrate.core.backup import (
    SOURCE_EXCHANGE_ONLINE,
    SOURCE_ON_PREMISES,
    GroupSnapshot,
    find_latest_backup,
    get_backup_dir,
    list_backups,
    read_group_backup,
    snapshot_from_xml,
    snapshot_to_xml,
    write_group_backup,
)
from dgmigrate.core.errors import BackupFormatError


@pytest.fixture
def snapshot(group_factory):
    return GroupSnapshot(
        group=group_factory(),
        members=["alice@contoso.com", "bob@contoso.com"],
        send_as=["CONTOSO\\helpdesk"],
        created=datetime(2026, 3, 1, 9, 30, 15),
    )


class TestGetBackupDir:
    """Tests for get_backup_dir function."""

    def test_creates_directory(self, tmp_path):
        backup_dir = tmp_path / "new_backups"
        assert not backup_dir.exists()

        result = get_backup_dir(backup_dir)

        assert result == backup_dir
        assert backup_dir.exists()

    def test_accepts_string(self, tmp_path):
        result = get_backup_dir(str(tmp_path / "backups"))

        assert result == tmp_path / "backups"


class TestSnapshotXml:
    """Tests for the XML document layout."""

    def test_document_layout(self, snapshot):
        root = snapshot_to_xml(snapshot)

        assert root.tag == "GroupBackup"
        assert root.get("Version") == "1"
        assert root.get("Created") == "2026-03-01T09:30:15"
        assert root.get("Source") == SOURCE_EXCHANGE_ONLINE
        assert [e.get("Key") for e in root.findall("Entry")] == ["GroupInfo", "Members", "SendAs"]

    def test_typed_properties(self, snapshot):
        root = snapshot_to_xml(snapshot)
        props = {p.get("Name"): p for p in root.find("Entry[@Key='GroupInfo']")}

        assert props["Name"].get("Type") == "String"
        assert props["Name"].text == "Sales"
        assert props["IsDirSynced"].get("Type") == "Bool"
        assert props["IsDirSynced"].text == "true"
        assert props["MailTip"].get("Type") == "Null"
        assert props["ManagedBy"].get("Type") == "List"
        assert [i.text for i in props["ManagedBy"]] == ["Alice Smith"]

    def test_parse_document(self, snapshot):
        parsed = snapshot_from_xml(snapshot_to_xml(snapshot))

        assert parsed.group == snapshot.group
        assert parsed.members == snapshot.members
        assert parsed.send_as == snapshot.send_as
        assert parsed.created == snapshot.created

    def test_wrong_root(self):
        with pytest.raises(BackupFormatError, match="Not a group backup"):
            snapshot_from_xml(ET.Element("Objs"))

    def test_missing_entries(self, snapshot):
        root = snapshot_to_xml(snapshot)
        root.remove(root.find("Entry[@Key='SendAs']"))

        with pytest.raises(BackupFormatError, match="missing entries: SendAs"):
            snapshot_from_xml(root)

    def test_group_without_name(self):
        root = ET.Element("GroupBackup")
        ET.SubElement(root, "Entry", Key="GroupInfo")
        ET.SubElement(root, "Entry", Key="Members", Type="List")
        ET.SubElement(root, "Entry", Key="SendAs", Type="List")

        with pytest.raises(BackupFormatError, match="no Name"):
            snapshot_from_xml(root)

    def test_unknown_value_type(self, snapshot):
        root = snapshot_to_xml(snapshot)
        root.find("Entry[@Key='GroupInfo']/Property[@Name='Alias']").set("Type", "Blob")

        with pytest.raises(BackupFormatError, match="Unknown value type"):
            snapshot_from_xml(root)


class TestWriteGroupBackup:
    """Tests for write_group_backup and read_group_backup."""

    def test_file_name(self, snapshot, temp_backup_dir):
        path = write_group_backup(snapshot, temp_backup_dir)

        assert path.parent == temp_backup_dir
        assert path.name == "ExchangeOnline_Sales_20260301_093015.xml"

    def test_file_name_sanitizes_alias(self, snapshot, temp_backup_dir):
        snapshot.group.alias = "Sales/EMEA Team"

        path = write_group_backup(snapshot, temp_backup_dir)

        assert path.name == "ExchangeOnline_Sales_EMEA_Team_20260301_093015.xml"

    def test_read_back(self, snapshot, temp_backup_dir):
        path = write_group_backup(snapshot, temp_backup_dir)

        loaded = read_group_backup(path)

        assert loaded.group.name == "Sales"
        assert loaded.group.is_dir_synced is True
        assert loaded.group.settings["RequireSenderAuthenticationEnabled"] is True
        assert loaded.members == ["alice@contoso.com", "bob@contoso.com"]
        assert loaded.send_as == ["CONTOSO\\helpdesk"]

    def test_file_starts_with_xml_declaration(self, snapshot, temp_backup_dir):
        path = write_group_backup(snapshot, temp_backup_dir)

        assert path.read_text(encoding="utf-8").startswith("<?xml")

    def test_read_missing_file(self, temp_backup_dir):
        with pytest.raises(FileNotFoundError):
            read_group_backup(temp_backup_dir / "missing.xml")

    def test_read_invalid_xml(self, temp_backup_dir):
        path = temp_backup_dir / "broken.xml"
        path.write_text("<GroupBackup><Entry")

        with pytest.raises(BackupFormatError, match="Invalid XML"):
            read_group_backup(path)


class TestListBackups:
    """Tests for list_backups and find_latest_backup."""

    def _touch(self, directory, name, mtime):
        path = directory / name
        path.write_text("<GroupBackup/>")
        os.utime(path, (mtime, mtime))
        return path

    def test_empty_directory(self, temp_backup_dir):
        assert list_backups(temp_backup_dir) == []

    def test_sorted_newest_first(self, temp_backup_dir):
        old = self._touch(temp_backup_dir, "ExchangeOnline_Sales_20260101_000000.xml", 1000)
        new = self._touch(temp_backup_dir, "ExchangeOnline_Sales_20260102_000000.xml", 2000)

        assert list_backups(temp_backup_dir) == [new, old]

    def test_filter_by_alias_does_not_match_longer_alias(self, temp_backup_dir):
        sales = self._touch(temp_backup_dir, "ExchangeOnline_Sales_20260101_000000.xml", 1000)
        self._touch(temp_backup_dir, "ExchangeOnline_Sales_Team_20260102_000000.xml", 2000)

        assert list_backups(temp_backup_dir, alias="Sales") == [sales]

    def test_filter_by_source(self, temp_backup_dir):
        self._touch(temp_backup_dir, "ExchangeOnline_Sales_20260101_000000.xml", 1000)
        onprem = self._touch(temp_backup_dir, "OnPremises_Sales_20260102_000000.xml", 2000)

        assert list_backups(temp_backup_dir, source=SOURCE_ON_PREMISES) == [onprem]

    def test_ignores_other_files(self, temp_backup_dir):
        self._touch(temp_backup_dir, "notes.xml", 1000)
        (temp_backup_dir / "ExchangeOnline_Sales_20260101_000000.json").write_text("{}")

        assert list_backups(temp_backup_dir) == []

    def test_find_latest(self, temp_backup_dir):
        self._touch(temp_backup_dir, "ExchangeOnline_Sales_20260101_000000.xml", 1000)
        latest = self._touch(temp_backup_dir, "ExchangeOnline_Sales_20260102_000000.xml", 2000)
        self._touch(temp_backup_dir, "OnPremises_Sales_20260103_000000.xml", 3000)

        assert find_latest_backup("Sales", temp_backup_dir) == latest

    def test_find_latest_none(self, temp_backup_dir):
        assert find_latest_backup("Sales", temp_backup_dir) is None
