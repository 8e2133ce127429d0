"""Tests for the metadata and status bus."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from gatewaysync.agent.bus import (
    DirectoryMetadataStore,
    MetadataError,
    StatusFile,
    StatusStoreError,
)
from gatewaysync.core.types import GatewayStatus, SyncStatus


def write_metadata(path: Path, **values: str) -> None:
    """Write metadata keys as files."""
    path.mkdir(parents=True, exist_ok=True)
    for key, value in values.items():
        (path / key).write_text(value)


class TestDirectoryMetadataStore:
    """Tests for DirectoryMetadataStore class."""

    def test_read_basic(self, tmp_path: Path) -> None:
        """Should read one value per key file."""
        write_metadata(
            tmp_path,
            gitURL="https://github.com/org/repo.git",
            ref="main",
            commit="abc123\n",
        )

        metadata = DirectoryMetadataStore(tmp_path).read()

        assert metadata.git_url == "https://github.com/org/repo.git"
        assert metadata.ref == "main"
        assert metadata.commit == "abc123"
        assert metadata.paused is False
        assert metadata.profile is None
        assert metadata.auth is None

    @pytest.mark.parametrize(("raw", "expected"), [("true", True), ("True", False), ("yes", False), ("", False)])
    def test_paused_only_for_exact_true(self, tmp_path: Path, raw: str, expected: bool) -> None:
        """Should pause only on the exact string "true"."""
        write_metadata(tmp_path, commit="abc", paused=raw)
        assert DirectoryMetadataStore(tmp_path).read().paused is expected

    def test_missing_keys_empty(self, tmp_path: Path) -> None:
        """Should report absent keys as empty values."""
        metadata = DirectoryMetadataStore(tmp_path).read()
        assert metadata.commit == ""
        assert metadata.git_url == ""

    def test_missing_directory(self, tmp_path: Path) -> None:
        """Should raise MetadataError when the directory is absent."""
        with pytest.raises(MetadataError, match="not found"):
            DirectoryMetadataStore(tmp_path / "absent").read()

    def test_profile_parsed(self, tmp_path: Path) -> None:
        """Should parse a published profile."""
        profile = {
            "name": "site",
            "mappings": [{"source": "projects", "destination": "projects"}],
            "vars": {"region": "us-east"},
        }
        write_metadata(tmp_path, commit="abc", profile=json.dumps(profile))

        metadata = DirectoryMetadataStore(tmp_path).read()

        assert metadata.profile is not None
        assert metadata.profile.name == "site"
        assert metadata.profile.vars == {"region": "us-east"}

    def test_invalid_profile(self, tmp_path: Path) -> None:
        """Should raise MetadataError for a malformed profile."""
        write_metadata(tmp_path, commit="abc", profile="{not json")
        with pytest.raises(MetadataError, match="invalid profile"):
            DirectoryMetadataStore(tmp_path).read()

    def test_auth_parsed(self, tmp_path: Path) -> None:
        """Should parse a published auth record."""
        write_metadata(
            tmp_path,
            commit="abc",
            auth=json.dumps({"token": {"secretRef": {"name": "git", "key": "token"}}}),
        )

        metadata = DirectoryMetadataStore(tmp_path).read()

        assert metadata.auth is not None
        assert metadata.auth.token is not None
        assert metadata.auth.token.name == "git"

    def test_invalid_auth(self, tmp_path: Path) -> None:
        """Should raise MetadataError for a malformed auth record."""
        write_metadata(tmp_path, commit="abc", auth='{"token": {}}')
        with pytest.raises(MetadataError, match="invalid auth"):
            DirectoryMetadataStore(tmp_path).read()

    def test_profile_vars_not_object(self, tmp_path: Path) -> None:
        """Should raise MetadataError when profile vars is a list."""
        write_metadata(tmp_path, commit="abc", profile='{"mappings": [], "vars": ["region"]}')
        with pytest.raises(MetadataError, match="invalid profile"):
            DirectoryMetadataStore(tmp_path).read()

    @pytest.mark.parametrize("raw", ["[1, 2]", '"token"', "42"])
    def test_auth_not_object(self, tmp_path: Path, raw: str) -> None:
        """Should raise MetadataError when the auth record is not a JSON object."""
        write_metadata(tmp_path, commit="abc", auth=raw)
        with pytest.raises(MetadataError, match="invalid auth"):
            DirectoryMetadataStore(tmp_path).read()

    def test_undecodable_key_file(self, tmp_path: Path) -> None:
        """Should raise MetadataError when a key file is not UTF-8."""
        write_metadata(tmp_path, commit="abc")
        (tmp_path / "ref").write_bytes(b"\xff\xfe")
        with pytest.raises(MetadataError, match="reading ref"):
            DirectoryMetadataStore(tmp_path).read()


class TestStatusFile:
    """Tests for StatusFile class."""

    def test_write_creates_file(self, tmp_path: Path) -> None:
        """Should create the status map with the gateway entry."""
        status_file = StatusFile(tmp_path / "run" / "status.json")

        status_file.write("gw-1", GatewayStatus(sync_status=SyncStatus.SYNCED, synced_commit="abc"))

        entries = status_file.read_all()
        assert list(entries) == ["gw-1"]
        decoded = json.loads(entries["gw-1"])
        assert decoded["syncStatus"] == "Synced"
        assert decoded["syncedCommit"] == "abc"

    def test_entries_of_other_gateways_kept(self, tmp_path: Path) -> None:
        """Should replace only its own entry."""
        status_file = StatusFile(tmp_path / "status.json")
        status_file.write("gw-1", GatewayStatus(sync_status=SyncStatus.SYNCED))
        status_file.write("gw-2", GatewayStatus(sync_status=SyncStatus.PENDING))

        status_file.write("gw-1", GatewayStatus(sync_status=SyncStatus.ERROR, error_message="boom"))

        entries = status_file.read_all()
        assert json.loads(entries["gw-1"])["errorMessage"] == "boom"
        assert json.loads(entries["gw-2"])["syncStatus"] == "Pending"

    def test_status_written_wholesale(self, tmp_path: Path) -> None:
        """Should not merge fields from the previous entry."""
        status_file = StatusFile(tmp_path / "status.json")
        status_file.write("gw", GatewayStatus(sync_status=SyncStatus.ERROR, error_message="boom"))

        status_file.write("gw", GatewayStatus(sync_status=SyncStatus.SYNCED))

        assert "errorMessage" not in json.loads(status_file.read_all()["gw"])

    def test_no_temp_files_left(self, tmp_path: Path) -> None:
        """Should leave only the status file behind."""
        status_file = StatusFile(tmp_path / "status.json")
        status_file.write("gw", GatewayStatus(sync_status=SyncStatus.SYNCED))

        assert [p.name for p in tmp_path.iterdir()] == ["status.json"]

    def test_corrupt_file_replaced(self, tmp_path: Path) -> None:
        """Should recover from an unreadable status file on write."""
        path = tmp_path / "status.json"
        path.write_text("{broken")
        status_file = StatusFile(path)

        with pytest.raises(StatusStoreError):
            status_file.read_all()

        status_file.write("gw", GatewayStatus(sync_status=SyncStatus.SYNCED))
        assert "gw" in status_file.read_all()

    def test_unwritable_location(self, tmp_path: Path) -> None:
        """Should raise StatusStoreError when the file cannot be written."""
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        status_file = StatusFile(blocker / "status.json")

        with pytest.raises(StatusStoreError):
            status_file.write("gw", GatewayStatus(sync_status=SyncStatus.SYNCED))
