"""Tests for shared status types."""

from __future__ import annotations

import json

import pytest

from gatewaysync.core.types import GatewayStatus, SyncStatus, format_duration


class TestFormatDuration:
    """Tests for format_duration function."""

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [
            (0, "0s"),
            (0.0004, "0s"),
            (0.15, "150ms"),
            (1.5, "1.5s"),
            (2, "2s"),
            (61.25, "1m1.25s"),
            (3600, "1h0m0s"),
            (3723.5, "1h2m3.5s"),
        ],
    )
    def test_format(self, seconds: float, expected: str) -> None:
        """Should render compact durations rounded to the millisecond."""
        assert format_duration(seconds) == expected


class TestGatewayStatus:
    """Tests for GatewayStatus dataclass."""

    def test_to_dict_uses_camel_case(self) -> None:
        """Should serialise with camelCase keys."""
        status = GatewayStatus(
            sync_status=SyncStatus.SYNCED,
            synced_commit="abc123",
            synced_ref="main",
            last_sync_time="2026-01-01T00:00:00Z",
            last_sync_duration="1.5s",
            agent_version="0.1.0",
            last_scan_result="projects=200 config=200",
            files_changed=3,
            projects_synced=["alpha", "beta"],
        )

        data = status.to_dict()

        assert data["syncStatus"] == "Synced"
        assert data["syncedCommit"] == "abc123"
        assert data["syncedRef"] == "main"
        assert data["filesChanged"] == 3
        assert data["projectsSynced"] == ["alpha", "beta"]
        assert "errorMessage" not in data

    def test_error_message_included_when_set(self) -> None:
        """Should include errorMessage only when non-empty."""
        status = GatewayStatus(sync_status=SyncStatus.ERROR, error_message="git fetch: boom")
        assert status.to_dict()["errorMessage"] == "git fetch: boom"

    def test_to_json_round_trip(self) -> None:
        """Should parse back what it serialises."""
        status = GatewayStatus(
            sync_status=SyncStatus.ERROR,
            synced_commit="deadbeef",
            files_changed=1,
            error_message="sync engine: failed",
        )

        restored = GatewayStatus.from_dict(json.loads(status.to_json()))

        assert restored == status

    def test_to_json_is_compact(self) -> None:
        """Should not contain whitespace separators."""
        status = GatewayStatus(sync_status=SyncStatus.PENDING)
        assert ": " not in status.to_json()
        assert ", " not in status.to_json()
