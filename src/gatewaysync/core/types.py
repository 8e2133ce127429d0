"""Shared types for gatewaysync.

This module defines the status record each agent publishes for its gateway
and the helpers used to render it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    """Sync state of a gateway as reported on the status bus."""

    PENDING = "Pending"
    SYNCING = "Syncing"
    SYNCED = "Synced"
    ERROR = "Error"


def format_duration(seconds: float) -> str:
    """Render a duration rounded to the millisecond.

    Uses the compact ``1h2m3.5s`` notation the status consumers parse
    (``150ms`` below one second, ``0s`` for zero).

    Args:
        seconds: Duration in seconds.

    Returns:
        Human-readable duration string.
    """
    total_ms = max(0, round(seconds * 1000))
    if total_ms == 0:
        return "0s"
    if total_ms < 1000:
        return f"{total_ms}ms"

    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)

    sec_str = str(secs)
    if millis:
        sec_str = f"{secs}.{millis:03d}".rstrip("0")

    if hours:
        return f"{hours}h{minutes}m{sec_str}s"
    if minutes:
        return f"{minutes}m{sec_str}s"
    return f"{sec_str}s"


@dataclass
class GatewayStatus:
    """Observed sync state of one gateway.

    Serialised as one JSON value per gateway name in the shared status map.
    The record is always written wholesale, never merged.

    Attributes:
        sync_status: Current sync state.
        synced_commit: Commit SHA the live directory was synced to.
        synced_ref: Git ref the commit was fetched from.
        last_sync_time: RFC3339 UTC timestamp of the attempt.
        last_sync_duration: Duration of the attempt (see format_duration).
        agent_version: Version of the reporting agent.
        last_scan_result: Summary of the last gateway scan call.
        files_changed: Files added, modified or deleted in the attempt.
        projects_synced: Gateway projects touched by the attempt.
        error_message: Error details, omitted from JSON when empty.
    """

    sync_status: SyncStatus
    synced_commit: str = ""
    synced_ref: str = ""
    last_sync_time: str = ""
    last_sync_duration: str = ""
    agent_version: str = ""
    last_scan_result: str = ""
    files_changed: int = 0
    projects_synced: list[str] = field(default_factory=list)
    error_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to the status bus JSON shape."""
        data: dict[str, Any] = {
            "syncStatus": self.sync_status.value,
            "syncedCommit": self.synced_commit,
            "syncedRef": self.synced_ref,
            "lastSyncTime": self.last_sync_time,
            "lastSyncDuration": self.last_sync_duration,
            "agentVersion": self.agent_version,
            "lastScanResult": self.last_scan_result,
            "filesChanged": self.files_changed,
            "projectsSynced": list(self.projects_synced),
        }
        if self.error_message:
            data["errorMessage"] = self.error_message
        return data

    def to_json(self) -> str:
        """Serialise to compact JSON."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayStatus:
        """Create from a status bus JSON object."""
        return cls(
            sync_status=SyncStatus(data["syncStatus"]),
            synced_commit=data.get("syncedCommit", ""),
            synced_ref=data.get("syncedRef", ""),
            last_sync_time=data.get("lastSyncTime", ""),
            last_sync_duration=data.get("lastSyncDuration", ""),
            agent_version=data.get("agentVersion", ""),
            last_scan_result=data.get("lastScanResult", ""),
            files_changed=int(data.get("filesChanged", 0)),
            projects_synced=list(data.get("projectsSynced") or []),
            error_message=data.get("errorMessage", ""),
        )
