"""Metadata and status exchange with the controller.

This module provides:
- Metadata: Desired sync target published for the agent
- MetadataStore / StatusStore: Protocols the agent reads and writes through
- DirectoryMetadataStore: Metadata mounted as one file per key
- StatusFile: Shared JSON status map keyed by gateway name

The metadata directory follows the ConfigMap volume layout: every key is a
file whose content is the value. The controller owns it; the agent only
reads. The status file is shared by all agents of a deployment, so each
agent replaces only its own entry.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from gatewaysync.git.auth import GitAuthSpec
from gatewaysync.git.errors import AuthError
from gatewaysync.sync.plan import load_profile
from gatewaysync.sync.types import PlanError

if TYPE_CHECKING:
    from gatewaysync.core.types import GatewayStatus
    from gatewaysync.sync.types import Profile

logger = logging.getLogger(__name__)

KEY_GIT_URL = "gitURL"
KEY_REF = "ref"
KEY_COMMIT = "commit"
KEY_PAUSED = "paused"
KEY_PROFILE = "profile"
KEY_AUTH = "auth"


class MetadataError(Exception):
    """Metadata record could not be read or parsed."""


class StatusStoreError(Exception):
    """Status record could not be written."""


@dataclass
class Metadata:
    """Desired state published for one gateway.

    Attributes:
        git_url: Repository URL.
        ref: Ref to fetch.
        commit: Commit the controller resolved the ref to.
        paused: Sync is suspended.
        profile: Resolved sync profile, None to sync the configured source path.
        auth: Secret-referenced git auth, None to use mounted credential files.
    """

    git_url: str = ""
    ref: str = ""
    commit: str = ""
    paused: bool = False
    profile: Profile | None = None
    auth: GitAuthSpec | None = None


class MetadataStore(Protocol):
    """Read side of the metadata bus."""

    def read(self) -> Metadata:
        """Read the current metadata record.

        Raises:
            MetadataError: If the record is unavailable or malformed.
        """
        ...


class StatusStore(Protocol):
    """Write side of the status bus."""

    def write(self, gateway_name: str, status: GatewayStatus) -> None:
        """Replace the status entry of one gateway.

        Raises:
            StatusStoreError: If the write failed.
        """
        ...


class DirectoryMetadataStore:
    """Metadata record mounted as a directory of key files."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _value(self, key: str) -> str:
        try:
            return (self._path / key).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return ""
        except (OSError, UnicodeDecodeError) as e:
            raise MetadataError(f"reading {key}: {e}") from e

    def read(self) -> Metadata:
        if not self._path.is_dir():
            raise MetadataError(f"metadata directory not found: {self._path}")

        metadata = Metadata(
            git_url=self._value(KEY_GIT_URL),
            ref=self._value(KEY_REF),
            commit=self._value(KEY_COMMIT),
            # Only the exact string "true" pauses
            paused=self._value(KEY_PAUSED) == "true",
        )

        raw_profile = self._value(KEY_PROFILE)
        if raw_profile:
            try:
                metadata.profile = load_profile(raw_profile)
            except PlanError as e:
                raise MetadataError(f"invalid profile: {e}") from e

        raw_auth = self._value(KEY_AUTH)
        if raw_auth:
            try:
                metadata.auth = GitAuthSpec.from_dict(json.loads(raw_auth))
            except (ValueError, AuthError) as e:
                raise MetadataError(f"invalid auth: {e}") from e

        return metadata


class StatusFile:
    """Shared status map stored as one JSON object.

    Each value is the compact JSON encoding of one gateway's status, so
    consumers can decode entries independently.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def read_all(self) -> dict[str, str]:
        """Read the whole status map, empty if the file does not exist."""
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            raise StatusStoreError(f"reading {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise StatusStoreError(f"status file is not a JSON object: {self._path}")
        return data

    def write(self, gateway_name: str, status: GatewayStatus) -> None:
        with self._lock:
            try:
                entries = self.read_all()
            except StatusStoreError as e:
                logger.warning(f"Discarding unreadable status file: {e}")
                entries = {}
            entries[gateway_name] = status.to_json()
            self._write_atomic(entries)

    def _write_atomic(self, entries: dict[str, str]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(entries, f, indent=2, sort_keys=True)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StatusStoreError(f"writing {self._path}: {e}") from e
