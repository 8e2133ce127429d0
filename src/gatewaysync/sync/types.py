"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, PlanError, TemplateError, SyncEngineError: Exception classes
- Mapping, Profile: Declared sync configuration
- ResolvedMapping, SyncPlan: Compiled, validated plan handed to the engine
- SyncResult: Change accounting returned by the engine
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

MAPPING_TYPE_DIR = "dir"
MAPPING_TYPE_FILE = "file"
MAPPING_TYPES = (MAPPING_TYPE_DIR, MAPPING_TYPE_FILE)

STAGING_DIR_NAME = ".sync-staging"


class SyncError(Exception):
    """Base exception for sync errors."""


class PlanError(SyncError):
    """Sync plan could not be compiled."""


class PathValidationError(PlanError):
    """Resolved path is absolute or escapes its root."""


class RequiredSourceError(PlanError):
    """A required mapping source does not exist in the repository."""


class TemplateError(SyncError):
    """Template could not be resolved against the context."""


class BinaryFileError(TemplateError):
    """Templating was requested on a binary file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"template=true on binary file is not supported: {path}")


class SyncEngineError(SyncError):
    """Staging or promotion of a sync plan failed."""


@dataclass
class Mapping:
    """One source to destination copy rule.

    Attributes:
        source: Repository-relative source path (may contain templates).
        destination: Live-directory-relative destination (may contain templates).
        type: "dir" or "file"; empty means "dir".
        template: Resolve templates inside the copied files.
        required: Fail plan compilation when the source is missing.
    """

    source: str
    destination: str
    type: str = ""
    template: bool = False
    required: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Mapping:
        """Create from a profile JSON object."""
        return cls(
            source=data["source"],
            destination=data.get("destination", "."),
            type=data.get("type", ""),
            template=bool(data.get("template", False)),
            required=bool(data.get("required", False)),
        )


@dataclass
class Profile:
    """Fully resolved sync configuration for one gateway.

    Defaults are merged by the publisher before the profile reaches the agent.
    """

    mappings: list[Mapping] = field(default_factory=list)
    exclude_patterns: list[str] = field(default_factory=list)
    vars: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False
    name: str = "default"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Profile:
        """Create from a profile JSON object."""
        raw_vars = data.get("vars") or {}
        if not isinstance(raw_vars, dict):
            raise PlanError(f"vars must be a JSON object, got {type(raw_vars).__name__}")
        return cls(
            mappings=[Mapping.from_dict(m) for m in data.get("mappings") or []],
            exclude_patterns=list(data.get("excludePatterns") or []),
            vars={str(k): str(v) for k, v in raw_vars.items()},
            dry_run=bool(data.get("dryRun", False)),
            name=data.get("name") or "default",
        )


# Type alias for the per-file template callback
ApplyTemplateFunc = Callable[[Path], None]


@dataclass
class ResolvedMapping:
    """Mapping with templates resolved and paths validated.

    Attributes:
        source: Absolute source path inside the repository checkout.
        destination: Relative destination inside the live directory.
        type: "dir" or "file".
        template: Resolve templates inside the copied files.
    """

    source: Path
    destination: str
    type: str = MAPPING_TYPE_DIR
    template: bool = False


@dataclass
class SyncPlan:
    """Concrete plan executed by the sync engine."""

    staging_dir: Path
    live_dir: Path
    mappings: list[ResolvedMapping] = field(default_factory=list)
    exclude_patterns: list[str] = field(default_factory=list)
    dry_run: bool = False
    apply_template: ApplyTemplateFunc | None = None


@dataclass
class SyncResult:
    """Result of executing a sync plan."""

    files_added: int = 0
    files_modified: int = 0
    files_deleted: int = 0
    projects_synced: list[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def files_changed(self) -> int:
        """Total number of files added, modified or deleted."""
        return self.files_added + self.files_modified + self.files_deleted
