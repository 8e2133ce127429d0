"""Sync plan compilation and execution.

Architecture:
    Profile + TemplateContext → build_sync_plan → SyncPlan → SyncEngine → SyncResult

Components:
- **build_sync_plan**: Resolves mapping templates, validates paths, enforces
  required sources
- **TemplateContext / resolve_template**: Strict template substitution
- **SyncEngine**: Stages, templates and promotes files into the live directory
- **ExcludePatterns**: Doublestar glob matching for excludes
"""

from gatewaysync.sync.engine import PROJECTS_DIR, SyncEngine
from gatewaysync.sync.ignore import DEFAULT_EXCLUDE_PATTERNS, ExcludePatterns
from gatewaysync.sync.plan import (
    build_sync_plan,
    default_profile,
    load_profile,
    validate_resolved_path,
)
from gatewaysync.sync.template import (
    TemplateContext,
    build_apply_template,
    resolve_template,
)
from gatewaysync.sync.types import (
    STAGING_DIR_NAME,
    BinaryFileError,
    Mapping,
    PathValidationError,
    PlanError,
    Profile,
    RequiredSourceError,
    ResolvedMapping,
    SyncEngineError,
    SyncError,
    SyncPlan,
    SyncResult,
    TemplateError,
)

__all__ = [
    # Constants
    "DEFAULT_EXCLUDE_PATTERNS",
    "PROJECTS_DIR",
    "STAGING_DIR_NAME",
    # Errors
    "BinaryFileError",
    "PathValidationError",
    "PlanError",
    "RequiredSourceError",
    "SyncEngineError",
    "SyncError",
    "TemplateError",
    # Types
    "Mapping",
    "Profile",
    "ResolvedMapping",
    "SyncPlan",
    "SyncResult",
    "TemplateContext",
    # Functions
    "build_apply_template",
    "build_sync_plan",
    "default_profile",
    "load_profile",
    "resolve_template",
    "validate_resolved_path",
    # Classes
    "ExcludePatterns",
    "SyncEngine",
]
