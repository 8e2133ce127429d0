"""Sync plan compiler.

Turns a resolved profile plus a template context into a validated SyncPlan.
Compilation is pure apart from checking that required sources exist; every
path is validated before the engine touches the filesystem.
"""

from __future__ import annotations

import json
import logging
import posixpath
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any

from gatewaysync.sync.ignore import DEFAULT_EXCLUDE_PATTERNS
from gatewaysync.sync.template import (
    TemplateContext,
    build_apply_template,
    resolve_template,
)
from gatewaysync.sync.types import (
    MAPPING_TYPE_DIR,
    MAPPING_TYPES,
    STAGING_DIR_NAME,
    Mapping,
    PathValidationError,
    PlanError,
    Profile,
    RequiredSourceError,
    ResolvedMapping,
    SyncPlan,
    TemplateError,
)

logger = logging.getLogger(__name__)


def validate_resolved_path(path: str, label: str = "path") -> None:
    """Reject absolute paths and paths escaping their root.

    Args:
        path: Resolved relative path.
        label: Name used in the error message.

    Raises:
        PathValidationError: If the path is absolute or traverses upwards.
    """
    if PurePosixPath(path).is_absolute() or PureWindowsPath(path).is_absolute():
        raise PathValidationError(f"{label}: absolute path not allowed: {path}")

    cleaned = posixpath.normpath(path.replace("\\", "/"))
    if cleaned == ".." or cleaned.startswith("../") or "/../" in cleaned:
        raise PathValidationError(f"{label}: path traversal not allowed: {path}")


def default_profile(source_path: str = ".") -> Profile:
    """Profile used when none is published: one directory mapping into the live root."""
    return Profile(
        mappings=[Mapping(source=source_path, destination=".", type=MAPPING_TYPE_DIR)],
        exclude_patterns=list(DEFAULT_EXCLUDE_PATTERNS),
    )


def load_profile(data: dict[str, Any] | str) -> Profile:
    """Parse a resolved profile from its JSON form.

    Args:
        data: Decoded JSON object or raw JSON text.

    Returns:
        The parsed profile.

    Raises:
        PlanError: If the document is not a valid profile.
    """
    try:
        if isinstance(data, str):
            data = json.loads(data)
        if not isinstance(data, dict):
            raise PlanError("profile must be a JSON object")
        profile = Profile.from_dict(data)
    except (AttributeError, ValueError, KeyError, TypeError) as e:
        raise PlanError(f"invalid profile: {e}") from e

    for i, mapping in enumerate(profile.mappings):
        if mapping.type and mapping.type not in MAPPING_TYPES:
            raise PlanError(f"mapping[{i}]: unknown type {mapping.type!r}")
    return profile


def build_sync_plan(
    profile: Profile,
    context: TemplateContext,
    repo_path: Path,
    live_dir: Path,
) -> SyncPlan:
    """Compile a profile into a concrete sync plan.

    Mappings are resolved in order. The first failing mapping aborts the
    whole compilation, so no plan is ever partially applied.

    Args:
        profile: Resolved profile (defaults already merged).
        context: Template values for this cycle.
        repo_path: Root of the repository checkout.
        live_dir: Live gateway directory.

    Returns:
        The validated SyncPlan.

    Raises:
        TemplateError: If a source or destination template cannot be resolved.
        PathValidationError: If a resolved path is absolute or traverses upwards.
        RequiredSourceError: If a required source does not exist.
    """
    repo_path = Path(repo_path)
    live_dir = Path(live_dir)

    plan = SyncPlan(
        staging_dir=live_dir / STAGING_DIR_NAME,
        live_dir=live_dir,
        dry_run=profile.dry_run,
        apply_template=build_apply_template(context),
    )

    for i, mapping in enumerate(profile.mappings):
        try:
            src = resolve_template(mapping.source, context)
        except TemplateError as e:
            raise TemplateError(f"mapping[{i}].source: {e}") from e
        try:
            dst = resolve_template(mapping.destination, context)
        except TemplateError as e:
            raise TemplateError(f"mapping[{i}].destination: {e}") from e

        validate_resolved_path(src, f"mapping[{i}].source")
        validate_resolved_path(dst, f"mapping[{i}].destination")
        destination = posixpath.normpath(dst.replace("\\", "/"))
        if destination.split("/")[0] == STAGING_DIR_NAME:
            raise PathValidationError(
                f"mapping[{i}].destination: reserved staging path not allowed: {dst}"
            )

        abs_src = repo_path / src
        if mapping.required and not abs_src.exists():
            raise RequiredSourceError(f"mapping[{i}]: required source does not exist: {src}")

        plan.mappings.append(
            ResolvedMapping(
                source=abs_src,
                destination=destination,
                type=mapping.type or MAPPING_TYPE_DIR,
                template=mapping.template,
            )
        )

    plan.exclude_patterns = list(profile.exclude_patterns)
    logger.debug(f"Compiled sync plan with {len(plan.mappings)} mappings")
    return plan
