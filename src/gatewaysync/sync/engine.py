"""Staged sync engine.

This module provides:
- SyncEngine: Executes a SyncPlan against the live gateway directory

A sync runs in three phases:
1. Stage: copy every mapping into a private staging tree, skipping excludes
2. Template: resolve templates inside staged files of template mappings
3. Promote: move changed files into the live directory and remove stale ones

Nothing in the live directory changes until phases 1 and 2 succeeded for the
whole plan. Deletions are scoped to the destination roots of the mappings
that staged content; files outside those roots are never touched.
"""

from __future__ import annotations

import filecmp
import logging
import os
import posixpath
import shutil
import tempfile
import time
from pathlib import Path
from typing import TYPE_CHECKING

from gatewaysync.sync.ignore import ExcludePatterns
from gatewaysync.sync.types import (
    MAPPING_TYPE_FILE,
    STAGING_DIR_NAME,
    SyncEngineError,
    SyncError,
    SyncResult,
)

if TYPE_CHECKING:
    from gatewaysync.sync.types import ResolvedMapping, SyncPlan

logger = logging.getLogger(__name__)

# Gateway projects live under projects/<name>/ in the data directory
PROJECTS_DIR = "projects"


def _join(destination: str, rel_path: str) -> str:
    return posixpath.normpath(posixpath.join(destination, rel_path))


def _is_staging_path(rel_path: str) -> bool:
    return rel_path.split("/", 1)[0] == STAGING_DIR_NAME


class SyncEngine:
    """Executes sync plans: stage, template, then promote into the live directory."""

    def sync(self, plan: SyncPlan) -> SyncResult:
        """Execute a sync plan.

        With ``plan.dry_run`` the plan is staged into a temporary directory
        outside the live directory and the same counts are returned without
        promoting anything.

        Args:
            plan: Compiled sync plan.

        Returns:
            SyncResult with change counts, synced projects and duration.

        Raises:
            TemplateError: If templating a staged file failed.
            SyncEngineError: If staging or promotion failed.
        """
        start = time.monotonic()

        if plan.dry_run:
            with tempfile.TemporaryDirectory(prefix="gatewaysync-dryrun-") as tmp:
                result = self._run(plan, Path(tmp) / STAGING_DIR_NAME)
        else:
            result = self._run(plan, plan.staging_dir)

        result.duration = time.monotonic() - start
        return result

    def _run(self, plan: SyncPlan, staging: Path) -> SyncResult:
        live = plan.live_dir
        excludes = ExcludePatterns(plan.exclude_patterns)

        try:
            self._reset_staging(staging)
            staged, roots = self._stage(plan, staging, excludes)
            self._apply_templates(plan, staging, staged)
            live_files = self._scan_live(live, roots, excludes)
            added, modified = self._classify(live, staging, staged)
            deleted = sorted(rel for rel in live_files if rel not in staged)
        except SyncError:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise SyncEngineError(f"staging failed: {e}") from e

        result = SyncResult(
            files_added=len(added),
            files_modified=len(modified),
            files_deleted=len(deleted),
            projects_synced=self._projects(staged),
        )

        if plan.dry_run:
            logger.info(
                f"Dry run: {len(added)} to add, {len(modified)} to modify, "
                f"{len(deleted)} to delete"
            )
            shutil.rmtree(staging, ignore_errors=True)
            return result

        try:
            self._promote(live, staging, added + modified, deleted, roots)
        except OSError as e:
            raise SyncEngineError(f"promotion failed: {e}") from e
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        return result

    def _reset_staging(self, staging: Path) -> None:
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)

    def _stage(
        self,
        plan: SyncPlan,
        staging: Path,
        excludes: ExcludePatterns,
    ) -> tuple[dict[str, ResolvedMapping], list[str]]:
        """Copy all mappings into the staging tree.

        Returns:
            Map of staged relative path to the mapping that wrote it last,
            and the destination roots of mappings that staged content.
        """
        staged: dict[str, ResolvedMapping] = {}
        roots: list[str] = []

        for mapping in plan.mappings:
            src = mapping.source
            if not src.exists():
                logger.warning(f"Mapping source does not exist, skipping: {src}")
                continue

            if mapping.type == MAPPING_TYPE_FILE:
                if not src.is_file():
                    raise SyncEngineError(f"file mapping source is not a file: {src}")
                if mapping.destination == ".":
                    raise SyncEngineError(f"file mapping needs a file destination: {src}")
                if not excludes.matches(src.name):
                    self._copy(src, staging / mapping.destination)
                    staged[mapping.destination] = mapping
            else:
                if not src.is_dir():
                    raise SyncEngineError(f"dir mapping source is not a directory: {src}")
                for rel in self._walk(src, excludes):
                    dest_rel = _join(mapping.destination, rel)
                    self._copy(src / rel, staging / dest_rel)
                    staged[dest_rel] = mapping

            if mapping.destination not in roots:
                roots.append(mapping.destination)

        logger.debug(f"Staged {len(staged)} files from {len(plan.mappings)} mappings")
        return staged, roots

    def _walk(self, base: Path, excludes: ExcludePatterns, skip_staging: bool = False) -> list[str]:
        """List non-excluded regular files below base as relative posix paths."""
        found: list[str] = []
        # os.walk with followlinks=False does not descend into symlinked directories
        for root_str, dirs, files in os.walk(base):
            root = Path(root_str)
            rel_root = root.relative_to(base)

            dirs[:] = sorted(
                d
                for d in dirs
                if not (root / d).is_symlink()
                and not excludes.matches((rel_root / d).as_posix())
                and not (skip_staging and root == base and d == STAGING_DIR_NAME)
            )

            for filename in sorted(files):
                if (root / filename).is_symlink():
                    continue
                rel = (rel_root / filename).as_posix()
                if not excludes.matches(rel):
                    found.append(rel)
        return found

    def _copy(self, src: Path, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, target)

    def _apply_templates(
        self,
        plan: SyncPlan,
        staging: Path,
        staged: dict[str, ResolvedMapping],
    ) -> None:
        templated = [rel for rel, mapping in staged.items() if mapping.template]
        if not templated:
            return
        if plan.apply_template is None:
            raise SyncEngineError("plan has template mappings but no template callback")

        for rel in templated:
            plan.apply_template(staging / rel)
        logger.debug(f"Applied templates to {len(templated)} staged files")

    def _scan_live(self, live: Path, roots: list[str], excludes: ExcludePatterns) -> set[str]:
        """Collect live files owned by the plan's destination roots."""
        owned: set[str] = set()
        for root in roots:
            live_root = live / root
            if live_root.is_symlink():
                continue
            if live_root.is_file():
                if not excludes.matches(live_root.name):
                    owned.add(root)
            elif live_root.is_dir():
                for rel in self._walk(live_root, excludes, skip_staging=True):
                    rel_to_live = _join(root, rel)
                    if not _is_staging_path(rel_to_live):
                        owned.add(rel_to_live)
        return owned

    def _classify(
        self,
        live: Path,
        staging: Path,
        staged: dict[str, ResolvedMapping],
    ) -> tuple[list[str], list[str]]:
        added: list[str] = []
        modified: list[str] = []
        for rel in sorted(staged):
            live_path = live / rel
            if live_path.is_symlink() or not live_path.exists():
                added.append(rel)
            elif live_path.is_dir() or not filecmp.cmp(staging / rel, live_path, shallow=False):
                modified.append(rel)
        return added, modified

    def _projects(self, staged: dict[str, ResolvedMapping]) -> list[str]:
        projects = {
            parts[1]
            for parts in (rel.split("/") for rel in staged)
            if len(parts) > 2 and parts[0] == PROJECTS_DIR
        }
        return sorted(projects)

    def _promote(
        self,
        live: Path,
        staging: Path,
        changed: list[str],
        deleted: list[str],
        roots: list[str],
    ) -> None:
        """Move staged changes into the live directory.

        Runs to completion once started; the staging tree is on the same
        filesystem so every file replacement is an atomic rename.
        """
        for rel in deleted:
            (live / rel).unlink(missing_ok=True)
        self._prune_empty_parents(live, deleted, roots)

        for rel in changed:
            target = live / rel
            self._prepare_target(live, target)
            os.replace(staging / rel, target)

        logger.info(f"Promoted {len(changed)} changed files, removed {len(deleted)} stale files")

    def _prepare_target(self, live: Path, target: Path) -> None:
        """Clear whatever blocks a file from being placed at target."""
        parent = live
        for part in target.relative_to(live).parts[:-1]:
            parent = parent / part
            if parent.is_symlink() or parent.is_file():
                parent.unlink()
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)

    def _prune_empty_parents(self, live: Path, deleted: list[str], roots: list[str]) -> None:
        """Remove directories emptied by deletions, stopping at destination roots."""
        stop = {live} | {live / root for root in roots}
        for rel in deleted:
            parent = (live / rel).parent
            while parent not in stop and live in parent.parents:
                try:
                    parent.rmdir()
                except OSError:
                    break
                parent = parent.parent
