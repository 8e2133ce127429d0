"""Sync agent orchestration.

This module provides:
- Agent: Main loop keeping one gateway in sync with its repository
- CycleState: Immutable record threaded through the main loop
- build_template_context: Template values for one sync cycle
- file_credential: Credential declared by mounted credential files

Lifecycle:
    wait for metadata → resolve auth → initial clone → initial sync →
    ready → watch → (trigger → re-read metadata → fetch → sync) ...

The main loop is the only consumer of triggers, so at most one sync cycle
runs at a time.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from gatewaysync import __version__
from gatewaysync.agent.bus import (
    DirectoryMetadataStore,
    Metadata,
    MetadataError,
    StatusFile,
    StatusStoreError,
)
from gatewaysync.agent.gateway import GatewayAPIError, GatewayClient
from gatewaysync.agent.health import HealthServer
from gatewaysync.agent.metrics import OPERATION_CLONE, OPERATION_FETCH, AgentMetrics
from gatewaysync.agent.watcher import MetadataWatcher, TriggerChannel
from gatewaysync.core.types import GatewayStatus, SyncStatus, format_duration
from gatewaysync.git.auth import (
    BasicAuth,
    DirectorySecretStore,
    GitHubAppCredential,
    NoCredential,
    SSHKeyCredential,
    TokenCredential,
    load_credential,
    parse_ssh_private_key,
    resolve_credential,
)
from gatewaysync.git.client import GitClient
from gatewaysync.git.errors import AuthError, GitError
from gatewaysync.sync.engine import SyncEngine
from gatewaysync.sync.plan import build_sync_plan, default_profile
from gatewaysync.sync.template import TemplateContext
from gatewaysync.sync.types import SyncError

if TYPE_CHECKING:
    from gatewaysync.agent.bus import MetadataStore, StatusStore
    from gatewaysync.agent.gateway import ScanResult
    from gatewaysync.core.config import AgentConfig
    from gatewaysync.git.auth import Credential, GitAuth
    from gatewaysync.git.client import GitResult
    from gatewaysync.sync.types import Profile

logger = logging.getLogger(__name__)

METADATA_POLL_INTERVAL = 3.0
TRIGGER_WAIT_TIMEOUT = 1.0
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


class AgentError(Exception):
    """Fatal agent error; the process should exit."""


class GitSource(Protocol):
    """Working tree maintenance used by the agent."""

    def clone_or_fetch(
        self, url: str, ref: str, local_path: Path, auth: GitAuth | None = None
    ) -> GitResult: ...


class GatewayAPI(Protocol):
    """Gateway control calls used by the agent."""

    def trigger_scan(self) -> ScanResult: ...

    def health_check(self) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class CycleState:
    """What the main loop remembers between cycles.

    Attributes:
        last_synced_commit: Commit of the last completed cycle.
        initial_sync_done: The blocking startup sync has been attempted.
    """

    last_synced_commit: str = ""
    initial_sync_done: bool = False


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_template_context(
    config: AgentConfig,
    metadata: Metadata,
    profile_vars: dict[str, str],
    labels: dict[str, str],
) -> TemplateContext:
    """Assemble the template values for one sync cycle.

    Args:
        config: Agent configuration (gateway, pod and owner identity).
        metadata: Metadata of the commit being synced.
        profile_vars: Variables declared by the profile.
        labels: Pod labels.

    Returns:
        Frozen TemplateContext.
    """
    return TemplateContext(
        gateway_name=config.gateway_name,
        pod_name=config.pod_name,
        namespace=config.cr_namespace,
        ref=metadata.ref,
        commit=metadata.commit,
        cr_name=config.cr_name,
        labels=labels,
        vars=profile_vars,
    )


def file_credential(config: AgentConfig) -> Credential:
    """Get the credential declared by mounted files.

    Priority: SSH key, then token, then GitHub App. A key that does not
    parse is skipped with a warning.
    """
    ssh_key = config.git_ssh_key()
    if ssh_key:
        try:
            parse_ssh_private_key(ssh_key)
        except AuthError as e:
            logger.warning(f"Ignoring mounted SSH key {config.git_ssh_key_file}: {e}")
        else:
            return SSHKeyCredential(ssh_key)

    token = config.git_token()
    if token:
        return TokenCredential(token)

    if config.github_app_id and config.github_installation_id:
        app_key = config.github_app_key()
        if app_key:
            return GitHubAppCredential(
                app_id=config.github_app_id,
                installation_id=config.github_installation_id,
                private_key_pem=app_key,
                api_base_url=config.github_api_url,
            )
    return NoCredential()


class Agent:
    """Keeps one gateway's live directory at the published commit."""

    def __init__(
        self,
        config: AgentConfig,
        metadata_store: MetadataStore,
        status_store: StatusStore,
        git_client: GitSource,
        gateway: GatewayAPI,
        engine: SyncEngine | None = None,
        metrics: AgentMetrics | None = None,
        health: HealthServer | None = None,
        trigger: TriggerChannel | None = None,
        watcher: MetadataWatcher | None = None,
        metadata_poll_interval: float = METADATA_POLL_INTERVAL,
    ) -> None:
        """Initialize the agent.

        Args:
            config: Agent configuration.
            metadata_store: Source of the desired sync target.
            status_store: Destination of status reports.
            git_client: Working tree maintenance.
            gateway: Gateway control API.
            engine: Sync engine (a default SyncEngine when None).
            metrics: Metrics sink (a private registry when None).
            health: Health server to start and mark ready, optional.
            trigger: Channel the main loop consumes.
            watcher: Trigger producer started after the initial sync, optional.
            metadata_poll_interval: Seconds between metadata polls at startup.
        """
        self.config = config
        self._metadata_store = metadata_store
        self._status_store = status_store
        self._git = git_client
        self._gateway = gateway
        self._engine = engine or SyncEngine()
        self.metrics = metrics or AgentMetrics()
        self._health = health
        self.trigger = trigger or TriggerChannel()
        self._watcher = watcher
        self._metadata_poll_interval = metadata_poll_interval

        self._git_url = ""
        self._credential: Credential = NoCredential()
        self._auth: GitAuth | None = None
        self._auth_failed = False

    @classmethod
    def from_config(cls, config: AgentConfig) -> Agent:
        """Wire an agent with its production collaborators."""
        metrics = AgentMetrics()
        trigger = TriggerChannel()
        return cls(
            config=config,
            metadata_store=DirectoryMetadataStore(config.metadata_dir),
            status_store=StatusFile(config.status_file),
            git_client=GitClient(),
            gateway=GatewayClient(config.gateway_url, config.gateway_api_key()),
            metrics=metrics,
            health=HealthServer(config.health_host, config.health_port, metrics),
            trigger=trigger,
            watcher=MetadataWatcher(config.metadata_dir, trigger, config.sync_period),
        )

    # === Lifecycle ===

    def run(self, stop: threading.Event) -> None:
        """Run the agent until stop is set.

        Args:
            stop: Shutdown signal.

        Raises:
            AgentError: If the metadata has no git URL or the initial clone
                fails.
        """
        cfg = self.config
        logger.info(
            f"Starting agent for gateway {cfg.gateway_name} "
            f"(owner {cfg.cr_namespace}/{cfg.cr_name}, repo {cfg.repo_path}, "
            f"data {cfg.data_path}, resync {cfg.sync_period}s)"
        )

        if self._health is not None:
            self._health.start()

        try:
            metadata = self.wait_for_metadata(stop)
            if metadata is None:
                logger.info("Shutting down before metadata was available")
                return

            logger.info(
                f"Metadata loaded: url={metadata.git_url} commit={metadata.commit} ref={metadata.ref}"
            )
            if not metadata.git_url:
                raise AgentError("gitURL not found in metadata")
            self._git_url = metadata.git_url

            try:
                self._setup_auth(metadata)
            except AuthError as e:
                logger.error(f"Resolving git auth failed, cloning without credentials: {e}")

            logger.info(f"Cloning {self._git_url} ({metadata.ref or 'HEAD'})")
            try:
                result = self._fetch(self._git_url, metadata.ref, OPERATION_CLONE)
            except GitError as e:
                raise AgentError(f"initial clone: {e}") from e
            logger.info(f"Clone complete at {result.commit}")

            state = CycleState()
            try:
                state = self.sync_once(
                    state, result.commit, result.ref, initial=True, metadata=metadata
                )
            except SyncError as e:
                logger.error(f"Initial sync had errors (continuing): {e}")
            state = dataclasses.replace(state, initial_sync_done=True)

            if self._health is not None:
                self._health.mark_ready()
            logger.info("Initial sync complete, agent ready")

            if self._watcher is not None:
                self._watcher.start()

            while not stop.is_set():
                if not self.trigger.wait(timeout=TRIGGER_WAIT_TIMEOUT):
                    continue
                if stop.is_set():
                    break
                logger.info("Sync triggered")
                state = self.handle_sync_trigger(state)

            logger.info("Shutting down")
        finally:
            if self._watcher is not None:
                self._watcher.stop()
            if self._health is not None:
                self._health.stop()
            self._gateway.close()

    def wait_for_metadata(self, stop: threading.Event) -> Metadata | None:
        """Poll the metadata store until it publishes a commit.

        Returns:
            The first metadata record with a commit, or None if stop was set.
        """
        while True:
            try:
                metadata = self._metadata_store.read()
                if metadata.commit:
                    return metadata
            except MetadataError as e:
                logger.debug(f"Metadata not available yet, retrying: {e}")

            if stop.wait(self._metadata_poll_interval):
                return None

    # === Sync cycle ===

    def handle_sync_trigger(self, state: CycleState) -> CycleState:
        """React to one trigger: fetch and sync if the commit moved.

        Failures are reported on the status bus and leave the state
        unchanged, so the next trigger retries.

        Args:
            state: State after the previous cycle.

        Returns:
            State after this cycle.
        """
        try:
            metadata = self._metadata_store.read()
        except MetadataError as e:
            logger.error(f"Failed to read metadata: {e}")
            return state

        if metadata.paused:
            logger.info("Sync is paused, skipping")
            return state

        if metadata.commit == state.last_synced_commit:
            logger.debug(f"Commit unchanged, skipping sync: {metadata.commit}")
            return state

        logger.info(
            f"New commit detected: {state.last_synced_commit or '<none>'} -> "
            f"{metadata.commit} ({metadata.ref})"
        )

        try:
            if self._auth_failed:
                self._setup_auth(metadata)
            elif self._auth is not None and self._auth.expires_within(TOKEN_REFRESH_MARGIN):
                self._auth = self._resolve_auth()
        except AuthError as e:
            logger.error(f"Refreshing git auth failed: {e}")
            self.report_error(metadata.commit, metadata.ref, f"git auth: {e}")
            return state

        try:
            result = self._fetch(metadata.git_url or self._git_url, metadata.ref, OPERATION_FETCH)
        except GitError as e:
            logger.error(f"Git fetch failed: {e}")
            self.report_error(metadata.commit, metadata.ref, f"git fetch: {e}")
            return state

        logger.info(f"Git updated to {result.commit}")
        try:
            return self.sync_once(state, result.commit, result.ref, initial=False, metadata=metadata)
        except SyncError as e:
            logger.error(f"Sync had errors: {e}")
            return state

    def sync_once(
        self,
        state: CycleState,
        commit: str,
        ref: str,
        *,
        initial: bool,
        metadata: Metadata,
    ) -> CycleState:
        """Run one sync cycle: plan, apply, scan, report.

        Args:
            state: State before the cycle.
            commit: Commit checked out in the repository.
            ref: Ref the commit was fetched from.
            initial: First cycle after startup; the gateway scans on boot,
                so only a health check is made.
            metadata: Metadata record that triggered the cycle.

        Returns:
            State with last_synced_commit advanced to commit.

        Raises:
            SyncError: If plan compilation or the sync engine failed. An
                Error status has been written by then.
        """
        profile = metadata.profile or default_profile(self.config.source_path)
        self._write_status(
            GatewayStatus(
                sync_status=SyncStatus.SYNCING,
                synced_commit=state.last_synced_commit,
                synced_ref=ref,
                last_sync_time=_utc_now(),
                agent_version=__version__,
            )
        )

        start = time.monotonic()
        cycle_metadata = dataclasses.replace(metadata, commit=commit, ref=ref)
        context = build_template_context(
            self.config, cycle_metadata, dict(profile.vars), self._pod_labels()
        )

        try:
            plan = build_sync_plan(profile, context, self.config.repo_path, self.config.data_path)
        except SyncError as e:
            self._fail_cycle(profile, commit, ref, f"sync plan: {e}", start)
            raise

        try:
            result = self._engine.sync(plan)
        except SyncError as e:
            self._fail_cycle(profile, commit, ref, f"sync engine: {e}", start)
            raise

        logger.info(
            f"Files synced: {result.files_added} added, {result.files_modified} modified, "
            f"{result.files_deleted} deleted, projects {result.projects_synced} "
            f"in {format_duration(result.duration)}"
        )

        scan_result = ""
        if plan.dry_run:
            logger.info("Dry run, live directory untouched, skipping scan")
        elif not initial:
            if result.files_changed > 0:
                scan_result = self._trigger_scan()
        else:
            try:
                self._gateway.health_check()
            except GatewayAPIError as e:
                logger.info(f"Gateway health check failed (expected on initial sync): {e}")
                scan_result = f"health check failed: {e}"

        sync_status = SyncStatus.SYNCED
        error_message = ""
        if "error" in scan_result:
            sync_status = SyncStatus.ERROR
            error_message = scan_result

        self._write_status(
            GatewayStatus(
                sync_status=sync_status,
                synced_commit=commit,
                synced_ref=ref,
                last_sync_time=_utc_now(),
                last_sync_duration=format_duration(result.duration),
                agent_version=__version__,
                last_scan_result=scan_result,
                files_changed=result.files_changed,
                projects_synced=result.projects_synced,
                error_message=error_message,
            )
        )
        self.metrics.record_sync(profile.name, True, result.duration, result.files_changed)
        return dataclasses.replace(state, last_synced_commit=commit)

    def report_error(self, commit: str, ref: str, message: str) -> None:
        """Publish an Error status for a failed attempt."""
        self._write_status(
            GatewayStatus(
                sync_status=SyncStatus.ERROR,
                synced_commit=commit,
                synced_ref=ref,
                last_sync_time=_utc_now(),
                agent_version=__version__,
                error_message=message,
            )
        )

    # === Helpers ===

    def _fail_cycle(self, profile: Profile, commit: str, ref: str, message: str, start: float) -> None:
        logger.error(message)
        self.report_error(commit, ref, message)
        self.metrics.record_sync(profile.name, False, time.monotonic() - start)

    def _trigger_scan(self) -> str:
        logger.info("Triggering gateway scan")
        start = time.monotonic()
        scan = self._gateway.trigger_scan()
        self.metrics.record_scan(scan.ok, time.monotonic() - start)
        if scan.ok:
            logger.info(f"Scan complete: {scan}")
        else:
            logger.warning(f"Scan API warning (non-fatal): {scan.error}")
        return str(scan)

    def _fetch(self, url: str, ref: str, operation: str) -> GitResult:
        start = time.monotonic()
        try:
            result = self._git.clone_or_fetch(url, ref, self.config.repo_path, self._auth)
        except GitError:
            self.metrics.record_fetch(operation, False, time.monotonic() - start)
            raise
        self.metrics.record_fetch(operation, True, time.monotonic() - start)
        return result

    def _setup_auth(self, metadata: Metadata) -> None:
        """Declare and resolve credentials; a failure is retried on the next trigger."""
        self._auth = None
        self._auth_failed = True
        self._credential = self._declared_credential(metadata)
        self._auth = self._resolve_auth()
        self._auth_failed = False

    def _declared_credential(self, metadata: Metadata) -> Credential:
        """Mounted files win; a published auth record is the fallback."""
        credential = file_credential(self.config)
        if isinstance(credential, NoCredential) and metadata.auth and self.config.secrets_dir:
            secrets = DirectorySecretStore(Path(self.config.secrets_dir), self.config.cr_namespace)
            credential = load_credential(metadata.auth, secrets)
        return credential

    def _resolve_auth(self) -> GitAuth | None:
        auth = resolve_credential(self._credential)
        credential = self._credential
        if isinstance(credential, GitHubAppCredential) and isinstance(auth, BasicAuth):
            if auth.expires_at is not None:
                self.metrics.record_token_expiry(
                    credential.app_id, credential.installation_id, auth.expires_at.timestamp()
                )
        logger.info(f"Git auth: {type(credential).__name__}")
        return auth

    def _pod_labels(self) -> dict[str, str]:
        try:
            return self.config.pod_labels()
        except OSError as e:
            logger.warning(f"Could not read pod labels: {e}")
            return {}

    def _write_status(self, status: GatewayStatus) -> None:
        try:
            self._status_store.write(self.config.gateway_name, status)
        except StatusStoreError as e:
            logger.error(f"Failed to write status: {e}")
        else:
            logger.debug(f"Status written for {self.config.gateway_name}: {status.sync_status.value}")
