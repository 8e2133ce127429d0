"""Agent configuration.

This module provides:
- AgentConfig: Runtime settings for one sync agent, read from environment
- read_pod_labels: Parser for downward API label files
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_PREFIX = "GATEWAYSYNC_"

DEFAULT_REPO_PATH = "/repo"
DEFAULT_DATA_PATH = "/usr/local/bin/ignition/data"
DEFAULT_METADATA_DIR = "/etc/gatewaysync/metadata"
DEFAULT_STATUS_FILE = "/var/run/gatewaysync/status.json"
DEFAULT_GATEWAY_URL = "http://localhost:8088"
DEFAULT_SYNC_PERIOD = 30
DEFAULT_HEALTH_PORT = 8082


def _env(name: str, default: str = "") -> str:
    return os.environ.get(ENV_PREFIX + name, default)


def _read_secret_file(path: str) -> bytes:
    """Read a mounted credential file, empty if unset or missing."""
    if not path:
        return b""
    try:
        return Path(path).read_bytes()
    except FileNotFoundError:
        logger.debug(f"Credential file not found: {path}")
        return b""


def read_pod_labels(path: Path) -> dict[str, str]:
    """Parse a downward API labels file.

    Each line has the form ``key="value"``. Malformed lines are skipped.

    Args:
        path: Path to the mounted labels file.

    Returns:
        Label mapping, empty if the file does not exist.
    """
    labels: dict[str, str] = {}
    if not path.exists():
        return labels

    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or "=" not in line:
            continue
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
        labels[key.strip()] = value
    return labels


@dataclass
class AgentConfig:
    """Configuration for one gateway sync agent.

    Attributes:
        gateway_name: Name of the gateway this agent serves (status key).
        pod_name: Name of the pod running the gateway.
        cr_name: Name of the owning sync resource.
        cr_namespace: Namespace of the owning sync resource.
        repo_path: Local clone location.
        data_path: Live gateway configuration directory.
        source_path: Repository sub-path synced when no profile is published.
        metadata_dir: Directory holding the metadata record (one file per key).
        status_file: Shared JSON status map.
        git_ssh_key_file: Mounted SSH private key.
        git_token_file: Mounted git token.
        github_app_id: GitHub App ID (0 when unused).
        github_installation_id: GitHub App installation ID.
        github_app_key_file: Mounted GitHub App private key (PEM).
        github_api_url: GitHub API base URL, empty for api.github.com.
        gateway_url: Base URL of the gateway control API.
        gateway_api_key_file: Mounted gateway API token.
        secrets_dir: Root of mounted secrets referenced by a published auth
            record (``<secrets_dir>/<namespace>/<name>/<key>``).
        pod_labels_file: Downward API labels file.
        sync_period: Seconds between periodic resync triggers.
        health_host: Bind address of the health server.
        health_port: Port of the health server.
    """

    gateway_name: str
    pod_name: str = ""
    cr_name: str = ""
    cr_namespace: str = "default"
    repo_path: Path = field(default_factory=lambda: Path(DEFAULT_REPO_PATH))
    data_path: Path = field(default_factory=lambda: Path(DEFAULT_DATA_PATH))
    source_path: str = "."
    metadata_dir: Path = field(default_factory=lambda: Path(DEFAULT_METADATA_DIR))
    status_file: Path = field(default_factory=lambda: Path(DEFAULT_STATUS_FILE))
    git_ssh_key_file: str = ""
    git_token_file: str = ""
    github_app_id: int = 0
    github_installation_id: int = 0
    github_app_key_file: str = ""
    github_api_url: str = ""
    gateway_url: str = DEFAULT_GATEWAY_URL
    gateway_api_key_file: str = ""
    secrets_dir: str = ""
    pod_labels_file: str = ""
    sync_period: int = DEFAULT_SYNC_PERIOD
    health_host: str = "0.0.0.0"
    health_port: int = DEFAULT_HEALTH_PORT

    def __post_init__(self) -> None:
        """Normalize paths and URLs."""
        self.repo_path = Path(self.repo_path)
        self.data_path = Path(self.data_path)
        self.metadata_dir = Path(self.metadata_dir)
        self.status_file = Path(self.status_file)
        self.gateway_url = self.gateway_url.rstrip("/")

    @classmethod
    def from_env(cls) -> AgentConfig:
        """Build configuration from ``GATEWAYSYNC_*`` environment variables.

        Raises:
            ValueError: If GATEWAYSYNC_GATEWAY_NAME is not set.
        """
        gateway_name = _env("GATEWAY_NAME")
        if not gateway_name:
            raise ValueError(f"{ENV_PREFIX}GATEWAY_NAME must be set")

        return cls(
            gateway_name=gateway_name,
            pod_name=_env("POD_NAME", os.environ.get("HOSTNAME", "")),
            cr_name=_env("CR_NAME"),
            cr_namespace=_env("CR_NAMESPACE", "default"),
            repo_path=Path(_env("REPO_PATH", DEFAULT_REPO_PATH)),
            data_path=Path(_env("DATA_PATH", DEFAULT_DATA_PATH)),
            source_path=_env("SOURCE_PATH", "."),
            metadata_dir=Path(_env("METADATA_DIR", DEFAULT_METADATA_DIR)),
            status_file=Path(_env("STATUS_FILE", DEFAULT_STATUS_FILE)),
            git_ssh_key_file=_env("GIT_SSH_KEY_FILE"),
            git_token_file=_env("GIT_TOKEN_FILE"),
            github_app_id=int(_env("GITHUB_APP_ID", "0")),
            github_installation_id=int(_env("GITHUB_INSTALLATION_ID", "0")),
            github_app_key_file=_env("GITHUB_APP_KEY_FILE"),
            github_api_url=_env("GITHUB_API_URL"),
            gateway_url=_env("GATEWAY_URL", DEFAULT_GATEWAY_URL),
            gateway_api_key_file=_env("GATEWAY_API_KEY_FILE"),
            secrets_dir=_env("SECRETS_DIR"),
            pod_labels_file=_env("POD_LABELS_FILE"),
            sync_period=int(_env("SYNC_PERIOD", str(DEFAULT_SYNC_PERIOD))),
            health_host=_env("HEALTH_HOST", "0.0.0.0"),
            health_port=int(_env("HEALTH_PORT", str(DEFAULT_HEALTH_PORT))),
        )

    def git_ssh_key(self) -> bytes:
        """Get the mounted SSH private key, empty if not configured."""
        return _read_secret_file(self.git_ssh_key_file)

    def git_token(self) -> str:
        """Get the mounted git token, empty if not configured."""
        return _read_secret_file(self.git_token_file).decode("utf-8").strip()

    def github_app_key(self) -> bytes:
        """Get the mounted GitHub App private key, empty if not configured."""
        return _read_secret_file(self.github_app_key_file)

    def gateway_api_key(self) -> str:
        """Get the gateway API token, empty if not configured."""
        return _read_secret_file(self.gateway_api_key_file).decode("utf-8").strip()

    def pod_labels(self) -> dict[str, str]:
        """Get the pod labels exposed to mapping templates."""
        if not self.pod_labels_file:
            return {}
        return read_pod_labels(Path(self.pod_labels_file))
