"""Git credential resolution.

This module provides:
- Credential variants: NoCredential, SSHKeyCredential, TokenCredential,
  GitHubAppCredential
- GitAuth capabilities: BasicAuth, SSHKeyAuth (what the git client consumes)
- resolve_credential: One resolver per credential variant
- GitAuthSpec, SecretStore, DirectorySecretStore: Secret references and
  their lookup against mounted secrets
"""

from __future__ import annotations

import base64
import logging
import os
import shlex
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from cryptography.hazmat.primitives import serialization

from gatewaysync.git.errors import AuthError
from gatewaysync.git.githubapp import exchange_github_app_token

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

TOKEN_USERNAME = "x-access-token"
SSH_USERNAME = "git"

# =============================================================================
# Transport credentials
# =============================================================================


class GitAuth(ABC):
    """Opaque transport credential consumed by the git client."""

    @abstractmethod
    def environment(self) -> AbstractContextManager[dict[str, str]]:
        """Context manager yielding environment variables that make git use this credential."""

    def expires_within(self, margin: timedelta) -> bool:
        """Check if the credential expires within margin."""
        return False


@dataclass(frozen=True)
class BasicAuth(GitAuth):
    """HTTP basic credential.

    Attributes:
        username: Basic auth user (``x-access-token`` for tokens).
        password: Token or password.
        expires_at: Expiry of ephemeral tokens, None when long-lived.
    """

    username: str
    password: str = field(repr=False)
    expires_at: datetime | None = None

    @contextmanager
    def environment(self) -> Iterator[dict[str, str]]:
        """Pass the credential as an extra HTTP header, never in the remote URL."""
        encoded = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        yield {
            "GIT_TERMINAL_PROMPT": "0",
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": f"Authorization: Basic {encoded}",
        }

    def expires_within(self, margin: timedelta) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at - margin <= datetime.now(timezone.utc)


@dataclass(frozen=True)
class SSHKeyAuth(GitAuth):
    """SSH private key credential.

    Attributes:
        private_key: Validated private key document.
        ignore_host_key: Accept any host key; host verification is left to
            the network layer.
    """

    private_key: bytes = field(repr=False)
    ignore_host_key: bool = True

    @contextmanager
    def environment(self) -> Iterator[dict[str, str]]:
        """Write the key to a private temp file for the lifetime of the context."""
        with tempfile.TemporaryDirectory(prefix="gatewaysync-ssh-") as tmp:
            key_path = Path(tmp) / "id_gatewaysync"
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(self.private_key)

            command = ["ssh", "-i", str(key_path), "-o", "IdentitiesOnly=yes"]
            if self.ignore_host_key:
                command += [
                    "-o",
                    "StrictHostKeyChecking=no",
                    "-o",
                    "UserKnownHostsFile=/dev/null",
                ]
            yield {
                "GIT_TERMINAL_PROMPT": "0",
                "GIT_SSH_COMMAND": shlex.join(command),
            }


def parse_ssh_private_key(pem_bytes: bytes) -> bytes:
    """Validate an SSH private key and return it ready to be written to disk.

    Accepts OpenSSH and PEM (PKCS#1, PKCS#8, SEC1) encodings.

    Raises:
        AuthError: If the key cannot be parsed.
    """
    try:
        if b"OPENSSH PRIVATE KEY" in pem_bytes:
            serialization.load_ssh_private_key(pem_bytes, password=None)
        else:
            serialization.load_pem_private_key(pem_bytes, password=None)
    except (ValueError, TypeError) as e:
        raise AuthError(f"parsing SSH private key: {e}") from e

    if not pem_bytes.endswith(b"\n"):
        pem_bytes += b"\n"
    return pem_bytes


# =============================================================================
# Declared credentials
# =============================================================================


@dataclass(frozen=True)
class NoCredential:
    """Anonymous access (public repositories)."""


@dataclass(frozen=True)
class SSHKeyCredential:
    """SSH deploy key."""

    private_key_pem: bytes = field(repr=False)


@dataclass(frozen=True)
class TokenCredential:
    """Static access token."""

    secret: str = field(repr=False)


@dataclass(frozen=True)
class GitHubAppCredential:
    """GitHub App identity exchanged for short-lived installation tokens."""

    app_id: int
    installation_id: int
    private_key_pem: bytes = field(repr=False)
    api_base_url: str = ""


Credential = NoCredential | SSHKeyCredential | TokenCredential | GitHubAppCredential


def _resolve_none(credential: NoCredential, client: httpx.Client | None) -> None:
    return None


def _resolve_ssh_key(credential: SSHKeyCredential, client: httpx.Client | None) -> SSHKeyAuth:
    return SSHKeyAuth(private_key=parse_ssh_private_key(credential.private_key_pem))


def _resolve_token(credential: TokenCredential, client: httpx.Client | None) -> BasicAuth:
    if not credential.secret:
        raise AuthError("token is empty")
    return BasicAuth(username=TOKEN_USERNAME, password=credential.secret)


def _resolve_github_app(
    credential: GitHubAppCredential, client: httpx.Client | None
) -> BasicAuth:
    try:
        result = exchange_github_app_token(
            credential.private_key_pem,
            credential.app_id,
            credential.installation_id,
            credential.api_base_url,
            client=client,
        )
    except AuthError as e:
        raise AuthError(f"exchanging GitHub App token: {e}") from e
    return BasicAuth(
        username=TOKEN_USERNAME,
        password=result.token,
        expires_at=result.expires_at,
    )


_RESOLVERS: dict[type, Callable[[Any, httpx.Client | None], GitAuth | None]] = {
    NoCredential: _resolve_none,
    SSHKeyCredential: _resolve_ssh_key,
    TokenCredential: _resolve_token,
    GitHubAppCredential: _resolve_github_app,
}


def resolve_credential(
    credential: Credential,
    client: httpx.Client | None = None,
) -> GitAuth | None:
    """Turn a declared credential into a transport credential.

    Args:
        credential: Declared credential variant.
        client: Optional HTTP client for the GitHub App exchange.

    Returns:
        The transport credential, or None for anonymous access.

    Raises:
        AuthError: If the credential cannot be resolved.
    """
    resolver = _RESOLVERS.get(type(credential))
    if resolver is None:
        raise AuthError(f"unsupported credential type: {type(credential).__name__}")
    return resolver(credential, client)


# =============================================================================
# Secret references
# =============================================================================


@dataclass(frozen=True)
class SecretKeyRef:
    """Reference to one key of a named secret."""

    name: str
    key: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecretKeyRef:
        """Create from a ``{"name": ..., "key": ...}`` object."""
        return cls(name=data["name"], key=data["key"])


@dataclass(frozen=True)
class GitHubAppRef:
    """GitHub App settings with a reference to its private key."""

    app_id: int
    installation_id: int
    private_key_secret_ref: SecretKeyRef
    api_base_url: str = ""


@dataclass(frozen=True)
class GitAuthSpec:
    """Declared git authentication, first configured method wins.

    Priority: SSH key, then token, then GitHub App.
    """

    ssh_key: SecretKeyRef | None = None
    token: SecretKeyRef | None = None
    github_app: GitHubAppRef | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GitAuthSpec:
        """Create from the published auth JSON object.

        Shape::

            {"sshKey": {"secretRef": {"name": "...", "key": "..."}},
             "token": {"secretRef": {...}},
             "githubApp": {"appID": 1, "installationID": 2,
                           "privateKeySecretRef": {...}, "apiBaseURL": "..."}}
        """
        if not isinstance(data, dict):
            raise AuthError(f"invalid auth spec: expected a JSON object, got {type(data).__name__}")
        try:
            ssh_key = data.get("sshKey")
            token = data.get("token")
            app = data.get("githubApp")
            return cls(
                ssh_key=SecretKeyRef.from_dict(ssh_key["secretRef"]) if ssh_key else None,
                token=SecretKeyRef.from_dict(token["secretRef"]) if token else None,
                github_app=(
                    GitHubAppRef(
                        app_id=int(app["appID"]),
                        installation_id=int(app["installationID"]),
                        private_key_secret_ref=SecretKeyRef.from_dict(app["privateKeySecretRef"]),
                        api_base_url=app.get("apiBaseURL", ""),
                    )
                    if app
                    else None
                ),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise AuthError(f"invalid auth spec: {e}") from e


class SecretStore(Protocol):
    """Read access to namespaced secrets."""

    def get(self, name: str, key: str) -> bytes:
        """Get one key of a secret.

        Raises:
            AuthError: If the secret or key does not exist.
        """
        ...


class DirectorySecretStore:
    """Secrets mounted as ``root/<namespace>/<name>/<key>`` files."""

    def __init__(self, root: Path, namespace: str) -> None:
        self._root = Path(root)
        self._namespace = namespace

    def get(self, name: str, key: str) -> bytes:
        secret_dir = self._root / self._namespace / name
        if not secret_dir.is_dir():
            raise AuthError(f"getting secret {self._namespace}/{name}: not found")
        try:
            return (secret_dir / key).read_bytes()
        except FileNotFoundError:
            raise AuthError(
                f"key {key!r} not found in secret {self._namespace}/{name}"
            ) from None


def load_credential(spec: GitAuthSpec | None, secrets: SecretStore) -> Credential:
    """Read the secrets a spec refers to and build the declared credential.

    Args:
        spec: Declared authentication, None for anonymous access.
        secrets: Store the references are resolved against.

    Returns:
        The declared credential variant.

    Raises:
        AuthError: If a referenced secret or key is missing.
    """
    if spec is None:
        return NoCredential()
    if spec.ssh_key is not None:
        return SSHKeyCredential(secrets.get(spec.ssh_key.name, spec.ssh_key.key))
    if spec.token is not None:
        token = secrets.get(spec.token.name, spec.token.key)
        return TokenCredential(token.decode("utf-8").strip())
    if spec.github_app is not None:
        ref = spec.github_app.private_key_secret_ref
        return GitHubAppCredential(
            app_id=spec.github_app.app_id,
            installation_id=spec.github_app.installation_id,
            private_key_pem=secrets.get(ref.name, ref.key),
            api_base_url=spec.github_app.api_base_url,
        )
    return NoCredential()


def resolve_auth(
    spec: GitAuthSpec | None,
    secrets: SecretStore,
    client: httpx.Client | None = None,
) -> GitAuth | None:
    """Resolve a declared auth spec into a transport credential."""
    return resolve_credential(load_credential(spec, secrets), client)
