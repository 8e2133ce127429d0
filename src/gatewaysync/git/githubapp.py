"""GitHub App installation token exchange.

This module provides:
- parse_rsa_private_key: Load a PKCS#1 or PKCS#8 RSA key from PEM
- mint_app_jwt: Sign the short-lived app JWT (RS256)
- exchange_github_app_token: Trade the JWT for an installation access token
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime

import httpx
import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from gatewaysync.git.errors import AuthError, GitHubAppError

logger = logging.getLogger(__name__)

DEFAULT_GITHUB_API_URL = "https://api.github.com"

JWT_BACKDATE_SECONDS = 60  # clock skew tolerance
JWT_LIFETIME_SECONDS = 10 * 60
DEFAULT_TIMEOUT = 30.0

PEM_PKCS1 = "RSA PRIVATE KEY"
PEM_PKCS8 = "PRIVATE KEY"


@dataclass
class GitHubAppToken:
    """Installation access token returned by GitHub.

    Attributes:
        token: Bearer token usable as the git password.
        expires_at: When GitHub stops accepting the token (about one hour).
    """

    token: str
    expires_at: datetime


def _pem_block_type(pem_bytes: bytes) -> str | None:
    for line in pem_bytes.decode("ascii", errors="replace").splitlines():
        line = line.strip()
        if line.startswith("-----BEGIN ") and line.endswith("-----"):
            return line[len("-----BEGIN ") : -len("-----")]
    return None


def parse_rsa_private_key(pem_bytes: bytes) -> rsa.RSAPrivateKey:
    """Parse a PEM-encoded RSA private key.

    Supports both PKCS#1 (``RSA PRIVATE KEY``) and PKCS#8 (``PRIVATE KEY``).

    Args:
        pem_bytes: PEM document.

    Returns:
        The RSA private key.

    Raises:
        AuthError: If no PEM block is found, the block type is unsupported,
            or the key is not RSA.
    """
    block_type = _pem_block_type(pem_bytes)
    if block_type is None:
        raise AuthError("no PEM block found")
    if block_type not in (PEM_PKCS1, PEM_PKCS8):
        raise AuthError(f"unsupported PEM block type: {block_type}")

    try:
        key = serialization.load_pem_private_key(pem_bytes, password=None)
    except (ValueError, TypeError) as e:
        raise AuthError(f"parsing PEM key: {e}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise AuthError("PKCS#8 key is not RSA")
    return key


def mint_app_jwt(private_key: rsa.RSAPrivateKey, app_id: int, now: float | None = None) -> str:
    """Sign the app JWT used to request installation tokens.

    Args:
        private_key: The app's RSA private key.
        app_id: GitHub App ID, used as issuer.
        now: Current Unix time (defaults to time.time()).

    Returns:
        Encoded RS256 JWT valid for ten minutes.
    """
    issued = int(now if now is not None else time.time())
    claims = {
        "iat": issued - JWT_BACKDATE_SECONDS,
        "exp": issued + JWT_LIFETIME_SECONDS,
        "iss": str(app_id),
    }
    return jwt.encode(claims, private_key, algorithm="RS256")


def _parse_expiry(value: str) -> datetime:
    # GitHub returns e.g. 2026-10-17T12:00:00Z
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def exchange_github_app_token(
    pem_bytes: bytes,
    app_id: int,
    installation_id: int,
    api_url: str = "",
    client: httpx.Client | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> GitHubAppToken:
    """Exchange a GitHub App private key for an installation access token.

    Signs an app JWT and POSTs it to
    ``{api_url}/app/installations/{installation_id}/access_tokens``.
    No retry is performed.

    Args:
        pem_bytes: The app's PEM private key.
        app_id: GitHub App ID.
        installation_id: Installation to mint a token for.
        api_url: API base URL (empty for api.github.com).
        client: Optional HTTP client to reuse.
        timeout: Request timeout in seconds.

    Returns:
        The installation token and its expiry.

    Raises:
        AuthError: If the key cannot be parsed or the request fails.
        GitHubAppError: If GitHub answers with anything but 201.
    """
    api_url = (api_url or DEFAULT_GITHUB_API_URL).rstrip("/")
    key = parse_rsa_private_key(pem_bytes)
    app_jwt = mint_app_jwt(key, app_id)

    url = f"{api_url}/app/installations/{installation_id}/access_tokens"
    headers = {
        "Authorization": f"Bearer {app_jwt}",
        "Accept": "application/vnd.github+json",
    }

    try:
        if client is not None:
            response = client.post(url, headers=headers)
        else:
            with httpx.Client(timeout=timeout) as http:
                response = http.post(url, headers=headers)
    except httpx.HTTPError as e:
        raise AuthError(f"exchanging token: {e}") from e

    if response.status_code != httpx.codes.CREATED:
        raise GitHubAppError(response.status_code, response.text)

    try:
        data = response.json()
        result = GitHubAppToken(
            token=data["token"],
            expires_at=_parse_expiry(data["expires_at"]),
        )
    except (ValueError, KeyError, TypeError) as e:
        raise AuthError(f"parsing response: {e}") from e

    logger.info(
        f"Obtained GitHub App installation token for app {app_id} "
        f"installation {installation_id}, expires {result.expires_at.isoformat()}"
    )
    return result
