"""HTTP client for the gateway control API.

This module provides:
- GatewayClient: Triggers project/config scans and probes gateway health
- ScanResult: Outcome of a scan request

Scans tell the gateway to reload files changed on disk. Both calls are
best-effort: a gateway that is restarting or not yet up must never fail a
sync.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

API_TOKEN_HEADER = "X-Ignition-API-Token"
SCAN_PROJECTS_PATH = "/data/api/v1/scan/projects"
SCAN_CONFIG_PATH = "/data/api/v1/scan/config"
STATUS_PING_PATH = "/StatusPing"
STATE_RUNNING = "RUNNING"


class GatewayAPIError(Exception):
    """Gateway API call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ScanResult:
    """Outcome of a scan request.

    Attributes:
        projects_status: HTTP status of the project scan (0 if not sent).
        config_status: HTTP status of the config scan (0 if not sent).
        error: First failure, empty on success.
    """

    projects_status: int = 0
    config_status: int = 0
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error

    def __str__(self) -> str:
        # Only failed scans mention "error"; status consumers rely on it
        result = f"projects={self.projects_status} config={self.config_status}"
        if self.error:
            result += f" error={self.error}"
        return result


class GatewayClient:
    """Client for the gateway control API."""

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        timeout: float = 10.0,
    ) -> None:
        """Initialize the gateway client.

        Args:
            base_url: Gateway base URL, e.g. ``http://localhost:8088``.
            api_token: API token, empty when the API is open.
            timeout: Request timeout in seconds.
        """
        headers = {API_TOKEN_HEADER: api_token} if api_token else {}
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> GatewayClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _post_scan(self, path: str) -> int:
        try:
            response = self._client.post(path)
        except httpx.HTTPError as e:
            raise GatewayAPIError(f"POST {path}: {e}") from e
        if response.status_code >= 400:
            raise GatewayAPIError(
                f"POST {path} returned {response.status_code}", response.status_code
            )
        return response.status_code

    def trigger_scan(self) -> ScanResult:
        """Ask the gateway to rescan projects, then configuration.

        Stops at the first failing request. Errors are captured in the
        result, never raised.

        Returns:
            ScanResult with per-step status codes and the first error.
        """
        result = ScanResult()
        try:
            result.projects_status = self._post_scan(SCAN_PROJECTS_PATH)
            result.config_status = self._post_scan(SCAN_CONFIG_PATH)
        except GatewayAPIError as e:
            logger.warning(f"Gateway scan failed: {e}")
            result.error = str(e)
        return result

    def health_check(self) -> None:
        """Check that the gateway reports RUNNING.

        Raises:
            GatewayAPIError: If the gateway is unreachable or not running.
        """
        try:
            response = self._client.get(STATUS_PING_PATH)
        except httpx.HTTPError as e:
            raise GatewayAPIError(f"GET {STATUS_PING_PATH}: {e}") from e

        if response.status_code != 200:
            raise GatewayAPIError(
                f"GET {STATUS_PING_PATH} returned {response.status_code}",
                response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = response.text.strip()
        state = data.get("state", "") if isinstance(data, dict) else str(data)
        if state != STATE_RUNNING:
            raise GatewayAPIError(f"gateway state is {state or 'unknown'}, want {STATE_RUNNING}")
