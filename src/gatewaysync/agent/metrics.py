"""Prometheus metrics for the sync agent.

This module provides:
- AgentMetrics: All agent metrics on a private registry
"""

from __future__ import annotations

import time

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

NAMESPACE = "gatewaysync"
SUBSYSTEM = "agent"

RESULT_SUCCESS = "success"
RESULT_ERROR = "error"

OPERATION_CLONE = "clone"
OPERATION_FETCH = "fetch"

SYNC_BUCKETS = (0.1, 0.5, 1, 2, 5, 10, 30, 60)
FETCH_BUCKETS = (0.5, 1, 2, 5, 10, 30, 60, 120)


class AgentMetrics:
    """Agent metrics registered on a standalone registry."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        ProcessCollector(registry=self.registry)
        PlatformCollector(registry=self.registry)

        common = {"namespace": NAMESPACE, "subsystem": SUBSYSTEM, "registry": self.registry}

        self.sync_duration = Histogram(
            "sync_duration_seconds",
            "Duration of file sync operations in seconds.",
            ["profile"],
            buckets=SYNC_BUCKETS,
            **common,
        )
        self.sync_total = Counter(
            "sync",
            "Total number of sync operations.",
            ["profile", "result"],
            **common,
        )
        self.files_changed = Gauge(
            "files_changed",
            "Number of files changed in the last sync.",
            ["profile"],
            **common,
        )
        self.git_fetch_duration = Histogram(
            "git_fetch_duration_seconds",
            "Duration of git clone/fetch operations in seconds.",
            ["operation"],
            buckets=FETCH_BUCKETS,
            **common,
        )
        self.git_fetch_total = Counter(
            "git_fetch",
            "Total number of git clone/fetch operations.",
            ["operation", "result"],
            **common,
        )
        self.scan_duration = Histogram(
            "scan_duration_seconds",
            "Duration of gateway scan API calls in seconds.",
            buckets=SYNC_BUCKETS,
            **common,
        )
        self.scan_total = Counter(
            "scan",
            "Total number of gateway scan operations.",
            ["result"],
            **common,
        )
        self.designer_blocked = Gauge(
            "designer_sessions_blocked",
            "Whether sync is currently blocked by active designer sessions (1=blocked, 0=not).",
            **common,
        )
        self.last_sync_timestamp = Gauge(
            "last_sync_timestamp_seconds",
            "Unix timestamp of the last successful sync.",
            **common,
        )
        self.last_sync_success = Gauge(
            "last_sync_success",
            "Whether the last sync was successful (1=success, 0=error).",
            **common,
        )
        self.github_app_token_expiry = Gauge(
            "github_app_token_expiry_timestamp_seconds",
            "Unix timestamp when the current GitHub App installation token expires.",
            ["app_id", "installation_id"],
            **common,
        )
        self.designer_blocked.set(0)

    def record_sync(self, profile: str, success: bool, duration: float, files_changed: int = 0) -> None:
        """Record the outcome of one sync cycle."""
        result = RESULT_SUCCESS if success else RESULT_ERROR
        self.sync_total.labels(profile=profile, result=result).inc()
        self.last_sync_success.set(1 if success else 0)
        if success:
            self.sync_duration.labels(profile=profile).observe(duration)
            self.files_changed.labels(profile=profile).set(files_changed)
            self.last_sync_timestamp.set(time.time())

    def record_fetch(self, operation: str, success: bool, duration: float) -> None:
        """Record one git clone or fetch."""
        result = RESULT_SUCCESS if success else RESULT_ERROR
        self.git_fetch_total.labels(operation=operation, result=result).inc()
        self.git_fetch_duration.labels(operation=operation).observe(duration)

    def record_scan(self, success: bool, duration: float) -> None:
        """Record one gateway scan call."""
        self.scan_total.labels(result=RESULT_SUCCESS if success else RESULT_ERROR).inc()
        self.scan_duration.observe(duration)

    def record_token_expiry(self, app_id: int, installation_id: int, expires_at: float) -> None:
        """Publish the expiry of the current GitHub App installation token."""
        self.github_app_token_expiry.labels(
            app_id=str(app_id), installation_id=str(installation_id)
        ).set(expires_at)

    def render(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)
