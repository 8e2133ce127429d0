"""Tests for agent metrics."""

from __future__ import annotations

import pytest

from gatewaysync.agent.metrics import OPERATION_FETCH, AgentMetrics


@pytest.fixture
def metrics() -> AgentMetrics:
    """Create metrics on a fresh registry."""
    return AgentMetrics()


class TestAgentMetrics:
    """Tests for AgentMetrics class."""

    def test_record_sync_success(self, metrics: AgentMetrics) -> None:
        """Should count the sync and publish its outcome."""
        metrics.record_sync("site", True, 1.5, files_changed=4)

        registry = metrics.registry
        assert registry.get_sample_value(
            "gatewaysync_agent_sync_total", {"profile": "site", "result": "success"}
        ) == 1.0
        assert registry.get_sample_value("gatewaysync_agent_files_changed", {"profile": "site"}) == 4.0
        assert registry.get_sample_value("gatewaysync_agent_last_sync_success") == 1.0
        assert registry.get_sample_value(
            "gatewaysync_agent_sync_duration_seconds_count", {"profile": "site"}
        ) == 1.0
        assert registry.get_sample_value("gatewaysync_agent_last_sync_timestamp_seconds") > 0

    def test_record_sync_failure(self, metrics: AgentMetrics) -> None:
        """Should count failures without touching the success timestamp."""
        metrics.record_sync("site", False, 0.1)

        registry = metrics.registry
        assert registry.get_sample_value(
            "gatewaysync_agent_sync_total", {"profile": "site", "result": "error"}
        ) == 1.0
        assert registry.get_sample_value("gatewaysync_agent_last_sync_success") == 0.0
        assert registry.get_sample_value("gatewaysync_agent_last_sync_timestamp_seconds") == 0.0

    def test_record_fetch_and_scan(self, metrics: AgentMetrics) -> None:
        """Should label fetches by operation and scans by result."""
        metrics.record_fetch(OPERATION_FETCH, False, 2.0)
        metrics.record_scan(True, 0.2)

        registry = metrics.registry
        assert registry.get_sample_value(
            "gatewaysync_agent_git_fetch_total", {"operation": "fetch", "result": "error"}
        ) == 1.0
        assert registry.get_sample_value("gatewaysync_agent_scan_total", {"result": "success"}) == 1.0

    def test_token_expiry(self, metrics: AgentMetrics) -> None:
        """Should publish the expiry per app and installation."""
        metrics.record_token_expiry(12345, 67890, 1_800_000_000.0)

        assert metrics.registry.get_sample_value(
            "gatewaysync_agent_github_app_token_expiry_timestamp_seconds",
            {"app_id": "12345", "installation_id": "67890"},
        ) == 1_800_000_000.0

    def test_render(self, metrics: AgentMetrics) -> None:
        """Should render the text exposition format."""
        metrics.record_sync("default", True, 0.5)

        text = metrics.render().decode()

        assert "gatewaysync_agent_sync_total" in text
        assert "gatewaysync_agent_designer_sessions_blocked 0.0" in text

    def test_registries_independent(self) -> None:
        """Should not share samples between instances."""
        first = AgentMetrics()
        second = AgentMetrics()
        first.record_scan(True, 0.1)

        assert second.registry.get_sample_value("gatewaysync_agent_scan_total", {"result": "success"}) is None
