"""Tests for sync triggers."""

from __future__ import annotations

import time
from pathlib import Path

from gatewaysync.agent.watcher import MetadataWatcher, TriggerChannel


class TestTriggerChannel:
    """Tests for TriggerChannel class."""

    def test_notify_then_wait(self) -> None:
        """Should deliver a pending trigger."""
        channel = TriggerChannel()
        assert channel.notify() is True
        assert channel.pending
        assert channel.wait(timeout=0.1) is True
        assert not channel.pending

    def test_coalesces_notifications(self) -> None:
        """Should keep at most one pending trigger."""
        channel = TriggerChannel()
        assert channel.notify() is True
        assert channel.notify() is False
        assert channel.notify() is False

        assert channel.wait(timeout=0.1) is True
        assert channel.wait(timeout=0.05) is False

    def test_wait_times_out(self) -> None:
        """Should return False when nothing is pending."""
        start = time.monotonic()
        assert TriggerChannel().wait(timeout=0.05) is False
        assert time.monotonic() - start >= 0.04


class TestMetadataWatcher:
    """Tests for MetadataWatcher class."""

    def test_file_change_triggers(self, tmp_path: Path) -> None:
        """Should raise one trigger after metadata files change."""
        channel = TriggerChannel()
        with MetadataWatcher(tmp_path, channel, resync_period=0, debounce_s=0.1):
            time.sleep(0.2)
            (tmp_path / "commit").write_text("abc")
            (tmp_path / "ref").write_text("main")

            assert channel.wait(timeout=5.0) is True

    def test_periodic_resync(self, tmp_path: Path) -> None:
        """Should raise triggers every resync period."""
        channel = TriggerChannel()
        with MetadataWatcher(tmp_path, channel, resync_period=0.1):
            assert channel.wait(timeout=2.0) is True
            assert channel.wait(timeout=2.0) is True

    def test_missing_directory_uses_resync_only(self, tmp_path: Path) -> None:
        """Should still start when the metadata directory is missing."""
        channel = TriggerChannel()
        watcher = MetadataWatcher(tmp_path / "absent", channel, resync_period=0.1)

        watcher.start()
        try:
            assert watcher.is_running
            assert channel.wait(timeout=2.0) is True
        finally:
            watcher.stop()

        assert not watcher.is_running

    def test_stop_halts_triggers(self, tmp_path: Path) -> None:
        """Should not raise triggers after stop."""
        channel = TriggerChannel()
        watcher = MetadataWatcher(tmp_path, channel, resync_period=0.1)
        watcher.start()
        watcher.stop()
        channel.wait(timeout=0.01)

        assert channel.wait(timeout=0.3) is False
