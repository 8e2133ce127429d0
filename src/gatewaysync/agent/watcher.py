"""Sync triggers for the agent main loop.

This module provides:
- TriggerChannel: Single-slot coalescing notification channel
- MetadataWatcher: Raises triggers on metadata changes and periodically

Triggers carry no payload: the main loop always re-reads the metadata, so
any number of notifications raised while a sync is running collapse into
one pending trigger.
"""

from __future__ import annotations

import logging
import queue
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_S = 0.5

_CHANGE_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}
)


class TriggerChannel:
    """Coalescing trigger channel with room for one pending notification."""

    def __init__(self) -> None:
        self._queue: queue.Queue[None] = queue.Queue(maxsize=1)

    def notify(self) -> bool:
        """Raise a trigger.

        Returns:
            False if a trigger was already pending and this one was dropped.
        """
        try:
            self._queue.put_nowait(None)
            return True
        except queue.Full:
            return False

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for and consume a pending trigger.

        Args:
            timeout: Seconds to wait, None to block.

        Returns:
            True if a trigger was consumed, False on timeout.
        """
        try:
            self._queue.get(timeout=timeout)
            return True
        except queue.Empty:
            return False

    @property
    def pending(self) -> bool:
        return not self._queue.empty()


class _MetadataEventHandler(FileSystemEventHandler):
    """Debounces metadata file events into a single trigger."""

    def __init__(self, channel: TriggerChannel, debounce_s: float) -> None:
        super().__init__()
        self._channel = channel
        self._debounce_s = debounce_s
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in _CHANGE_EVENTS:
            return

        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce_s, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        logger.debug("Metadata changed, triggering sync")
        self._channel.notify()

    def stop(self) -> None:
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None


class MetadataWatcher:
    """Raises sync triggers when the metadata changes and every resync period.

    The periodic trigger recovers from missed filesystem events and retries
    cycles that failed transiently.
    """

    def __init__(
        self,
        metadata_dir: Path,
        channel: TriggerChannel,
        resync_period: float,
        debounce_s: float = DEFAULT_DEBOUNCE_S,
    ) -> None:
        """Initialize the watcher.

        Args:
            metadata_dir: Directory holding the metadata record.
            channel: Channel to raise triggers on.
            resync_period: Seconds between periodic triggers (0 disables).
            debounce_s: Quiet time after the last file event before triggering.
        """
        self._metadata_dir = Path(metadata_dir)
        self._channel = channel
        self._resync_period = resync_period
        self._handler = _MetadataEventHandler(channel, debounce_s)
        self._observer: BaseObserver | None = None
        self._resync_thread: threading.Thread | None = None
        self._stopping = threading.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the filesystem observer and the resync timer."""
        if self._running:
            return
        self._stopping.clear()

        if self._metadata_dir.is_dir():
            self._observer = Observer()
            self._observer.schedule(self._handler, str(self._metadata_dir), recursive=True)
            self._observer.start()
        else:
            logger.warning(
                f"Metadata directory {self._metadata_dir} does not exist, "
                "relying on periodic resync only"
            )

        if self._resync_period > 0:
            self._resync_thread = threading.Thread(
                target=self._resync_loop, name="gatewaysync-resync", daemon=True
            )
            self._resync_thread.start()

        self._running = True
        logger.info(
            f"Watching {self._metadata_dir} (resync every {self._resync_period}s)"
        )

    def _resync_loop(self) -> None:
        while not self._stopping.wait(self._resync_period):
            logger.debug("Periodic resync trigger")
            self._channel.notify()

    def stop(self) -> None:
        """Stop watching and cancel pending triggers."""
        if not self._running:
            return
        self._stopping.set()
        self._handler.stop()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
        if self._resync_thread is not None:
            self._resync_thread.join(timeout=5.0)
            self._resync_thread = None
        self._running = False

    def __enter__(self) -> MetadataWatcher:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()
