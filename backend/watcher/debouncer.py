"""
ConfSync Debouncer.

Coalesces bursts of file system events into a single change.
Requires Python 3.11+.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from utils.logger import LoggerMixin


@dataclass
class PendingChange:
    """A pending file change waiting to be processed."""

    path: Path
    change_type: str  # created, modified, deleted
    timestamp: float


class Debouncer(LoggerMixin):
    """
    Debounces rapid file changes.

    Accumulates changes and triggers the callback on a timer thread after
    a delay period with no new changes. One editor save usually produces
    several OS events (truncate, write, close, rename); they collapse into
    one entry per path here.
    """

    def __init__(
        self,
        delay_ms: int = 500,
        callback: Callable[[list[tuple[Path, str]]], Any] | None = None,
    ) -> None:
        """
        Initialize the debouncer.

        Args:
            delay_ms: Delay in milliseconds before processing
            callback: Function to call with accumulated changes
        """
        self._delay = delay_ms / 1000.0
        self._callback = callback
        self._pending: dict[Path, PendingChange] = {}
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()
        self._closed = False

    def debounce(self, path: Path, change_type: str) -> None:
        """
        Add a file change to the pending queue.

        The callback will be triggered after delay_ms milliseconds
        of no new changes. Ignored once the debouncer is closed.

        Args:
            path: Path to the changed file
            change_type: Type of change (created, modified, deleted)
        """
        with self._lock:
            if self._closed:
                return

            # Cancel existing timer
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

            # Last event for a path wins
            self._pending[path] = PendingChange(
                path=path,
                change_type=change_type,
                timestamp=time.time(),
            )

            self._timer = threading.Timer(self._delay, self._process_pending)
            self._timer.daemon = True
            self._timer.start()

    def _process_pending(self) -> None:
        """Process all pending changes."""
        with self._lock:
            if not self._pending or self._closed:
                return

            changes = [
                (change.path, change.change_type)
                for change in self._pending.values()
            ]
            self._pending.clear()
            self._timer = None

        self.log.debug("processing_debounced_changes", count=len(changes))
        self._deliver(changes)

    def _deliver(self, changes: list[tuple[Path, str]]) -> None:
        if self._callback is None:
            return
        try:
            self._callback(changes)
        except Exception as e:
            self.log.error("debounce_callback_failed", error=str(e))

    def flush(self) -> list[tuple[Path, str]]:
        """
        Immediately process all pending changes.

        Returns:
            List of (path, change_type) tuples that were pending
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

            changes = [
                (change.path, change.change_type)
                for change in self._pending.values()
            ]
            self._pending.clear()

        if changes:
            self._deliver(changes)

        return changes

    def close(self) -> int:
        """
        Drop pending changes and refuse new ones.

        Returns:
            Number of changes that were dropped
        """
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            dropped = len(self._pending)
            self._pending.clear()
        return dropped

    @property
    def pending_count(self) -> int:
        """Get number of pending changes."""
        return len(self._pending)

    @property
    def pending_paths(self) -> list[Path]:
        """Get list of paths with pending changes."""
        return list(self._pending.keys())
