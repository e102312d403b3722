"""
ConfSync File Watcher.

Watches individual configuration files using watchdog.
Requires Python 3.11+.
"""

import asyncio
import inspect
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from utils.exceptions import WatchSetupFailure
from utils.logger import LoggerMixin
from watcher.debouncer import Debouncer


ChangeCallback = Callable[[], Any]


def _normalize(path: Path | str) -> Path:
    """Absolute path with the parent directory resolved."""
    path = Path(path)
    return Path(os.path.realpath(path.parent)) / path.name


def _event_path(path: str | bytes) -> Path:
    if isinstance(path, bytes):
        path = os.fsdecode(path)
    return Path(path)


@dataclass(frozen=True)
class WatchedFile:
    """A file registered for change notifications."""

    path: Path
    on_change: ChangeCallback


class WatchedFileHandler(FileSystemEventHandler, LoggerMixin):
    """
    Handles file system events for a fixed set of file paths.

    Events for files nobody registered are dropped; everything else goes to
    the debouncer. Deletion of a scheduled directory itself is reported to
    on_directory_lost.
    """

    def __init__(
        self,
        debouncer: Debouncer,
        watched_paths: set[Path],
        scheduled_dirs: dict[Path, ObservedWatch],
        on_directory_lost: Callable[[Path], None],
    ) -> None:
        """
        Initialize the file handler.

        Args:
            debouncer: Debouncer to accumulate changes
            watched_paths: Normalized paths to report; shared with the watcher
            scheduled_dirs: Directories with a live watch; shared with the watcher
            on_directory_lost: Called when a scheduled directory disappears
        """
        super().__init__()
        self._debouncer = debouncer
        self._watched_paths = watched_paths
        self._scheduled_dirs = scheduled_dirs
        self._on_directory_lost = on_directory_lost

    def _report(self, path: Path, change_type: str) -> None:
        if path not in self._watched_paths:
            return
        self.log.debug("watched_file_event", path=str(path), change_type=change_type)
        self._debouncer.debounce(path, change_type)

    def on_created(self, event: FileCreatedEvent | DirCreatedEvent) -> None:
        """Handle file creation."""
        if isinstance(event, DirCreatedEvent):
            return
        self._report(_event_path(event.src_path), "created")

    def on_modified(self, event: FileModifiedEvent | DirModifiedEvent) -> None:
        """Handle file modification."""
        if isinstance(event, DirModifiedEvent):
            return
        self._report(_event_path(event.src_path), "modified")

    def on_deleted(self, event: FileDeletedEvent | DirDeletedEvent) -> None:
        """Handle deletion of a watched file or of a watched directory."""
        path = _event_path(event.src_path)
        # inotify reports the watched directory's own removal without the
        # directory flag, so match on the path
        if path in self._scheduled_dirs:
            self._on_directory_lost(path)
            return
        if isinstance(event, DirDeletedEvent):
            return
        self._report(path, "deleted")

    def on_moved(self, event: FileMovedEvent | DirMovedEvent) -> None:
        """Handle rename; atomic saves replace the file this way."""
        if isinstance(event, DirMovedEvent):
            return
        self._report(_event_path(event.src_path), "deleted")
        self._report(_event_path(event.dest_path), "modified")


class FileWatcher(LoggerMixin):
    """
    Watches registered files for changes.

    The containing directory of every registered file is scheduled with a
    watchdog observer, which blocks on OS notifications in its own thread.
    Matching events are debounced and the registered callbacks run on the
    debouncer's timer thread. Coroutine callbacks are submitted to the
    event loop set with set_event_loop().

    When a watched directory is removed the OS watch ends with it. The
    directory is then checked every rewatch_interval seconds and scheduled
    again once it exists; registered files found there are reported as
    modified, since edits made in between produced no events.
    """

    def __init__(
        self,
        debounce_delay_ms: int = 500,
        join_timeout: float = 5.0,
        rewatch_interval: float = 1.0,
    ) -> None:
        """
        Initialize the file watcher.

        Args:
            debounce_delay_ms: Debounce delay in milliseconds
            join_timeout: Seconds to wait for the observer thread on stop
            rewatch_interval: Seconds between checks for a removed directory
        """
        self._join_timeout = join_timeout
        self._rewatch_interval = rewatch_interval
        self._watched: dict[Path, WatchedFile] = {}
        self._watched_paths: set[Path] = set()
        self._scheduled: dict[Path, ObservedWatch] = {}
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

        # Taken on the observer thread; never held while calling the observer
        self._lost_lock = threading.Lock()
        self._lost_dirs: set[Path] = set()
        self._rewatch_timer: threading.Timer | None = None

        self._debouncer = Debouncer(
            delay_ms=debounce_delay_ms,
            callback=self._dispatch,
        )
        self._handler = WatchedFileHandler(
            debouncer=self._debouncer,
            watched_paths=self._watched_paths,
            scheduled_dirs=self._scheduled,
            on_directory_lost=self._directory_lost,
        )

        self._observer: Observer | None = None
        self._running = False
        self._stopped = False

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the event loop for async callbacks."""
        self._loop = loop

    def watch(self, path: Path | str, callback: ChangeCallback) -> WatchedFile:
        """
        Register a file for change notifications.

        The file itself may not exist yet; its directory must.

        Raises:
            WatchSetupFailure: If the directory cannot be watched or the
                watcher was already stopped
        """
        if self._stopped:
            raise WatchSetupFailure("watcher already stopped", path)

        normalized = _normalize(path)
        if not normalized.parent.is_dir():
            raise WatchSetupFailure("directory does not exist", normalized.parent)

        watched = WatchedFile(path=normalized, on_change=callback)
        with self._lock:
            self._watched[normalized] = watched
            self._watched_paths.add(normalized)
            if self._running:
                self._schedule(normalized.parent)

        self.log.info("file_registered", path=str(normalized))
        return watched

    def _schedule(self, directory: Path) -> None:
        if directory in self._scheduled or self._observer is None:
            return
        try:
            watch = self._observer.schedule(self._handler, str(directory), recursive=False)
        except OSError as e:
            raise WatchSetupFailure("cannot watch directory", directory, cause=e) from e
        self._scheduled[directory] = watch

    def start(self) -> None:
        """
        Start watching all registered files.

        Raises:
            WatchSetupFailure: If the OS watch cannot be established
        """
        if self._running:
            return
        if self._stopped:
            raise WatchSetupFailure("watcher already stopped")

        with self._lock:
            self._observer = Observer()
            try:
                for directory in {p.parent for p in self._watched}:
                    self._schedule(directory)
                self._observer.start()
            except WatchSetupFailure:
                self._observer = None
                self._scheduled.clear()
                raise
            except OSError as e:
                self._observer = None
                self._scheduled.clear()
                raise WatchSetupFailure("cannot start observer", cause=e) from e
            self._running = True

        self.log.info(
            "file_watcher_started",
            files=[str(p) for p in self._watched],
            directories=[str(d) for d in self._scheduled],
        )

    def stop(self) -> None:
        """
        Stop watching permanently.

        Pending debounced changes are dropped. The observer thread is
        stopped and joined within the configured timeout.
        """
        with self._lock:
            if self._stopped:
                return
            self._stopped = True

        with self._lost_lock:
            if self._rewatch_timer is not None:
                self._rewatch_timer.cancel()
                self._rewatch_timer = None

        dropped = self._debouncer.close()

        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=self._join_timeout)
            if self._observer.is_alive():
                self.log.warning("observer_join_timeout", timeout=self._join_timeout)
            self._observer = None

        self._running = False
        self.log.info("file_watcher_stopped", dropped_changes=dropped)

    # Directory recovery

    def _directory_lost(self, directory: Path) -> None:
        """Runs on the observer thread when a scheduled directory is removed."""
        with self._lost_lock:
            if self._stopped or directory in self._lost_dirs:
                return
            self._lost_dirs.add(directory)
        self.log.warning(
            "watched_directory_lost",
            directory=str(directory),
            retry_seconds=self._rewatch_interval,
        )
        self._schedule_rewatch()

    def _schedule_rewatch(self) -> None:
        with self._lost_lock:
            if self._stopped or self._rewatch_timer is not None:
                return
            self._rewatch_timer = threading.Timer(self._rewatch_interval, self._rewatch)
            self._rewatch_timer.daemon = True
            self._rewatch_timer.start()

    def _rewatch(self) -> None:
        """Re-schedule lost directories that exist again."""
        with self._lost_lock:
            self._rewatch_timer = None
            candidates = [d for d in self._lost_dirs if d.is_dir()]

        restored: list[Path] = []
        with self._lock:
            if self._stopped or self._observer is None:
                return
            for directory in candidates:
                stale = self._scheduled.pop(directory, None)
                if stale is not None:
                    try:
                        self._observer.unschedule(stale)
                    except KeyError:
                        pass
                try:
                    self._schedule(directory)
                except WatchSetupFailure as e:
                    self.log.warning("rewatch_failed", directory=str(directory), error=str(e))
                    continue
                restored.append(directory)

        with self._lost_lock:
            self._lost_dirs.difference_update(restored)
            still_lost = bool(self._lost_dirs)

        for directory in restored:
            self.log.info("watched_directory_restored", directory=str(directory))
            for path in list(self._watched):
                if path.parent == directory and path.exists():
                    self._debouncer.debounce(path, "modified")

        if still_lost:
            self._schedule_rewatch()

    def _dispatch(self, changes: list[tuple[Path, str]]) -> None:
        """Invoke each affected file's callback once for a debounced batch."""
        for path, change_type in changes:
            watched = self._watched.get(path)
            if watched is None or self._stopped:
                continue
            self.log.debug("file_changed", path=str(path), change_type=change_type)
            try:
                self._invoke(watched.on_change)
            except Exception as e:
                self.log.error("change_callback_failed", path=str(path), error=str(e))

    def _invoke(self, callback: ChangeCallback) -> None:
        if not inspect.iscoroutinefunction(callback):
            callback()
            return
        if self._loop is not None:
            if self._loop.is_closed():
                self.log.warning("event_loop_closed")
                return
            asyncio.run_coroutine_threadsafe(callback(), self._loop)
        else:
            # No event loop set, run in a fresh one on this thread
            asyncio.run(callback())

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    @property
    def watched_files(self) -> list[Path]:
        """Paths currently registered."""
        return list(self._watched)

    @property
    def lost_directories(self) -> list[Path]:
        """Watched directories removed and not yet watched again."""
        with self._lost_lock:
            return sorted(self._lost_dirs)

    @property
    def pending_count(self) -> int:
        """Get number of pending changes."""
        return self._debouncer.pending_count
