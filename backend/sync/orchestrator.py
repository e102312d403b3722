"""
ConfSync Sync Orchestrator.

Keeps the local configuration file and the shared store in step:
local edits are published under this node's id, and a recurring poll
pulls newer configuration published for the source node.
Requires Python 3.11+.
"""

import asyncio
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from config_store.base import ConfigStore
from sync.document import ConfigFile, FileSignature, LocalSnapshot
from sync.identity import NodeIdentity, load_node_identity
from utils.config import Settings, SyncSettings
from utils.exceptions import LocalIOFailure, StoreUnavailable, WatchSetupFailure
from utils.logger import LoggerMixin
from watcher.file_watcher import FileWatcher

RELOAD_NOTICE = "The config was updated to match the one published by {source}. Reload for changes to take effect."


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


class SyncState(str, Enum):
    """Lifecycle states of the orchestrator."""

    STOPPED = "stopped"
    RUNNING = "running"


class SyncOrchestrator(LoggerMixin):
    """
    Bidirectional bridge between the config file and the config store.

    Publish path: a watcher callback reads the file and publishes it with
    the current time. Poll path: every poll period the store is asked for
    a record newer than the file's mtime, which is then written atomically.

    Writes made by the poll path are remembered by signature (mtime and
    content digest) and skipped when the watcher reports them, so a pulled
    config is not republished under this node's id. All file access goes
    through one asyncio.Lock.
    """

    def __init__(
        self,
        store: ConfigStore,
        identity: NodeIdentity,
        settings: SyncSettings,
        watcher: FileWatcher | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            store: Shared config store (already connected)
            identity: This node's identity
            settings: Sync settings (file path, poll interval, topology)
            watcher: File watcher; None disables the publish path
            clock: Returns the current time in epoch milliseconds
        """
        self._store = store
        self._identity = identity
        self._settings = settings
        self._watcher = watcher
        self._clock = clock or _now_millis
        self._config_file = ConfigFile(settings.config_file)

        self._state = SyncState.STOPPED
        self._file_lock = asyncio.Lock()
        self._stop_event: asyncio.Event | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[Any]] = set()

        self._pulled_signature: FileSignature | None = None
        self._watch_enabled = False
        self._last_published_at: int | None = None
        self._last_pulled_at: int | None = None

    # Properties

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def node_id(self) -> str:
        return self._identity.node_id

    @property
    def source_node_id(self) -> str:
        """Node whose record the poll path pulls."""
        return self._settings.source_node_id or self._identity.node_id

    @property
    def is_source_of_truth(self) -> bool:
        """True when this node is itself the configured source node."""
        return self._settings.source_node_id == self._identity.node_id

    @property
    def config_file(self) -> ConfigFile:
        return self._config_file

    # Lifecycle

    async def start(self) -> None:
        """
        Register the config file with the watcher and schedule polling.

        A watch that cannot be established disables the publish path only;
        polling still runs.
        """
        if self._state is SyncState.RUNNING:
            return

        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._state = SyncState.RUNNING

        if self._watcher is not None:
            self._watcher.set_event_loop(loop)
            try:
                self._watcher.watch(self._config_file.path, self._on_file_changed)
                self._watcher.start()
                self._watch_enabled = True
            except WatchSetupFailure as e:
                self._watch_enabled = False
                self.log.error(
                    "watch_setup_failed",
                    path=str(self._config_file.path),
                    error=str(e),
                )

        period = self._settings.poll_interval_seconds
        if self.is_source_of_truth:
            self.log.info("polling_disabled_source_of_truth", node_id=self.node_id)
        else:
            self._poll_task = asyncio.create_task(self._poll_loop(period), name="confsync-poll")

        self.log.info(
            "sync_started",
            node_id=self.node_id,
            source_node_id=self.source_node_id,
            config_file=str(self._config_file.path),
            poll_interval_seconds=period,
            watch_enabled=self._watch_enabled,
        )

    async def stop(self) -> None:
        """
        Stop watching and polling.

        The watcher thread is interrupted and joined. A poll or publish
        already in progress completes; nothing new is started.
        """
        if self._state is SyncState.STOPPED:
            return
        self._state = SyncState.STOPPED

        if self._watcher is not None:
            await asyncio.to_thread(self._watcher.stop)
        self._watch_enabled = False

        if self._stop_event is not None:
            self._stop_event.set()
        if self._poll_task is not None:
            await self._poll_task
            self._poll_task = None

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

        self.log.info("sync_stopped", node_id=self.node_id)

    async def _poll_loop(self, period: float) -> None:
        """Poll every period seconds, first run one period after start."""
        assert self._stop_event is not None
        while True:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=period)
                return
            except TimeoutError:
                pass
            try:
                await self.poll_once()
            except Exception:
                self.log.exception("poll_failed", node_id=self.node_id)

    async def _on_file_changed(self) -> None:
        """Watcher callback; runs on the event loop, never raises."""
        if self._state is not SyncState.RUNNING:
            return
        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)
        try:
            await self.publish_local()
        except Exception:
            self.log.exception("publish_callback_failed", node_id=self.node_id)
        finally:
            if task is not None:
                self._inflight.discard(task)

    # Publish path

    async def publish_local(self) -> bool:
        """
        Publish the local file under this node's id.

        Skips a missing file, an empty document, and the poll path's own
        writes. Failures are logged and dropped.

        Returns:
            True if a record was published
        """
        async with self._file_lock:
            try:
                snapshot = await asyncio.to_thread(self._config_file.read)
            except LocalIOFailure as e:
                self.log.error("publish_read_failed", path=str(self._config_file.path), error=str(e))
                return False

            if snapshot is None:
                self.log.debug("publish_skipped_missing_file", path=str(self._config_file.path))
                return False
            if not snapshot.document:
                self.log.warning("publish_skipped_empty_document", path=str(self._config_file.path))
                return False
            if self._is_pulled_write(snapshot):
                self.log.debug("publish_skipped_pulled_write", path=str(self._config_file.path))
                return False

        timestamp = self._clock()
        try:
            accepted = await self._store.publish(self.node_id, snapshot.document, timestamp)
        except StoreUnavailable as e:
            self.log.error(
                "publish_failed",
                node_id=self.node_id,
                error=str(e),
            )
            return False

        if not accepted:
            self.log.warning("publish_ignored_stale", node_id=self.node_id, updated_at=timestamp)
            return False

        self._last_published_at = timestamp
        self.log.info("config_published", node_id=self.node_id, updated_at=timestamp)
        return True

    def _is_pulled_write(self, snapshot: LocalSnapshot) -> bool:
        if not self._settings.suppress_pulled_writes:
            return False
        return self._pulled_signature == snapshot.signature

    # Poll path

    async def poll_once(self) -> bool:
        """
        Pull a newer config for the source node, if the store has one.

        Returns:
            True if the local file was replaced
        """
        async with self._file_lock:
            try:
                watermark = await asyncio.to_thread(self._config_file.last_modified)
            except LocalIOFailure as e:
                self.log.error("poll_stat_failed", path=str(self._config_file.path), error=str(e))
                return False

            try:
                record = await self._store.fetch_newer(self.source_node_id, watermark)
            except StoreUnavailable as e:
                self.log.warning("poll_failed_store_unavailable", error=str(e))
                return False

            if record is None:
                self.log.debug("poll_no_update", watermark=watermark)
                return False

            try:
                current = await asyncio.to_thread(self._config_file.read)
            except LocalIOFailure as e:
                self.log.error(
                    "poll_read_failed_update_discarded",
                    path=str(self._config_file.path),
                    updated_at=record.updated_at,
                    error=str(e),
                )
                return False

            try:
                if current is not None and current.document == record.document:
                    signature = await asyncio.to_thread(self._config_file.touch, record.updated_at)
                    self._pulled_signature = signature
                    self.log.debug("poll_content_unchanged", updated_at=record.updated_at)
                    return False

                signature = await asyncio.to_thread(
                    self._config_file.write, record.document, record.updated_at
                )
            except LocalIOFailure as e:
                self.log.error(
                    "poll_write_failed_update_discarded",
                    path=str(self._config_file.path),
                    updated_at=record.updated_at,
                    error=str(e),
                )
                return False

            self._pulled_signature = signature
            self._last_pulled_at = record.updated_at

        self.log.info(
            "config_updated_from_store",
            source_node_id=record.node_id,
            updated_at=record.updated_at,
            message=RELOAD_NOTICE.format(source=record.node_id),
        )
        return True

    def _watch_lost(self) -> bool:
        return self._watcher is not None and bool(self._watcher.lost_directories)

    def status(self) -> dict[str, Any]:
        """Snapshot of the engine state for status reporting."""
        return {
            "node_id": self.node_id,
            "source_node_id": self.source_node_id,
            "state": self._state.value,
            "config_file": str(self._config_file.path),
            "watch_enabled": self._watch_enabled and not self._watch_lost(),
            "polling_enabled": self._poll_task is not None,
            "poll_interval_seconds": self._settings.poll_interval_seconds,
            "last_published_at": self._last_published_at,
            "last_pulled_at": self._last_pulled_at,
        }


def create_orchestrator(store: ConfigStore, settings: Settings) -> SyncOrchestrator:
    """
    Build an orchestrator for this process from application settings.

    Raises:
        LocalIOFailure: If the node identity cannot be loaded
    """
    identity = load_node_identity(settings.sync)
    watcher = None
    if settings.watcher.enabled:
        watcher = FileWatcher(
            debounce_delay_ms=settings.watcher.debounce_delay_ms,
            join_timeout=settings.watcher.join_timeout_seconds,
            rewatch_interval=settings.watcher.rewatch_interval_seconds,
        )
    return SyncOrchestrator(store, identity, settings.sync, watcher=watcher)
