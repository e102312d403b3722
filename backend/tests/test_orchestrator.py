"""
Tests for the Sync Orchestrator.

Requires Python 3.11+.
"""

import asyncio
import shutil
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
import yaml
from structlog.testing import capture_logs

from config_store.base import ConfigRecord
from config_store.memory_store import InMemoryConfigStore
from sync.document import ConfigFile
from sync.identity import NodeIdentity
from sync.orchestrator import SyncOrchestrator, SyncState
from utils.config import SyncSettings
from utils.exceptions import LocalIOFailure
from watcher.file_watcher import FileWatcher


async def wait_until(predicate: Callable[[], Awaitable[bool] | bool], timeout: float = 5.0) -> bool:
    """Poll predicate until it holds or the timeout passes."""
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return True
        await asyncio.sleep(0.05)
    return False


class CountingStore(InMemoryConfigStore):
    """In-memory store that counts fetches."""

    def __init__(self) -> None:
        super().__init__()
        self.fetch_count = 0

    async def fetch_newer(self, node_id: str, since: int) -> ConfigRecord | None:
        self.fetch_count += 1
        return await super().fetch_newer(node_id, since)


@pytest.fixture
def make_orchestrator(
    memory_store: InMemoryConfigStore,
    clock,
    make_sync_settings: Callable[..., SyncSettings],
) -> Callable[..., SyncOrchestrator]:
    """Factory for orchestrators sharing the memory store and clock."""

    def factory(
        config_file: Path,
        node_id: str,
        source_node_id: str | None = None,
        store: InMemoryConfigStore | None = None,
        watcher: FileWatcher | None = None,
        use_clock: bool = True,
        **overrides: Any,
    ) -> SyncOrchestrator:
        settings = make_sync_settings(config_file, source_node_id=source_node_id, **overrides)
        return SyncOrchestrator(
            store if store is not None else memory_store,
            NodeIdentity(node_id),
            settings,
            watcher=watcher,
            clock=clock if use_clock else None,
        )

    return factory


@pytest.fixture
def server_config(tmp_path: Path) -> Path:
    """Config path of a server node that has never synced."""
    directory = tmp_path / "server"
    directory.mkdir()
    return directory / "config.yml"


def reload_notices(logs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [entry for entry in logs if entry["event"] == "config_updated_from_store"]


class TestPublishPath:
    """Local edits reaching the store."""

    @pytest.mark.asyncio
    async def test_publishes_file_under_own_id(
        self, make_orchestrator, memory_store, config_path, sample_document, clock
    ):
        proxy = make_orchestrator(config_path, "proxy")

        assert await proxy.publish_local() is True

        record = await memory_store.get_record("proxy")
        assert record is not None
        assert record.document == sample_document
        assert record.updated_at == clock.now
        assert proxy.status()["last_published_at"] == clock.now

    @pytest.mark.asyncio
    async def test_deleted_file_is_not_published(self, make_orchestrator, memory_store, config_path):
        """Deletion is a non-event; nothing (and nothing empty) is stored."""
        proxy = make_orchestrator(config_path, "proxy")
        config_path.unlink()

        assert await proxy.publish_local() is False
        assert await memory_store.list_records() == []

    @pytest.mark.asyncio
    async def test_empty_document_is_not_published(self, make_orchestrator, memory_store, config_path):
        proxy = make_orchestrator(config_path, "proxy")
        config_path.write_text("")

        assert await proxy.publish_local() is False
        assert await memory_store.list_records() == []

    @pytest.mark.asyncio
    async def test_unparseable_file_is_not_published(self, make_orchestrator, memory_store, config_path):
        proxy = make_orchestrator(config_path, "proxy")
        config_path.write_text("Server: [broken")

        assert await proxy.publish_local() is False
        assert await memory_store.list_records() == []

    @pytest.mark.asyncio
    async def test_store_outage_keeps_local_edit(
        self, make_orchestrator, memory_store, config_path, other_document
    ):
        """An unreachable store is logged; the edited file stays as edited."""
        proxy = make_orchestrator(config_path, "proxy")
        config_path.write_text(yaml.safe_dump(other_document))
        memory_store.available = False

        with capture_logs() as logs:
            assert await proxy.publish_local() is False

        assert any(e["event"] == "publish_failed" for e in logs)
        assert yaml.safe_load(config_path.read_text()) == other_document

        # The next local edit propagates once the store is back
        memory_store.available = True
        assert await proxy.publish_local() is True

    @pytest.mark.asyncio
    async def test_stale_publish_is_not_reported_as_published(
        self, make_orchestrator, memory_store, config_path, other_document, clock
    ):
        """A store holding a newer record keeps it and the node says so."""
        await memory_store.publish("proxy", other_document, clock.now + 60_000)
        proxy = make_orchestrator(config_path, "proxy")

        with capture_logs() as logs:
            assert await proxy.publish_local() is False

        events = [e["event"] for e in logs]
        assert "publish_ignored_stale" in events
        assert "config_published" not in events
        assert proxy.status()["last_published_at"] is None
        record = await memory_store.get_record("proxy")
        assert record is not None
        assert record.document == other_document


class TestPollPath:
    """Pulling newer configuration from the store."""

    @pytest.mark.asyncio
    async def test_pulls_newer_config_and_logs_reload_notice(
        self, make_orchestrator, memory_store, server_config, sample_document, clock
    ):
        await memory_store.publish("proxy", sample_document, clock.now)
        server = make_orchestrator(server_config, "server-1", source_node_id="proxy")

        with capture_logs() as logs:
            assert await server.poll_once() is True

        assert yaml.safe_load(server_config.read_text()) == sample_document
        assert ConfigFile(server_config).last_modified() == clock.now

        notices = reload_notices(logs)
        assert len(notices) == 1
        assert notices[0]["log_level"] == "info"
        assert "Reload for changes to take effect" in notices[0]["message"]
        assert notices[0]["source_node_id"] == "proxy"

    @pytest.mark.asyncio
    async def test_second_poll_changes_nothing(
        self, make_orchestrator, memory_store, server_config, sample_document, clock
    ):
        """No overwrite loop: the pulled file is already current."""
        await memory_store.publish("proxy", sample_document, clock.now)
        server = make_orchestrator(server_config, "server-1", source_node_id="proxy")
        await server.poll_once()
        written = server_config.stat().st_mtime_ns

        with capture_logs() as logs:
            assert await server.poll_once() is False

        assert reload_notices(logs) == []
        assert server_config.stat().st_mtime_ns == written

    @pytest.mark.asyncio
    async def test_nothing_newer_means_no_action(
        self, make_orchestrator, memory_store, config_path, other_document, clock
    ):
        """A local file newer than the record is left alone."""
        await memory_store.publish("proxy", other_document, clock.now)
        ConfigFile(config_path).touch(clock.now + 1)
        before = config_path.read_bytes()
        server = make_orchestrator(config_path, "server-1", source_node_id="proxy")

        assert await server.poll_once() is False
        assert config_path.read_bytes() == before

    @pytest.mark.asyncio
    async def test_identical_content_is_not_rewritten(
        self, make_orchestrator, memory_store, config_path, sample_document, clock
    ):
        """Same content only moves the watermark forward."""
        await memory_store.publish("proxy", sample_document, clock.now)
        ConfigFile(config_path).touch(clock.now - 5000)
        before = config_path.read_bytes()
        server = make_orchestrator(config_path, "server-1", source_node_id="proxy")

        with capture_logs() as logs:
            assert await server.poll_once() is False

        assert reload_notices(logs) == []
        assert config_path.read_bytes() == before
        assert ConfigFile(config_path).last_modified() == clock.now
        assert await server.poll_once() is False

    @pytest.mark.asyncio
    async def test_latest_of_two_publishes_wins(
        self, make_orchestrator, memory_store, server_config, sample_document, other_document, clock
    ):
        t1 = clock.now
        await memory_store.publish("proxy", sample_document, t1)
        t2 = clock.advance(60_000)
        await memory_store.publish("proxy", other_document, t2)
        ConfigFile(server_config).write(sample_document, modified_at=t1 + 1)
        server = make_orchestrator(server_config, "server-1", source_node_id="proxy")

        assert await server.poll_once() is True
        assert yaml.safe_load(server_config.read_text()) == other_document
        assert ConfigFile(server_config).last_modified() == t2

    @pytest.mark.asyncio
    async def test_write_failure_discards_update(
        self,
        make_orchestrator,
        memory_store,
        config_path,
        other_document,
        clock,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """A failed write leaves the old file whole and retries next cycle."""
        ConfigFile(config_path).touch(clock.now - 1000)
        before = config_path.read_bytes()
        await memory_store.publish("proxy", other_document, clock.now)
        server = make_orchestrator(config_path, "server-1", source_node_id="proxy")

        def failing_write(self: ConfigFile, document: dict[str, Any], modified_at: int | None = None):
            raise LocalIOFailure("disk full", self.path)

        with monkeypatch.context() as patch:
            patch.setattr(ConfigFile, "write", failing_write)
            assert await server.poll_once() is False

        assert config_path.read_bytes() == before
        assert server.status()["last_pulled_at"] is None

        assert await server.poll_once() is True
        assert yaml.safe_load(config_path.read_text()) == other_document

    @pytest.mark.asyncio
    async def test_unreadable_local_file_discards_update(
        self, make_orchestrator, memory_store, config_path, other_document, clock
    ):
        """A local file that cannot be parsed is left alone, not replaced."""
        config_path.write_text("Server: [broken")
        ConfigFile(config_path).touch(clock.now - 1000)
        before = config_path.read_bytes()
        await memory_store.publish("proxy", other_document, clock.now)
        server = make_orchestrator(config_path, "server-1", source_node_id="proxy")

        with capture_logs() as logs:
            assert await server.poll_once() is False

        assert config_path.read_bytes() == before
        assert any(e["event"] == "poll_read_failed_update_discarded" for e in logs)
        assert reload_notices(logs) == []
        assert server.status()["last_pulled_at"] is None

    @pytest.mark.asyncio
    async def test_typed_values_survive_own_round_trip(
        self, sqlite_store, config_path, typed_document, clock, make_sync_settings
    ):
        """Polling back a node's own publish finds no difference to write."""
        config_path.write_text(yaml.safe_dump(typed_document, sort_keys=False))
        before = config_path.read_bytes()
        clock.now = ConfigFile(config_path).last_modified() + 1000
        node = SyncOrchestrator(
            sqlite_store, NodeIdentity("server-1"), make_sync_settings(config_path), clock=clock
        )

        assert await node.publish_local() is True
        with capture_logs() as logs:
            assert await node.poll_once() is False

        assert reload_notices(logs) == []
        assert config_path.read_bytes() == before
        assert ConfigFile(config_path).last_modified() == clock.now

    @pytest.mark.asyncio
    async def test_typed_values_reach_pulling_node(
        self, sqlite_store, server_config, typed_document, clock, make_sync_settings
    ):
        await sqlite_store.publish("proxy", typed_document, clock.now)
        server = SyncOrchestrator(
            sqlite_store,
            NodeIdentity("server-1"),
            make_sync_settings(server_config, source_node_id="proxy"),
            clock=clock,
        )

        assert await server.poll_once() is True
        pulled = yaml.safe_load(server_config.read_text())
        assert pulled == typed_document
        assert list(pulled["Worlds"]) == [1, 2]

    @pytest.mark.asyncio
    async def test_store_outage_is_a_noop(self, make_orchestrator, memory_store, server_config):
        server = make_orchestrator(server_config, "server-1", source_node_id="proxy")
        memory_store.available = False

        assert await server.poll_once() is False
        assert not server_config.exists()

    @pytest.mark.asyncio
    async def test_defaults_to_polling_own_record(
        self, make_orchestrator, memory_store, server_config, sample_document, clock
    ):
        """Without a source node, a node pulls the record kept under its own id."""
        await memory_store.publish("server-1", sample_document, clock.now)
        server = make_orchestrator(server_config, "server-1")

        assert server.source_node_id == "server-1"
        assert await server.poll_once() is True
        assert yaml.safe_load(server_config.read_text()) == sample_document


class TestFeedbackSuppression:
    """Writes made by the poll path are not published back."""

    @pytest.mark.asyncio
    async def test_pulled_write_is_not_republished(
        self, make_orchestrator, memory_store, server_config, sample_document, clock
    ):
        await memory_store.publish("proxy", sample_document, clock.now)
        server = make_orchestrator(server_config, "server-1", source_node_id="proxy")
        await server.poll_once()

        assert await server.publish_local() is False
        assert await memory_store.get_record("server-1") is None

    @pytest.mark.asyncio
    async def test_local_edit_after_pull_is_published(
        self, make_orchestrator, memory_store, server_config, sample_document, other_document, clock
    ):
        await memory_store.publish("proxy", sample_document, clock.now)
        server = make_orchestrator(server_config, "server-1", source_node_id="proxy")
        await server.poll_once()

        server_config.write_text(yaml.safe_dump(other_document))
        clock.advance(1000)

        assert await server.publish_local() is True
        record = await memory_store.get_record("server-1")
        assert record is not None
        assert record.document == other_document

    @pytest.mark.asyncio
    async def test_suppression_can_be_disabled(
        self, make_orchestrator, memory_store, server_config, sample_document, clock
    ):
        """With suppression off the pulled content is republished as is."""
        await memory_store.publish("proxy", sample_document, clock.now)
        server = make_orchestrator(
            server_config, "server-1", source_node_id="proxy", suppress_pulled_writes=False
        )
        await server.poll_once()
        clock.advance(10)

        assert await server.publish_local() is True
        record = await memory_store.get_record("server-1")
        assert record is not None
        assert record.document == sample_document


class TestEndToEnd:
    """Two nodes sharing one store."""

    @pytest.mark.asyncio
    async def test_proxy_edit_reaches_server(
        self,
        tmp_path: Path,
        make_orchestrator,
        memory_store,
        sample_document,
        clock,
    ):
        """Proxy publishes at t=0; a never-synced server pulls it exactly once."""
        clock.now = 0
        proxy_config = tmp_path / "proxy" / "config.yml"
        server_config = tmp_path / "server" / "config.yml"
        proxy_config.parent.mkdir()
        server_config.parent.mkdir()
        proxy_config.write_text(yaml.safe_dump(sample_document))

        proxy = make_orchestrator(proxy_config, "proxy", source_node_id="proxy")
        server = make_orchestrator(server_config, "server-1", source_node_id="proxy")

        assert await proxy.publish_local() is True
        record = await memory_store.get_record("proxy")
        assert record is not None
        assert record.updated_at == 0

        assert ConfigFile(server_config).last_modified() == -1
        with capture_logs() as logs:
            assert await server.poll_once() is True
        assert len(reload_notices(logs)) == 1
        assert yaml.safe_load(server_config.read_text()) == sample_document

        assert ConfigFile(server_config).last_modified() == 0
        assert await memory_store.fetch_newer("proxy", 0) is None
        assert await server.poll_once() is False


class TestLifecycle:
    """Start, stop and the background flows."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_orchestrator, config_path):
        watcher = FileWatcher(debounce_delay_ms=50)
        node = make_orchestrator(config_path, "server-1", source_node_id="proxy", watcher=watcher)

        await node.start()
        await node.start()
        status = node.status()
        assert node.state is SyncState.RUNNING
        assert status["watch_enabled"] is True
        assert status["polling_enabled"] is True

        await node.stop()
        await node.stop()
        assert node.state is SyncState.STOPPED
        assert node.status()["polling_enabled"] is False
        assert not watcher.is_running

    @pytest.mark.asyncio
    async def test_stop_without_start(self, make_orchestrator, config_path):
        node = make_orchestrator(config_path, "server-1")
        await node.stop()
        assert node.state is SyncState.STOPPED

    @pytest.mark.asyncio
    async def test_local_edit_is_published_through_watcher(
        self, make_orchestrator, memory_store, config_path, other_document
    ):
        watcher = FileWatcher(debounce_delay_ms=50)
        proxy = make_orchestrator(config_path, "proxy", source_node_id="proxy", watcher=watcher)
        await proxy.start()
        try:
            config_path.write_text(yaml.safe_dump(other_document))

            async def published() -> bool:
                record = await memory_store.get_record("proxy")
                return record is not None and record.document == other_document

            assert await wait_until(published)
        finally:
            await proxy.stop()

    @pytest.mark.asyncio
    async def test_poll_timer_pulls_and_watcher_does_not_republish(
        self, make_orchestrator, memory_store, server_config, sample_document
    ):
        watcher = FileWatcher(debounce_delay_ms=50)
        server = make_orchestrator(
            server_config, "server-1", source_node_id="proxy", watcher=watcher, use_clock=False
        )
        await memory_store.publish("proxy", sample_document, 1_000_000)
        await server.start()
        try:
            assert await wait_until(server_config.exists)
            # Give the watcher time to report the pulled write
            await asyncio.sleep(0.5)
            assert await memory_store.get_record("server-1") is None
            assert yaml.safe_load(server_config.read_text()) == sample_document
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_no_polls_after_stop(self, make_orchestrator, server_config):
        store = CountingStore()
        server = make_orchestrator(server_config, "server-1", source_node_id="proxy", store=store)
        await server.start()
        assert await wait_until(lambda: store.fetch_count >= 1)

        await server.stop()
        count = store.fetch_count
        await asyncio.sleep(0.3)
        assert store.fetch_count == count

    @pytest.mark.asyncio
    async def test_first_poll_waits_one_period(self, make_orchestrator, server_config):
        store = CountingStore()
        server = make_orchestrator(
            server_config, "server-1", source_node_id="proxy", store=store, poll_interval_minutes=1.0
        )
        await server.start()
        await asyncio.sleep(0.2)
        await server.stop()
        assert store.fetch_count == 0

    @pytest.mark.asyncio
    async def test_source_of_truth_does_not_poll(self, make_orchestrator, config_path):
        store = CountingStore()
        proxy = make_orchestrator(config_path, "proxy", source_node_id="proxy", store=store)
        await proxy.start()
        await asyncio.sleep(0.3)
        status = proxy.status()
        await proxy.stop()

        assert proxy.is_source_of_truth
        assert status["polling_enabled"] is False
        assert store.fetch_count == 0

    @pytest.mark.asyncio
    async def test_watch_failure_keeps_polling(
        self, make_orchestrator, memory_store, tmp_path, sample_document, clock
    ):
        """Without a watchable directory the node still pulls."""
        missing = tmp_path / "not-yet" / "config.yml"
        watcher = FileWatcher(debounce_delay_ms=50)
        server = make_orchestrator(missing, "server-1", source_node_id="proxy", watcher=watcher)
        await memory_store.publish("proxy", sample_document, clock.now)

        with capture_logs() as logs:
            await server.start()
        try:
            assert server.status()["watch_enabled"] is False
            assert any(e["event"] == "watch_setup_failed" for e in logs)
            assert await wait_until(missing.exists)
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_removed_directory_is_watched_again(
        self, make_orchestrator, memory_store, tmp_path, sample_document, other_document
    ):
        """Edits made after the config directory is recreated still publish."""
        conf = tmp_path / "conf"
        conf.mkdir()
        path = conf / "config.yml"
        path.write_text(yaml.safe_dump(sample_document))
        watcher = FileWatcher(debounce_delay_ms=50, rewatch_interval=0.1)
        proxy = make_orchestrator(path, "proxy", source_node_id="proxy", watcher=watcher)
        await proxy.start()
        try:
            shutil.rmtree(conf)
            assert await wait_until(lambda: proxy.status()["watch_enabled"] is False)

            conf.mkdir()
            path.write_text(yaml.safe_dump(other_document))

            async def published() -> bool:
                record = await memory_store.get_record("proxy")
                return record is not None and record.document == other_document

            assert await wait_until(published)
            assert proxy.status()["watch_enabled"] is True
        finally:
            await proxy.stop()
