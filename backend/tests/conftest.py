"""
ConfSync Test Configuration.

Pytest fixtures and configuration.
Requires Python 3.11+.
"""

from collections.abc import Callable
from datetime import date, datetime
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
import yaml

from config_store.memory_store import InMemoryConfigStore
from config_store.sqlite_store import SQLiteConfigStore
from utils.config import SyncSettings


class FakeClock:
    """Deterministic epoch-millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> int:
        self.now += millis
        return self.now


@pytest.fixture
def sample_document() -> dict[str, Any]:
    """Sample configuration document."""
    return {
        "Server": {
            "Name": "lobby-1",
            "IP": "127.0.0.1",
        },
        "Database": {
            "Type": "sqlite",
            "Password": "p'a\"ss; DROP TABLE config_records; --",
        },
        "Time": {
            "Periods": {"Config_update_interval": 1},
        },
        "Plugins": ["alpha", "beta"],
        "Motd": "Welcome ☃ to the network",
    }


@pytest.fixture
def other_document() -> dict[str, Any]:
    """A second, different configuration document."""
    return {
        "Server": {"Name": "lobby-1", "IP": "10.0.0.5"},
        "Webserver": {"Port": 8804},
    }


@pytest.fixture
def typed_document() -> dict[str, Any]:
    """A document whose YAML carries integer keys and date scalars."""
    return {
        "Worlds": {1: "overworld", 2: "nether"},
        "Reset": date(2024, 1, 1),
        "Started": datetime(2024, 1, 1, 12, 30),
        "Ratio": 0.5,
        "Whitelist": True,
        "Spawn": None,
    }


@pytest.fixture
def config_path(tmp_path: Path, sample_document: dict[str, Any]) -> Path:
    """A config file holding the sample document."""
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump(sample_document, sort_keys=False), encoding="utf-8")
    return path


@pytest.fixture
def clock() -> FakeClock:
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def memory_store() -> InMemoryConfigStore:
    """Fresh in-memory store."""
    return InMemoryConfigStore()


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Path) -> AsyncGenerator[SQLiteConfigStore, None]:
    """SQLite store on a temporary database."""
    store = SQLiteConfigStore(tmp_path / "store" / "confsync.db", timeout=2.0)
    await store.connect()
    await store.initialize_schema()
    yield store
    await store.close()


@pytest.fixture
def make_sync_settings() -> Callable[..., SyncSettings]:
    """Factory for sync settings with a short poll interval."""

    def factory(config_file: Path, **overrides: Any) -> SyncSettings:
        values: dict[str, Any] = {
            "config_file": config_file,
            "poll_interval_minutes": 0.001,
            "node_id_file": config_file.parent / ".node_id",
            "source_node_id": None,
            "node_id": None,
            "suppress_pulled_writes": True,
        }
        values.update(overrides)
        return SyncSettings(**values)

    return factory
