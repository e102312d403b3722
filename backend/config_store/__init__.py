"""
ConfSync Config Store Package.

Shared storage for per-node configuration records.
Requires Python 3.11+.
"""

from config_store.base import NEVER, ConfigDocument, ConfigRecord, ConfigStore
from config_store.memory_store import InMemoryConfigStore
from config_store.sqlite_store import SQLiteConfigStore
from utils.config import Settings


def create_store(settings: Settings) -> ConfigStore:
    """
    Build the store adapter selected by STORE_BACKEND.

    The Neo4j driver is imported only when that backend is chosen.
    """
    backend = settings.store.backend
    if backend == "sqlite":
        return SQLiteConfigStore(settings.store.sqlite_path, timeout=settings.store.sqlite_timeout)
    if backend == "neo4j":
        from config_store.neo4j_store import Neo4jConfigStore

        return Neo4jConfigStore(settings.neo4j)
    if backend == "memory":
        return InMemoryConfigStore()
    raise ValueError(f"Unknown store backend: {backend}")


__all__ = [
    "NEVER",
    "ConfigDocument",
    "ConfigRecord",
    "ConfigStore",
    "InMemoryConfigStore",
    "SQLiteConfigStore",
    "create_store",
]
