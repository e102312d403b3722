"""
ConfSync Config Store Interface.

Defines the record type and the contract every store adapter fulfils.
Requires Python 3.11+.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import yaml

from utils.logger import LoggerMixin

ConfigDocument = dict[str, Any]

# Watermark used when the local file has never been written
NEVER = -1


@dataclass(frozen=True)
class ConfigRecord:
    """The stored configuration of one node."""

    node_id: str
    document: ConfigDocument = field(hash=False)
    updated_at: int  # epoch milliseconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "node_id": self.node_id,
            "document": self.document,
            "updated_at": self.updated_at,
        }


def serialize_document(document: ConfigDocument) -> str:
    """
    Encode a document for storage.

    YAML keeps what the config file parser produced: non-string keys,
    dates and timestamps come back with the same types.
    """
    return yaml.safe_dump(document, sort_keys=False, allow_unicode=True)


def deserialize_document(payload: str) -> ConfigDocument:
    """Decode a stored document."""
    try:
        document = yaml.safe_load(payload)
    except yaml.YAMLError as e:
        raise ValueError(f"stored document is not valid YAML: {e}") from e
    if not isinstance(document, dict):
        raise ValueError(f"stored document is {type(document).__name__}, expected mapping")
    return document


class ConfigStore(ABC, LoggerMixin):
    """
    Shared key/value store for configuration records.

    One record per node id. Adapters must be safe for concurrent use from
    several coroutines and raise StoreUnavailable when the backend cannot
    be reached. Callers decide whether to retry.
    """

    async def connect(self) -> None:
        """Open connections to the backend."""

    async def initialize_schema(self) -> None:
        """Create tables, constraints or indexes. Safe to call repeatedly."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def publish(self, node_id: str, document: ConfigDocument, timestamp: int) -> bool:
        """
        Upsert the record for node_id.

        A publish older than the stored record is ignored, so the stored
        record always carries the greatest timestamp seen.

        Returns:
            True if the record was written, False if it was stale

        Raises:
            StoreUnavailable: If the backend cannot be reached
        """

    @abstractmethod
    async def fetch_newer(self, node_id: str, since: int) -> ConfigRecord | None:
        """
        Return the record for node_id if its updated_at is strictly
        greater than since, otherwise None.

        Raises:
            StoreUnavailable: If the backend cannot be reached
        """

    @abstractmethod
    async def get_record(self, node_id: str) -> ConfigRecord | None:
        """Return the record for node_id regardless of age."""

    @abstractmethod
    async def list_records(self) -> list[ConfigRecord]:
        """Return every stored record, newest first."""

    async def __aenter__(self) -> "ConfigStore":
        await self.connect()
        await self.initialize_schema()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
