"""
ConfSync In-Memory Config Store.

Dict-backed store for single-process runs and tests.
Requires Python 3.11+.
"""

import asyncio
import copy

from config_store.base import ConfigDocument, ConfigRecord, ConfigStore
from utils.exceptions import StoreUnavailable


class InMemoryConfigStore(ConfigStore):
    """
    Config store holding records in a dict.

    Documents are deep-copied on the way in and out so callers never share
    mutable state with the store. Setting available to False makes every
    operation raise StoreUnavailable, which simulates an outage.
    """

    def __init__(self) -> None:
        self._records: dict[str, ConfigRecord] = {}
        self._lock = asyncio.Lock()
        self.available = True
        self.publish_count = 0

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailable("in-memory store marked unavailable")

    async def publish(self, node_id: str, document: ConfigDocument, timestamp: int) -> bool:
        self._check_available()
        async with self._lock:
            current = self._records.get(node_id)
            if current is not None and current.updated_at > timestamp:
                self.log.debug(
                    "stale_publish_ignored",
                    node_id=node_id,
                    timestamp=timestamp,
                    stored=current.updated_at,
                )
                return False
            self._records[node_id] = ConfigRecord(
                node_id=node_id,
                document=copy.deepcopy(document),
                updated_at=timestamp,
            )
            self.publish_count += 1
        return True

    async def fetch_newer(self, node_id: str, since: int) -> ConfigRecord | None:
        self._check_available()
        async with self._lock:
            record = self._records.get(node_id)
        if record is None or record.updated_at <= since:
            return None
        return self._copy(record)

    async def get_record(self, node_id: str) -> ConfigRecord | None:
        self._check_available()
        record = self._records.get(node_id)
        return self._copy(record) if record is not None else None

    async def list_records(self) -> list[ConfigRecord]:
        self._check_available()
        records = sorted(self._records.values(), key=lambda r: r.updated_at, reverse=True)
        return [self._copy(r) for r in records]

    @staticmethod
    def _copy(record: ConfigRecord) -> ConfigRecord:
        return ConfigRecord(
            node_id=record.node_id,
            document=copy.deepcopy(record.document),
            updated_at=record.updated_at,
        )
