"""
ConfSync SQLite Config Store.

Relational config store on a SQLite file shared by every node on a host
(or on a network filesystem that honours SQLite locking).
Requires Python 3.11+.
"""

import asyncio
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from config_store.base import (
    ConfigDocument,
    ConfigRecord,
    ConfigStore,
    deserialize_document,
    serialize_document,
)
from config_store.queries import SQLQueries
from utils.exceptions import StoreUnavailable

T = TypeVar("T")


class SQLiteConfigStore(ConfigStore):
    """
    Config store backed by a single SQLite table.

    Every operation opens its own short-lived connection on a worker
    thread, so concurrent callers never share a connection object and the
    event loop is never blocked. Database errors surface as
    StoreUnavailable.
    """

    def __init__(self, db_path: Path | str, timeout: float = 10.0) -> None:
        """
        Initialize the store.

        Args:
            db_path: Path to the SQLite database file
            timeout: Seconds to wait when another writer holds the lock
        """
        self._db_path = Path(db_path)
        self._timeout = timeout

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        """Open a connection with row factory and WAL journaling."""
        conn = sqlite3.connect(str(self._db_path), timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    async def _run(self, operation: str, func: Callable[[sqlite3.Connection], T]) -> T:
        def call() -> T:
            conn = self._get_connection()
            try:
                with conn:
                    return func(conn)
            finally:
                conn.close()

        try:
            return await asyncio.to_thread(call)
        except sqlite3.Error as e:
            self.log.warning("sqlite_operation_failed", operation=operation, error=str(e))
            raise StoreUnavailable(f"sqlite {operation} failed", cause=e) from e

    async def connect(self) -> None:
        """Make sure the database file can be created and opened."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"cannot create {self._db_path.parent}", cause=e) from e
        await self._run("connect", lambda conn: conn.execute("SELECT 1").fetchone())
        self.log.info("sqlite_store_connected", path=str(self._db_path))

    async def initialize_schema(self) -> None:
        def create(conn: sqlite3.Connection) -> None:
            conn.execute(SQLQueries.CREATE_TABLE.query)
            conn.execute(SQLQueries.CREATE_UPDATED_INDEX.query)

        await self._run("initialize_schema", create)
        self.log.info("schema_initialized", backend="sqlite")

    async def publish(self, node_id: str, document: ConfigDocument, timestamp: int) -> bool:
        params = {
            "node_id": node_id,
            "document": serialize_document(document),
            "updated_at": timestamp,
        }
        # The guarded upsert touches no row when the stored record is newer
        written = await self._run(
            "publish",
            lambda conn: conn.execute(SQLQueries.UPSERT_RECORD.query, params).rowcount,
        )
        return written > 0

    async def fetch_newer(self, node_id: str, since: int) -> ConfigRecord | None:
        params = {"node_id": node_id, "since": since}
        row = await self._run(
            "fetch_newer",
            lambda conn: conn.execute(SQLQueries.FETCH_NEWER.query, params).fetchone(),
        )
        return self._row_to_record(row) if row is not None else None

    async def get_record(self, node_id: str) -> ConfigRecord | None:
        row = await self._run(
            "get_record",
            lambda conn: conn.execute(SQLQueries.GET_RECORD.query, {"node_id": node_id}).fetchone(),
        )
        return self._row_to_record(row) if row is not None else None

    async def list_records(self) -> list[ConfigRecord]:
        rows = await self._run(
            "list_records",
            lambda conn: conn.execute(SQLQueries.LIST_RECORDS.query).fetchall(),
        )
        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: sqlite3.Row | Any) -> ConfigRecord:
        try:
            document = deserialize_document(row["document"])
        except ValueError as e:
            raise StoreUnavailable(f"corrupt record for {row['node_id']}", cause=e) from e
        return ConfigRecord(
            node_id=row["node_id"],
            document=document,
            updated_at=int(row["updated_at"]),
        )
