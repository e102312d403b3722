"""
ConfSync Neo4j Config Store.

Async Neo4j driver wrapper with connection pooling and retry logic.
Requires Python 3.11+.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncSession
from neo4j.exceptions import DriverError, Neo4jError, ServiceUnavailable, SessionExpired, TransientError

from config_store.base import (
    ConfigDocument,
    ConfigRecord,
    ConfigStore,
    deserialize_document,
    serialize_document,
)
from config_store.queries import CypherQueries
from utils.config import Neo4jSettings
from utils.exceptions import StoreUnavailable

_RETRYABLE = (ServiceUnavailable, SessionExpired, TransientError)


class Neo4jConfigStore(ConfigStore):
    """
    Config store keeping one (:ConfigRecord) node per node id.

    The driver pools connections, so the store is safe for concurrent use.
    Transient failures are retried with exponential backoff before being
    reported as StoreUnavailable.
    """

    def __init__(self, settings: Neo4jSettings) -> None:
        """Initialize the store without connecting."""
        self._driver: AsyncDriver | None = None
        self._settings = settings

    async def connect(self) -> None:
        """
        Establish connection to Neo4j.

        Creates an async driver with connection pooling.
        """
        if self._driver is not None:
            return

        self._driver = AsyncGraphDatabase.driver(
            self._settings.uri,
            auth=(self._settings.user, self._settings.password),
            max_connection_pool_size=self._settings.max_connection_pool_size,
            connection_timeout=self._settings.connection_timeout,
        )

        try:
            await self._driver.verify_connectivity()
        except (Neo4jError, DriverError, OSError) as e:
            self.log.error("neo4j_connection_failed", uri=self._settings.uri, error=str(e))
            await self._driver.close()
            self._driver = None
            raise StoreUnavailable(f"cannot reach {self._settings.uri}", cause=e) from e

        self.log.info(
            "neo4j_connected",
            uri=self._settings.uri,
            database=self._settings.database,
        )

    async def close(self) -> None:
        """Close the Neo4j connection."""
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            self.log.info("neo4j_disconnected")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Get a Neo4j session with automatic cleanup.

        Yields:
            AsyncSession for executing queries
        """
        if self._driver is None:
            await self.connect()

        assert self._driver is not None
        session = self._driver.session(database=self._settings.database)
        try:
            yield session
        finally:
            await session.close()

    async def execute_query(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Execute a Cypher query with retry logic.

        Args:
            query: Cypher query string
            parameters: Query parameters

        Returns:
            List of result records as dictionaries

        Raises:
            StoreUnavailable: If the query keeps failing or the server rejects it
        """
        retries = self._settings.max_retries
        last_error: Exception | None = None

        for attempt in range(retries):
            try:
                async with self.session() as session:
                    result = await session.run(query, parameters or {})
                    return await result.data()

            except _RETRYABLE as e:
                last_error = e
                self.log.warning(
                    "query_retry",
                    attempt=attempt + 1,
                    error=str(e),
                )
                await asyncio.sleep(0.1 * (2**attempt))  # Exponential backoff

            except Neo4jError as e:
                self.log.error("query_failed", query=query.strip()[:100], error=str(e))
                raise StoreUnavailable("neo4j query failed", cause=e) from e

        raise StoreUnavailable(f"neo4j unavailable after {retries} attempts", cause=last_error)

    async def initialize_schema(self) -> None:
        """
        Initialize constraints and indexes.

        Safe to call multiple times (uses IF NOT EXISTS).
        """
        for statement in CypherQueries.schema_statements():
            await self.execute_query(statement)
        self.log.info("schema_initialized", backend="neo4j")

    async def publish(self, node_id: str, document: ConfigDocument, timestamp: int) -> bool:
        rows = await self.execute_query(
            CypherQueries.UPSERT_RECORD.query,
            {
                "node_id": node_id,
                "document": serialize_document(document),
                "updated_at": timestamp,
            },
        )
        return bool(rows)

    async def fetch_newer(self, node_id: str, since: int) -> ConfigRecord | None:
        rows = await self.execute_query(
            CypherQueries.FETCH_NEWER.query,
            {"node_id": node_id, "since": since},
        )
        return self._row_to_record(rows[0]) if rows else None

    async def get_record(self, node_id: str) -> ConfigRecord | None:
        rows = await self.execute_query(CypherQueries.GET_RECORD.query, {"node_id": node_id})
        return self._row_to_record(rows[0]) if rows else None

    async def list_records(self) -> list[ConfigRecord]:
        rows = await self.execute_query(CypherQueries.LIST_RECORDS.query)
        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: dict[str, Any]) -> ConfigRecord:
        try:
            document = deserialize_document(row["document"])
        except (TypeError, ValueError) as e:
            raise StoreUnavailable(f"corrupt record for {row['node_id']}", cause=e) from e
        return ConfigRecord(
            node_id=row["node_id"],
            document=document,
            updated_at=int(row["updated_at"]),
        )
