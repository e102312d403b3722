"""
ConfSync Query Library.

Parameterized statements used by the store adapters. Values are always
bound as parameters, never formatted into the statement text.
Requires Python 3.11+.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class StoreQuery:
    """A named statement with description."""

    name: str
    description: str
    query: str
    parameters: tuple[str, ...]


class SQLQueries:
    """Statements for relational (sqlite) backends. Named-style placeholders."""

    CREATE_TABLE = StoreQuery(
        name="create_table",
        description="Create the config record table",
        query="""
        CREATE TABLE IF NOT EXISTS config_records (
            node_id TEXT PRIMARY KEY,
            document TEXT NOT NULL,
            updated_at INTEGER NOT NULL
        )
        """,
        parameters=(),
    )

    CREATE_UPDATED_INDEX = StoreQuery(
        name="create_updated_index",
        description="Index records by update time",
        query="CREATE INDEX IF NOT EXISTS idx_config_records_updated ON config_records(updated_at)",
        parameters=(),
    )

    UPSERT_RECORD = StoreQuery(
        name="upsert_record",
        description="Insert or replace a node's record unless the stored one is newer",
        query="""
        INSERT INTO config_records (node_id, document, updated_at)
        VALUES (:node_id, :document, :updated_at)
        ON CONFLICT(node_id) DO UPDATE SET
            document = excluded.document,
            updated_at = excluded.updated_at
        WHERE excluded.updated_at >= config_records.updated_at
        """,
        parameters=("node_id", "document", "updated_at"),
    )

    FETCH_NEWER = StoreQuery(
        name="fetch_newer",
        description="Fetch a node's record if it was updated after the watermark",
        query="""
        SELECT node_id, document, updated_at
        FROM config_records
        WHERE node_id = :node_id AND updated_at > :since
        """,
        parameters=("node_id", "since"),
    )

    GET_RECORD = StoreQuery(
        name="get_record",
        description="Fetch a node's record",
        query="SELECT node_id, document, updated_at FROM config_records WHERE node_id = :node_id",
        parameters=("node_id",),
    )

    LIST_RECORDS = StoreQuery(
        name="list_records",
        description="All records, newest first",
        query="SELECT node_id, document, updated_at FROM config_records ORDER BY updated_at DESC",
        parameters=(),
    )


class CypherQueries:
    """Statements for the Neo4j backend."""

    CREATE_NODE_ID_CONSTRAINT = StoreQuery(
        name="create_node_id_constraint",
        description="One ConfigRecord per node id",
        query="""
        CREATE CONSTRAINT config_record_node_id IF NOT EXISTS
        FOR (r:ConfigRecord) REQUIRE r.node_id IS UNIQUE
        """,
        parameters=(),
    )

    CREATE_UPDATED_INDEX = StoreQuery(
        name="create_updated_index",
        description="Index records by update time",
        query="""
        CREATE INDEX config_record_updated_at IF NOT EXISTS
        FOR (r:ConfigRecord) ON (r.updated_at)
        """,
        parameters=(),
    )

    UPSERT_RECORD = StoreQuery(
        name="upsert_record",
        description="Merge a node's record unless the stored one is newer",
        query="""
        MERGE (r:ConfigRecord {node_id: $node_id})
        WITH r
        WHERE r.updated_at IS NULL OR r.updated_at <= $updated_at
        SET r.document = $document,
            r.updated_at = $updated_at
        RETURN r.updated_at as updated_at
        """,
        parameters=("node_id", "document", "updated_at"),
    )

    FETCH_NEWER = StoreQuery(
        name="fetch_newer",
        description="Fetch a node's record if it was updated after the watermark",
        query="""
        MATCH (r:ConfigRecord {node_id: $node_id})
        WHERE r.updated_at > $since
        RETURN r.node_id as node_id, r.document as document, r.updated_at as updated_at
        """,
        parameters=("node_id", "since"),
    )

    GET_RECORD = StoreQuery(
        name="get_record",
        description="Fetch a node's record",
        query="""
        MATCH (r:ConfigRecord {node_id: $node_id})
        RETURN r.node_id as node_id, r.document as document, r.updated_at as updated_at
        """,
        parameters=("node_id",),
    )

    LIST_RECORDS = StoreQuery(
        name="list_records",
        description="All records, newest first",
        query="""
        MATCH (r:ConfigRecord)
        RETURN r.node_id as node_id, r.document as document, r.updated_at as updated_at
        ORDER BY r.updated_at DESC
        """,
        parameters=(),
    )

    @classmethod
    def schema_statements(cls) -> list[str]:
        """Statements that set up constraints and indexes."""
        return [cls.CREATE_NODE_ID_CONSTRAINT.query, cls.CREATE_UPDATED_INDEX.query]
