#!/usr/bin/env python3
"""
ConfSync Store Initialization Script.

Creates the config store schema and lists the records it holds.
Requires Python 3.11+.

Usage:
    python scripts/init_store.py
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from config_store import create_store
from utils.config import get_settings
from utils.exceptions import ConfSyncError
from utils.logger import configure_logging, get_logger


configure_logging()
logger = get_logger("init_store")


async def init_store(backend: str | None = None, list_only: bool = False) -> None:
    """
    Initialize the config store.

    Args:
        backend: Override for STORE_BACKEND
        list_only: Skip schema creation and only list records
    """
    settings = get_settings()
    if backend is not None:
        settings.store.backend = backend
    logger.info("initializing_store", backend=settings.store.backend)

    store = create_store(settings)

    try:
        await store.connect()

        if not list_only:
            await store.initialize_schema()

        records = await store.list_records()
        if records:
            for record in records:
                updated = datetime.fromtimestamp(record.updated_at / 1000, tz=timezone.utc)
                logger.info(
                    "config_record",
                    node_id=record.node_id,
                    updated_at=updated.isoformat(),
                    keys=len(record.document),
                )
        else:
            logger.info("store_empty")

        print("\n✓ Config store ready")
        print(f"  Backend: {settings.store.backend}")
        print(f"  Records: {len(records)}")

    except ConfSyncError as e:
        logger.error("initialization_failed", error=str(e))
        print(f"\n✗ Failed to initialize config store: {e}")
        sys.exit(1)

    finally:
        await store.close()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Initialize the ConfSync config store"
    )
    parser.add_argument(
        "--backend",
        choices=["sqlite", "neo4j"],
        default=None,
        help="Store backend (defaults to STORE_BACKEND)",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Only list stored records",
    )

    args = parser.parse_args()

    try:
        asyncio.run(init_store(backend=args.backend, list_only=args.list))
    except KeyboardInterrupt:
        print("\nCancelled by user")
        sys.exit(1)


if __name__ == "__main__":
    main()
