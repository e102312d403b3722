#!/usr/bin/env python3
"""
ConfSync Node Runner.

Runs the sync engine for one node in the foreground until interrupted.
Requires Python 3.11+.

Usage:
    python scripts/run_node.py --config-file config.yml --source-node proxy-1
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from config_store import create_store
from sync.orchestrator import create_orchestrator
from utils.config import get_settings
from utils.exceptions import ConfSyncError
from utils.logger import bind_node_context, configure_logging, get_logger


configure_logging()
logger = get_logger("run_node")


async def run_node(
    config_file: Path | None = None,
    source_node_id: str | None = None,
    poll_interval_minutes: float | None = None,
) -> None:
    """
    Start the engine and block until SIGINT or SIGTERM.

    Args:
        config_file: Override for SYNC_CONFIG_FILE
        source_node_id: Override for SYNC_SOURCE_NODE_ID
        poll_interval_minutes: Override for SYNC_POLL_INTERVAL_MINUTES
    """
    settings = get_settings()
    if config_file is not None:
        settings.sync.config_file = config_file
    if source_node_id is not None:
        settings.sync.source_node_id = source_node_id
    if poll_interval_minutes is not None:
        settings.sync.poll_interval_minutes = poll_interval_minutes

    store = create_store(settings)
    await store.connect()
    await store.initialize_schema()

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt ends asyncio.run instead
            pass

    try:
        orchestrator = create_orchestrator(store, settings)
        bind_node_context(orchestrator.node_id)
        await orchestrator.start()
        try:
            await stop_requested.wait()
        finally:
            logger.info("shutdown_requested")
            await orchestrator.stop()
    finally:
        await store.close()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run the ConfSync engine for this node"
    )
    parser.add_argument(
        "--config-file",
        type=Path,
        default=None,
        help="Configuration file to keep in sync",
    )
    parser.add_argument(
        "--source-node",
        default=None,
        help="Node id whose published config this node pulls",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Minutes between store polls",
    )

    args = parser.parse_args()

    try:
        asyncio.run(run_node(
            config_file=args.config_file,
            source_node_id=args.source_node,
            poll_interval_minutes=args.poll_interval,
        ))
    except KeyboardInterrupt:
        print("\nStopped by user")
    except ConfSyncError as e:
        logger.error("node_failed", error=str(e))
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
