"""
ConfSync Sync Package.

Configuration synchronization engine: node identity, the local config
file and the orchestrator tying them to the shared store.
Requires Python 3.11+.
"""

from sync.document import ConfigFile, FileSignature, LocalSnapshot
from sync.identity import NodeIdentity, load_node_identity
from sync.orchestrator import RELOAD_NOTICE, SyncOrchestrator, SyncState, create_orchestrator

__all__ = [
    "ConfigFile",
    "FileSignature",
    "LocalSnapshot",
    "NodeIdentity",
    "load_node_identity",
    "RELOAD_NOTICE",
    "SyncOrchestrator",
    "SyncState",
    "create_orchestrator",
]
