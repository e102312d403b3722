"""
ConfSync Node Identity.

Stable identifier of the running node, kept across restarts.
Requires Python 3.11+.
"""

import os
import uuid
from dataclasses import dataclass
from pathlib import Path

from utils.config import SyncSettings
from utils.exceptions import LocalIOFailure
from utils.logger import get_logger

logger = get_logger("sync.identity")


@dataclass(frozen=True, slots=True)
class NodeIdentity:
    """Identity of one node sharing the config store."""

    node_id: str

    def __post_init__(self) -> None:
        if not self.node_id or not self.node_id.strip():
            raise ValueError("node_id must be a non-empty string")

    def __str__(self) -> str:
        return self.node_id


def load_node_identity(settings: SyncSettings) -> NodeIdentity:
    """
    Resolve this node's identity.

    An explicit SYNC_NODE_ID wins. Otherwise the id stored in the node id
    file is used, generating and persisting a new UUID on first start.

    Raises:
        LocalIOFailure: If the node id file cannot be read or created
    """
    if settings.node_id:
        return NodeIdentity(settings.node_id)
    return _read_or_create(settings.node_id_file)


def _read_or_create(path: Path) -> NodeIdentity:
    try:
        existing = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        existing = ""
    except OSError as e:
        raise LocalIOFailure("cannot read node id file", path, cause=e) from e

    if existing:
        return NodeIdentity(existing)

    node_id = str(uuid.uuid4())
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Exclusive create so two processes starting together agree on one id
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    except FileExistsError:
        existing = path.read_text(encoding="utf-8").strip()
        if existing:
            return NodeIdentity(existing)
        # Left empty by an interrupted start
        fd = os.open(path, os.O_WRONLY | os.O_TRUNC)
    except OSError as e:
        raise LocalIOFailure("cannot create node id file", path, cause=e) from e

    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(node_id + "\n")

    logger.info("node_id_generated", node_id=node_id, path=str(path))
    return NodeIdentity(node_id)
