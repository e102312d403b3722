"""
ConfSync API Dependencies.

Shared dependencies for FastAPI routes.
Requires Python 3.11+.
"""

from typing import Any

from fastapi import HTTPException

from config_store.base import ConfigStore
from sync.orchestrator import SyncOrchestrator, SyncState


# Shared state - populated by main.py lifespan
_state: dict[str, Any] = {}


def set_orchestrator(orchestrator: SyncOrchestrator | None) -> None:
    """Set the shared sync orchestrator instance."""
    _state["orchestrator"] = orchestrator


def get_orchestrator() -> SyncOrchestrator | None:
    """Get the shared sync orchestrator instance."""
    return _state.get("orchestrator")


def require_orchestrator() -> SyncOrchestrator:
    """
    Dependency that requires a running sync engine.

    Raises HTTPException if the engine is unavailable or stopped.
    """
    orchestrator = get_orchestrator()
    if orchestrator is None or orchestrator.state is not SyncState.RUNNING:
        raise HTTPException(
            status_code=503,
            detail="Sync engine not running",
        )
    return orchestrator


def set_store(store: ConfigStore | None) -> None:
    """Set the shared config store instance."""
    _state["store"] = store


def get_store() -> ConfigStore | None:
    """Get the shared config store instance."""
    return _state.get("store")


def require_store() -> ConfigStore:
    """
    Dependency that requires a connected config store.

    Raises HTTPException if the store is unavailable.
    """
    store = get_store()
    if store is None:
        raise HTTPException(
            status_code=503,
            detail="Config store connection unavailable",
        )
    return store
