"""
ConfSync Sync API Routes.

Status and manual triggers for the sync engine.
Requires Python 3.11+.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.dependencies import get_orchestrator, require_orchestrator, require_store
from config_store.base import ConfigStore
from sync.orchestrator import SyncOrchestrator
from utils.exceptions import StoreUnavailable
from utils.logger import get_logger

router = APIRouter()
logger = get_logger("api.sync")


class StatusResponse(BaseModel):
    """Response model for engine status."""

    node_id: str
    source_node_id: str
    state: str
    config_file: str
    watch_enabled: bool
    polling_enabled: bool
    poll_interval_seconds: float
    last_published_at: int | None = None
    last_pulled_at: int | None = None


class TriggerResponse(BaseModel):
    """Response model for manual publish/poll."""

    action: str
    changed: bool


class RecordResponse(BaseModel):
    """A stored config record."""

    node_id: str
    updated_at: int
    document: dict[Any, Any]


class RecordsResponse(BaseModel):
    """Response model for record listing."""

    records: list[RecordResponse]
    total: int


@router.get("/status", response_model=StatusResponse)
async def get_status() -> StatusResponse:
    """Current engine status, also reported when stopped."""
    orchestrator = get_orchestrator()
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Sync engine not configured")
    return StatusResponse(**orchestrator.status())


@router.post("/poll", response_model=TriggerResponse)
async def trigger_poll(
    orchestrator: SyncOrchestrator = Depends(require_orchestrator),
) -> TriggerResponse:
    """Poll the store now instead of waiting for the next period."""
    logger.info("manual_poll_requested", node_id=orchestrator.node_id)
    changed = await orchestrator.poll_once()
    return TriggerResponse(action="poll", changed=changed)


@router.post("/publish", response_model=TriggerResponse)
async def trigger_publish(
    orchestrator: SyncOrchestrator = Depends(require_orchestrator),
) -> TriggerResponse:
    """Publish the local config file now."""
    logger.info("manual_publish_requested", node_id=orchestrator.node_id)
    changed = await orchestrator.publish_local()
    return TriggerResponse(action="publish", changed=changed)


@router.get("/records", response_model=RecordsResponse)
async def list_records(
    store: ConfigStore = Depends(require_store),
) -> RecordsResponse:
    """All config records held by the shared store."""
    try:
        records = await store.list_records()
    except StoreUnavailable as e:
        logger.warning("list_records_failed", error=str(e))
        raise HTTPException(status_code=503, detail="Config store unavailable") from e

    return RecordsResponse(
        records=[RecordResponse(**r.to_dict()) for r in records],
        total=len(records),
    )
