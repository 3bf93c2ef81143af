"""
Reconciliation trigger endpoints.

POST /sync                   Cron-style trigger. Always 200 once authorized.
POST /v1/admin/force-update  Operator trigger; also returns the cycle trace.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from shared.models.domain import SyncResult
from shared.models.enums import SyncTrigger
from shared.utils.logging import get_logger
from shared.utils.trace import SyncTrace

from api.dependencies import get_pipeline, require_sync_secret
from sync.pipeline import SyncError, SyncPipeline

logger = get_logger(__name__)
router = APIRouter(tags=["sync"], dependencies=[Depends(require_sync_secret)])


class SyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    championship_id: Optional[str] = Field(default=None, alias="championshipId")


async def _run_soft(
    pipeline: SyncPipeline, body: Optional[SyncRequest], trigger: SyncTrigger, trace: SyncTrace
) -> SyncResult:
    """Run a cycle, turning any failure into an unsuccessful result."""
    championship_id = body.championship_id if body else None
    try:
        return await pipeline.run_cycle(championship_id, trace=trace, trigger=trigger)
    except SyncError as exc:
        logger.warning("sync_rejected", championship_id=championship_id, error=str(exc))
        trace.add("sync_rejected", str(exc), warning=True)
        return SyncResult(success=False, error=str(exc), logs=trace.lines)
    except Exception as exc:
        logger.error("sync_failed", championship_id=championship_id, error=str(exc), exc_info=True)
        trace.add("sync_failed", f"Sync failed: {exc}", warning=True)
        return SyncResult(success=False, error=str(exc), logs=trace.lines)


def _summary(result: SyncResult) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": result.success,
        "updates": result.updates,
        "checked": result.checked,
        "scored": result.scored,
    }
    if result.error:
        payload["error"] = result.error
    return payload


@router.post("/sync")
async def trigger_sync(
    body: Optional[SyncRequest] = None,
    pipeline: SyncPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    result = await _run_soft(pipeline, body, SyncTrigger.EXTERNAL, SyncTrace())
    return _summary(result)


@router.post("/v1/admin/force-update")
async def force_update(
    body: Optional[SyncRequest] = None,
    pipeline: SyncPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Run a cycle now and return what it did, line by line."""
    trace = SyncTrace()
    trace.add("force_update_requested", "Manual update requested")
    result = await _run_soft(pipeline, body, SyncTrigger.MANUAL, trace)
    return {**_summary(result), "logs": result.logs}
