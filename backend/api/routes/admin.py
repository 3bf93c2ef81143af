"""
Operator endpoints.

POST /v1/admin/matches/{match_id}/finish  Store a final result and score it.
GET  /v1/admin/settings                   Runtime settings.
PUT  /v1/admin/settings                   Update runtime settings.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import ScorePriority
from shared.utils.logging import get_logger

from api.dependencies import get_pipeline, get_scheduler, require_sync_secret
from scheduler.service import IntervalScheduler
from sync.pipeline import SyncPipeline

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/admin", tags=["admin"], dependencies=[Depends(require_sync_secret)])


class FinishMatchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    home_score: int = Field(ge=0, alias="homeScore")
    away_score: int = Field(ge=0, alias="awayScore")


class SettingsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_update_interval: Optional[int] = Field(default=None, ge=1, alias="apiUpdateInterval")
    score_priority: Optional[ScorePriority] = Field(default=None, alias="scorePriority")


@router.post("/matches/{match_id}/finish")
async def finish_match(
    match_id: str,
    body: FinishMatchRequest,
    pipeline: SyncPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    found = await pipeline.store.mark_finished(match_id, body.home_score, body.away_score)
    if not found:
        raise HTTPException(status_code=404, detail=f"Match {match_id} not found")
    scored = await pipeline.scoring.score_match(match_id, body.home_score, body.away_score)
    return {"success": True, "matchId": match_id, "scored": scored}


@router.get("/settings")
async def read_settings(pipeline: SyncPipeline = Depends(get_pipeline)) -> dict[str, Any]:
    current = await pipeline.settings_provider.get()
    return current.model_dump(by_alias=True, mode="json")


@router.put("/settings")
async def update_settings(
    body: SettingsUpdate,
    pipeline: SyncPipeline = Depends(get_pipeline),
    scheduler: Optional[IntervalScheduler] = Depends(get_scheduler),
) -> dict[str, Any]:
    updated = await pipeline.settings_provider.update(
        api_update_interval=body.api_update_interval,
        score_priority=body.score_priority,
    )
    if scheduler is not None:
        scheduler.set_interval_minutes(updated.api_update_interval)
    return updated.model_dump(by_alias=True, mode="json")
