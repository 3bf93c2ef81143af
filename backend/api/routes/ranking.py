"""
Leaderboard endpoint.

GET /v1/ranking  Global ranking, or one championship's when championship_id is given.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_pipeline
from sync.pipeline import SyncPipeline

router = APIRouter(prefix="/v1/ranking", tags=["ranking"])


@router.get("")
async def get_ranking(
    championship_id: Optional[str] = Query(default=None),
    sort: str = Query(default="points", pattern="^(points|exact|outcomes)$"),
    limit: int = Query(default=100, ge=1, le=500),
    pipeline: SyncPipeline = Depends(get_pipeline),
) -> list[dict[str, Any]]:
    """Sorted by `sort`, ties broken by total points then display name."""
    entries = await pipeline.store.ranking(championship_id, sort=sort, limit=limit)
    return [
        {"position": position, **entry.model_dump()}
        for position, entry in enumerate(entries, start=1)
    ]
