"""
Dependency injection for the API service.
Provides the database, the sync pipeline, the optional in-process scheduler
and the trigger secret check to route handlers.
"""
from __future__ import annotations

import hmac
from typing import TYPE_CHECKING, Optional

from fastapi import Depends, Header, HTTPException, status

from shared.config import Settings, get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

from sync.pipeline import SyncPipeline

if TYPE_CHECKING:
    from scheduler.service import IntervalScheduler

logger = get_logger(__name__)

# Module-level singletons, initialized at startup
_db: DatabaseManager | None = None
_pipeline: SyncPipeline | None = None
_scheduler: Optional["IntervalScheduler"] = None


def init_dependencies(
    db: DatabaseManager,
    pipeline: SyncPipeline,
    scheduler: Optional["IntervalScheduler"] = None,
) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _db, _pipeline, _scheduler
    _db = db
    _pipeline = pipeline
    _scheduler = scheduler


def get_db() -> DatabaseManager:
    """FastAPI dependency: returns the shared DatabaseManager."""
    if _db is None:
        raise RuntimeError("DatabaseManager not initialized, call init_dependencies first")
    return _db


def get_pipeline() -> SyncPipeline:
    """FastAPI dependency: returns the shared SyncPipeline."""
    if _pipeline is None:
        raise RuntimeError("SyncPipeline not initialized, call init_dependencies first")
    return _pipeline


def get_scheduler() -> Optional["IntervalScheduler"]:
    """The in-process interval scheduler, or None when it runs as its own worker."""
    return _scheduler


def require_sync_secret(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Bearer check for trigger and admin routes.
    An unset secret rejects every call.
    """
    secret = settings.sync_secret
    if not secret:
        logger.warning("sync_secret_not_configured")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        logger.warning("sync_unauthorized")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
