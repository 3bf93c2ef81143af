"""
FastAPI application factory for the matchpool API service.

Creates the app with:
- Sync trigger routes (cron trigger, operator force update)
- Admin routes (finish match, runtime settings)
- Leaderboard route
- Middleware stack
- Health check endpoint
- Lifespan management (startup/shutdown)
- Optional in-process interval scheduler (MP_SELF_SCHEDULER_ENABLED)
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Optional

from fastapi import FastAPI

from shared.config import get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from api.dependencies import init_dependencies
from api.middleware import setup_middleware
from api.routes.admin import router as admin_router
from api.routes.ranking import router as ranking_router
from api.routes.sync import router as sync_router
from ingest.providers.football_data import FootballDataClient
from scheduler.service import IntervalScheduler
from sync.pipeline import SyncPipeline

logger = get_logger(__name__)


async def _connect_with_retry(connect_fn: Callable[[], Awaitable[None]], name: str) -> None:
    """Retry a startup connection so the container survives a slow database."""
    delays = (1, 2, 4, 8, 15)
    for attempt, delay in enumerate(delays, start=1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == len(delays):
                raise
            logger.warning("startup_connect_retry", target=name, attempt=attempt, error=str(exc))
            await asyncio.sleep(delay)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without a database."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Connects the database and feed client, wires the pipeline and optionally
    starts the interval scheduler; tears everything down on shutdown.
    """
    settings = get_settings()
    setup_logging("api")
    start_metrics_server(settings.metrics_port)

    db = DatabaseManager(settings)
    await _connect_with_retry(db.connect, "Database")

    feed = FootballDataClient(settings)
    await feed.start()

    pipeline = SyncPipeline(db, feed, settings)

    scheduler: Optional[IntervalScheduler] = None
    scheduler_task: Optional[asyncio.Task[None]] = None
    if settings.self_scheduler_enabled:
        scheduler = IntervalScheduler(pipeline, pipeline.settings_provider, settings)
        scheduler_task = asyncio.create_task(scheduler.run())

    init_dependencies(db, pipeline, scheduler)

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        self_scheduler=settings.self_scheduler_enabled,
    )

    yield

    # Shutdown
    if scheduler is not None and scheduler_task is not None:
        await scheduler.stop()
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass

    await feed.close()
    await db.disconnect()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without a database."""
    app = FastAPI(
        title="matchpool API",
        description="Prediction pool reconciliation and scoring",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Middleware
    setup_middleware(app)

    # REST routes
    app.include_router(sync_router)
    app.include_router(admin_router)
    app.include_router(ranking_router)

    # Health check
    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    return app


app = create_app()
