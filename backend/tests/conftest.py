"""
Shared fixtures: settings, an in-memory SQLite database and row seeders.

Run: pytest backend/tests -v
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import pytest
import pytest_asyncio

from shared.config import Settings
from shared.models.orm import (
    ChampionshipORM,
    MatchORM,
    PredictionORM,
    SystemSettingsORM,
    UserORM,
    prediction_id,
)
from shared.utils.database import DatabaseManager

NOW = datetime(2026, 5, 10, 18, 0, tzinfo=timezone.utc)
SYNC_SECRET = "test-secret"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        db_create_schema=True,
        sync_secret=SYNC_SECRET,
        football_data_api_key="test-key",
        football_data_base_url="https://feed.test/v4",
        metrics_enabled=False,
        provider_max_retries=1,
    )


@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncIterator[DatabaseManager]:
    manager = DatabaseManager(settings)
    await manager.connect()
    try:
        yield manager
    finally:
        await manager.disconnect()


class Seeder:
    """Inserts rows with sensible defaults; keyword arguments override columns."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def _add(self, row: Any) -> Any:
        async with self._db.write_session() as session:
            session.add(row)
        return row

    async def championship(self, id: str = "bsa", **kw: Any) -> ChampionshipORM:
        values = {"name": "Brasileirão", "api_code": "BSA", "sync_mode": "auto", "status": "active"}
        values.update(kw)
        return await self._add(ChampionshipORM(id=id, **values))

    async def match(
        self,
        id: str,
        home: str = "Flamengo",
        away: str = "Palmeiras",
        championship_id: str = "bsa",
        **kw: Any,
    ) -> MatchORM:
        values = {
            "home_team_id": home.lower(),
            "away_team_id": away.lower(),
            "scheduled_at": NOW,
            "round": "1",
            "status": "scheduled",
            "last_updated_at": NOW,
            "is_manual_override": False,
            "betting_reopened": False,
        }
        values.update(kw)
        return await self._add(
            MatchORM(
                id=id,
                championship_id=championship_id,
                home_team_name=home,
                away_team_name=away,
                **values,
            )
        )

    async def user(self, id: str, display_name: Optional[str] = None, **kw: Any) -> UserORM:
        values = {"total_points": 0, "exact_scores": 0, "outcomes": 0}
        values.update(kw)
        return await self._add(UserORM(id=id, display_name=display_name or id.title(), **values))

    async def prediction(
        self,
        match_id: str,
        user_id: str,
        home: int,
        away: int,
        championship_id: str = "bsa",
        points: Optional[int] = None,
    ) -> PredictionORM:
        return await self._add(
            PredictionORM(
                id=prediction_id(match_id, user_id),
                match_id=match_id,
                user_id=user_id,
                championship_id=championship_id,
                predicted_home=home,
                predicted_away=away,
                points=points,
            )
        )

    async def system_settings(self, **kw: Any) -> SystemSettingsORM:
        return await self._add(SystemSettingsORM(id="config", **kw))

    # ── Readers ─────────────────────────────────────────────────────────

    async def get_match(self, match_id: str) -> MatchORM:
        async with self._db.read_session() as session:
            return await session.get(MatchORM, match_id)

    async def get_user(self, user_id: str) -> UserORM:
        async with self._db.read_session() as session:
            return await session.get(UserORM, user_id)

    async def get_prediction(self, match_id: str, user_id: str) -> PredictionORM:
        async with self._db.read_session() as session:
            return await session.get(PredictionORM, prediction_id(match_id, user_id))


@pytest.fixture
def seed(db: DatabaseManager) -> Seeder:
    return Seeder(db)
