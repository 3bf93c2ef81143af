"""
Runtime-tunable settings kept in the `system_settings` row.

Distinct from the env-driven `shared.config.Settings`: these are edited by
operators while the service runs.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from shared.models.domain import SystemSettings
from shared.models.enums import ScorePriority
from shared.models.orm import SystemSettingsORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)

SETTINGS_ROW_ID = "config"


class SettingsProvider:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get(self) -> SystemSettings:
        """Current settings. A missing row or an invalid field falls back to the default."""
        async with self._db.read_session() as session:
            row = await session.get(SystemSettingsORM, SETTINGS_ROW_ID)
        if row is None:
            return SystemSettings()
        return SystemSettings(
            api_update_interval=_valid_interval(row.api_update_interval),
            score_priority=_valid_priority(row.score_priority),
        )

    async def update(
        self,
        api_update_interval: Optional[int] = None,
        score_priority: Optional[ScorePriority] = None,
    ) -> SystemSettings:
        current = await self.get()
        merged = SystemSettings(
            api_update_interval=api_update_interval or current.api_update_interval,
            score_priority=score_priority or current.score_priority,
        )
        async with self._db.write_session() as session:
            row = await session.get(SystemSettingsORM, SETTINGS_ROW_ID)
            if row is None:
                row = SystemSettingsORM(id=SETTINGS_ROW_ID)
                session.add(row)
            row.api_update_interval = merged.api_update_interval
            row.score_priority = merged.score_priority.value
            row.updated_at = datetime.now(timezone.utc)
        logger.info(
            "system_settings_updated",
            api_update_interval=merged.api_update_interval,
            score_priority=merged.score_priority.value,
        )
        return merged


def _valid_interval(value: Optional[int]) -> int:
    default = SystemSettings().api_update_interval
    if value is None:
        return default
    if value < 1:
        logger.warning("system_settings_invalid_field", field="api_update_interval", value=value)
        return default
    return value


def _valid_priority(value: Optional[str]) -> ScorePriority:
    if value is None:
        return ScorePriority.REGULAR
    try:
        return ScorePriority(value)
    except ValueError:
        logger.warning("system_settings_invalid_field", field="score_priority", value=value)
        return ScorePriority.REGULAR
