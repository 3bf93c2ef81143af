"""
Read/write access to championships, matches and the leaderboard.
"""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, case, func, or_, select, update

from shared.models.domain import ChampionshipRecord, MatchRecord, RankingEntry
from shared.models.enums import MatchStatus, SyncMode
from shared.models.orm import ChampionshipORM, MatchORM, PredictionORM, UserORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)

RANKING_SORTS = ("points", "exact", "outcomes")


def utc_day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class MatchStore:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # ── Championships ───────────────────────────────────────────────────

    async def syncable_championships(self) -> list[ChampionshipRecord]:
        """Championships whose sync mode is hybrid or auto."""
        synced = [m.value for m in SyncMode if m.is_synced]
        async with self._db.read_session() as session:
            rows = (
                await session.execute(
                    select(ChampionshipORM).where(ChampionshipORM.sync_mode.in_(synced))
                )
            ).scalars().all()
        return [ChampionshipRecord.model_validate(row) for row in rows]

    async def get_championship(self, championship_id: str) -> Optional[ChampionshipRecord]:
        async with self._db.read_session() as session:
            row = await session.get(ChampionshipORM, championship_id)
        return ChampionshipRecord.model_validate(row) if row else None

    # ── Matches ─────────────────────────────────────────────────────────

    async def active_matches(
        self,
        championship_ids: list[str],
        now: datetime,
        finished_lookback: timedelta = timedelta(minutes=60),
    ) -> list[MatchRecord]:
        """
        The working set of a full sweep: live or suspended matches, scheduled
        or postponed matches kicking off today (UTC), and matches that finished
        within `finished_lookback`.
        """
        if not championship_ids:
            return []
        day_start, day_end = utc_day_bounds(now)
        stmt = (
            select(MatchORM)
            .where(
                MatchORM.championship_id.in_(championship_ids),
                or_(
                    MatchORM.status.in_([MatchStatus.LIVE.value, MatchStatus.SUSPENDED.value]),
                    and_(
                        MatchORM.status.in_([MatchStatus.SCHEDULED.value, MatchStatus.POSTPONED.value]),
                        MatchORM.scheduled_at >= day_start,
                        MatchORM.scheduled_at < day_end,
                    ),
                    and_(
                        MatchORM.status == MatchStatus.FINISHED.value,
                        MatchORM.last_updated_at >= now - finished_lookback,
                    ),
                ),
            )
            .order_by(MatchORM.scheduled_at)
        )
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [MatchRecord.from_orm_row(row) for row in rows]

    async def schedule_matches(self, championship_id: str) -> list[MatchRecord]:
        """Every non-terminal match of one championship, regardless of date."""
        terminal = [s.value for s in MatchStatus if s.is_terminal]
        async with self._db.read_session() as session:
            rows = (
                await session.execute(
                    select(MatchORM)
                    .where(
                        MatchORM.championship_id == championship_id,
                        MatchORM.status.not_in(terminal),
                    )
                    .order_by(MatchORM.scheduled_at)
                )
            ).scalars().all()
        return [MatchRecord.from_orm_row(row) for row in rows]

    async def get_match(self, match_id: str) -> Optional[MatchRecord]:
        async with self._db.read_session() as session:
            row = await session.get(MatchORM, match_id)
        return MatchRecord.from_orm_row(row) if row else None

    async def finished_unscored(self, championship_ids: list[str]) -> list[MatchRecord]:
        """Finished matches with a stored final score and at least one prediction still unscored."""
        if not championship_ids:
            return []
        pending = select(PredictionORM.match_id).where(PredictionORM.points.is_(None))
        stmt = (
            select(MatchORM)
            .where(
                MatchORM.championship_id.in_(championship_ids),
                MatchORM.status == MatchStatus.FINISHED.value,
                MatchORM.home_score.is_not(None),
                MatchORM.away_score.is_not(None),
                MatchORM.id.in_(pending),
            )
            .order_by(MatchORM.scheduled_at)
        )
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [MatchRecord.from_orm_row(row) for row in rows]

    async def mark_finished(
        self, match_id: str, home_score: int, away_score: int, now: datetime | None = None
    ) -> bool:
        """Store a final result entered by an operator. Returns False for an unknown match."""
        async with self._db.write_session() as session:
            result = await session.execute(
                update(MatchORM)
                .where(MatchORM.id == match_id)
                .values(
                    status=MatchStatus.FINISHED.value,
                    home_score=home_score,
                    away_score=away_score,
                    last_updated_at=now or datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
        found = result.rowcount == 1
        if found:
            logger.info("match_marked_finished", match_id=match_id, score=f"{home_score}-{away_score}")
        return found

    # ── Leaderboard ─────────────────────────────────────────────────────

    async def ranking(
        self, championship_id: str | None = None, sort: str = "points", limit: int = 100
    ) -> list[RankingEntry]:
        """
        Global ranking from the user counters, or one championship's ranking
        summed from its scored predictions.
        """
        if sort not in RANKING_SORTS:
            raise ValueError(f"sort must be one of {', '.join(RANKING_SORTS)}")

        if championship_id is None:
            points_col = UserORM.total_points
            exact_col = UserORM.exact_scores
            outcomes_col = UserORM.outcomes
            stmt = select(
                UserORM.id.label("user_id"),
                UserORM.display_name,
                points_col.label("total_points"),
                exact_col.label("exact_scores"),
                outcomes_col.label("outcomes"),
            )
        else:
            points_col = func.coalesce(func.sum(PredictionORM.points), 0)
            exact_col = func.coalesce(func.sum(case((PredictionORM.points == 3, 1), else_=0)), 0)
            outcomes_col = func.coalesce(func.sum(case((PredictionORM.points == 1, 1), else_=0)), 0)
            stmt = (
                select(
                    UserORM.id.label("user_id"),
                    UserORM.display_name,
                    points_col.label("total_points"),
                    exact_col.label("exact_scores"),
                    outcomes_col.label("outcomes"),
                )
                .join(PredictionORM, PredictionORM.user_id == UserORM.id)
                .where(
                    PredictionORM.championship_id == championship_id,
                    PredictionORM.points.is_not(None),
                )
                .group_by(UserORM.id, UserORM.display_name)
            )

        primary = {"points": points_col, "exact": exact_col, "outcomes": outcomes_col}[sort]
        stmt = stmt.order_by(primary.desc(), points_col.desc(), UserORM.display_name).limit(limit)

        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).all()
        return [
            RankingEntry(
                user_id=row.user_id,
                display_name=row.display_name,
                total_points=int(row.total_points or 0),
                exact_scores=int(row.exact_scores or 0),
                outcomes=int(row.outcomes or 0),
            )
            for row in rows
        ]
