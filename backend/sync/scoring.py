"""
Prediction scoring.

Points are written exactly once per prediction. The user totals move only by
SQL-level increments, and only after the conditional prediction update proved
that this call is the one that scored it.
"""
from __future__ import annotations

from sqlalchemy import select, update

from shared.models.orm import PredictionORM, UserORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.metrics import PREDICTIONS_SCORED

logger = get_logger(__name__)

EXACT_POINTS = 3
OUTCOME_POINTS = 1


def _outcome(home: int, away: int) -> int:
    return (home > away) - (home < away)


def calculate_points(pred_home: int, pred_away: int, final_home: int, final_away: int) -> int:
    """3 for the exact score, 1 for the right winner (or draw), else 0."""
    if pred_home == final_home and pred_away == final_away:
        return EXACT_POINTS
    if _outcome(pred_home, pred_away) == _outcome(final_home, final_away):
        return OUTCOME_POINTS
    return 0


class ScoringEngine:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def score_match(self, match_id: str, final_home: int, final_away: int) -> int:
        """
        Score every unscored prediction of a finished match in one transaction.

        Returns:
            Number of predictions scored by this call. Zero on re-invocation.
        """
        scored = 0
        async with self._db.write_session() as session:
            rows = (
                await session.execute(
                    select(
                        PredictionORM.id,
                        PredictionORM.user_id,
                        PredictionORM.predicted_home,
                        PredictionORM.predicted_away,
                    ).where(PredictionORM.match_id == match_id, PredictionORM.points.is_(None))
                )
            ).all()

            for row in rows:
                points = calculate_points(row.predicted_home, row.predicted_away, final_home, final_away)
                claimed = await session.execute(
                    update(PredictionORM)
                    .where(PredictionORM.id == row.id, PredictionORM.points.is_(None))
                    .values(points=points)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    # Scored concurrently by another invoker
                    continue
                scored += 1
                PREDICTIONS_SCORED.labels(points=str(points)).inc()
                if points == 0:
                    continue

                values = {"total_points": UserORM.total_points + points}
                if points == EXACT_POINTS:
                    values["exact_scores"] = UserORM.exact_scores + 1
                else:
                    values["outcomes"] = UserORM.outcomes + 1
                bumped = await session.execute(
                    update(UserORM)
                    .where(UserORM.id == row.user_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if bumped.rowcount != 1:
                    logger.warning("scoring_user_missing", user_id=row.user_id, match_id=match_id)

        logger.info(
            "match_scored", match_id=match_id, final_score=f"{final_home}-{final_away}", predictions=scored,
        )
        return scored
