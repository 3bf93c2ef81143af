"""
Persist reconciler diffs in bounded transactions.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterator, Sequence, TypeVar

from sqlalchemy import update

from shared.models.domain import MatchDiff
from shared.models.orm import MatchORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.metrics import MATCH_WRITE_BATCHES

logger = get_logger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most `size` items."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(items), size):
        yield items[start : start + size]


class BatchedWriter:
    """
    Applies diffs as single-row updates, `batch_size` per committed transaction.

    Chunks commit in order. If one fails, the error propagates and earlier
    chunks stay committed; the next reconciliation rediscovers the rest.
    """

    def __init__(self, db: DatabaseManager, batch_size: int = 500) -> None:
        self._db = db
        self._batch_size = batch_size

    async def apply(self, diffs: Sequence[MatchDiff], now: datetime | None = None) -> int:
        """Write every diff; returns the number of match rows updated."""
        if not diffs:
            return 0
        stamp = now or datetime.now(timezone.utc)
        written = 0
        for batch_no, batch in enumerate(chunked(diffs, self._batch_size), start=1):
            async with self._db.write_session() as session:
                for diff in batch:
                    values = diff.changes()
                    values["last_updated_at"] = stamp
                    await session.execute(
                        update(MatchORM)
                        .where(MatchORM.id == diff.match_id)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
            MATCH_WRITE_BATCHES.inc()
            written += len(batch)
            logger.debug("match_batch_committed", batch=batch_no, size=len(batch))
        logger.info("match_diffs_applied", updates=written, batch_size=self._batch_size)
        return written
