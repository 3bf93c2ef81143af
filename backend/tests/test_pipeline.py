"""
End-to-end reconciliation cycle tests: SQLite store, mocked feed.

Run: pytest backend/tests/test_pipeline.py -v
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import AsyncIterator, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import Settings
from shared.models.domain import FeedFilter, FeedMatch, FeedScore, MatchRecord, TeamRef
from shared.models.enums import FeedDuration, MatchStatus, SyncTrigger
from shared.utils.database import DatabaseManager
from shared.utils.trace import SyncTrace
from sync.pipeline import SyncError, SyncPipeline, has_pending_work
from sync.writer import BatchedWriter

from conftest import NOW, Seeder


def feed_match(
    external_id: str = "501",
    status: MatchStatus = MatchStatus.FINISHED,
    full: tuple[Optional[int], Optional[int]] = (2, 1),
    home: str = "Flamengo",
    away: str = "Palmeiras",
    kickoff=NOW - timedelta(hours=2),
) -> FeedMatch:
    return FeedMatch(
        external_id=external_id,
        home_team_name=home,
        away_team_name=away,
        raw_status=status.value.upper(),
        status=status,
        duration=FeedDuration.REGULAR,
        full_time=FeedScore(home=full[0], away=full[1]),
        kickoff_time=kickoff,
        competition_code="BSA",
    )


def make_feed(*matches: FeedMatch) -> AsyncMock:
    feed = AsyncMock()
    feed.fetch_matches.return_value = list(matches)
    return feed


def sent_filter(feed: AsyncMock) -> FeedFilter:
    return feed.fetch_matches.call_args.args[0]


# ── has_pending_work ────────────────────────────────────────────────────

def _record(status: MatchStatus, kickoff_offset: timedelta) -> MatchRecord:
    return MatchRecord(
        id="m",
        championship_id="c",
        home_team=TeamRef(id="h", name="H"),
        away_team=TeamRef(id="a", name="A"),
        scheduled_at=NOW + kickoff_offset,
        status=status,
    )


def test_pending_work_live() -> None:
    assert has_pending_work([_record(MatchStatus.LIVE, timedelta(hours=-1))], NOW)


def test_pending_work_overdue_kickoff() -> None:
    assert has_pending_work([_record(MatchStatus.SCHEDULED, timedelta(minutes=-1))], NOW)


def test_no_pending_work_before_kickoff() -> None:
    assert not has_pending_work([_record(MatchStatus.SCHEDULED, timedelta(minutes=30))], NOW)


# ── Full sweep ──────────────────────────────────────────────────────────

async def _seed_pool(seed: Seeder) -> None:
    await seed.championship()
    await seed.match("m1", external_id="501", status="live", home_score=1, away_score=1,
                     scheduled_at=NOW - timedelta(hours=2))
    await seed.user("ana")
    await seed.user("bruno")
    await seed.prediction("m1", "ana", 2, 1)
    await seed.prediction("m1", "bruno", 0, 1)


@pytest.mark.asyncio
async def test_cycle_finishes_match_and_scores(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await _seed_pool(seed)
    feed = make_feed(feed_match())
    pipeline = SyncPipeline(db, feed, settings)

    result = await pipeline.run_cycle(now=NOW)

    assert result.success
    assert (result.checked, result.updates, result.scored) == (1, 1, 2)
    row = await seed.get_match("m1")
    assert (row.status, row.home_score, row.away_score) == ("finished", 2, 1)
    assert (await seed.get_user("ana")).total_points == 3
    assert (await seed.get_user("bruno")).total_points == 0
    assert result.logs


@pytest.mark.asyncio
async def test_cycle_builds_feed_window_and_codes(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await _seed_pool(seed)
    feed = make_feed()
    await SyncPipeline(db, feed, settings).run_cycle(now=NOW)

    f = sent_filter(feed)
    assert f.competition_codes == {"BSA"}
    assert f.date_from == date(2026, 5, 9)
    assert f.date_to == date(2026, 5, 11)


@pytest.mark.asyncio
async def test_second_cycle_changes_nothing(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await _seed_pool(seed)
    feed = make_feed(feed_match())
    pipeline = SyncPipeline(db, feed, settings)

    await pipeline.run_cycle(now=NOW)
    again = await pipeline.run_cycle(now=NOW + timedelta(minutes=3))

    assert (again.updates, again.scored) == (0, 0)
    assert again.checked == 1  # still inside the finished lookback
    assert (await seed.get_user("ana")).total_points == 3


@pytest.mark.asyncio
async def test_manual_championships_are_not_swept(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await seed.championship(sync_mode="manual")
    await seed.match("m1", status="live", home_score=0, away_score=0)
    feed = make_feed(feed_match())

    result = await SyncPipeline(db, feed, settings).run_cycle(now=NOW)

    assert result.checked == 0
    feed.fetch_matches.assert_not_awaited()


@pytest.mark.asyncio
async def test_matches_outside_active_window_are_ignored(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await seed.championship()
    await seed.match("tomorrow", scheduled_at=NOW + timedelta(days=1))
    await seed.match("old-final", status="finished", home_score=1, away_score=0,
                     last_updated_at=NOW - timedelta(hours=3))
    feed = make_feed()

    result = await SyncPipeline(db, feed, settings).run_cycle(now=NOW)

    assert result.checked == 0
    feed.fetch_matches.assert_not_awaited()


@pytest.mark.asyncio
async def test_manual_override_survives_cycle(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await seed.championship()
    await seed.match("m1", external_id="501", status="live", home_score=0, away_score=0,
                     is_manual_override=True)
    feed = make_feed(feed_match(full=(5, 0)))

    result = await SyncPipeline(db, feed, settings).run_cycle(now=NOW)

    assert result.updates == 0
    row = await seed.get_match("m1")
    assert (row.status, row.home_score) == ("live", 0)


@pytest.mark.asyncio
async def test_smart_link_converges(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await seed.championship()
    await seed.match("m1", external_id=None, scheduled_at=NOW - timedelta(minutes=10))
    feed = make_feed(feed_match("777", status=MatchStatus.LIVE, full=(0, 0), kickoff=NOW - timedelta(minutes=10)))
    pipeline = SyncPipeline(db, feed, settings)

    first = await pipeline.run_cycle(now=NOW)
    second = await pipeline.run_cycle(now=NOW + timedelta(minutes=1))

    assert first.updates == 1
    assert second.updates == 0
    assert (await seed.get_match("m1")).external_id == "777"


@pytest.mark.asyncio
async def test_long_api_code_falls_back_to_global_query(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await seed.championship(api_code="legacy-2013")
    await seed.match("m1", status="live", home_score=0, away_score=0)
    feed = make_feed()

    await SyncPipeline(db, feed, settings).run_cycle(now=NOW)

    assert sent_filter(feed).competition_codes == set()


# ── Interval mode ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_require_pending_skips_feed_before_kickoff(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await seed.championship()
    await seed.match("m1", scheduled_at=NOW + timedelta(minutes=30))
    feed = make_feed()

    result = await SyncPipeline(db, feed, settings).run_cycle(
        require_pending=True, now=NOW, trigger=SyncTrigger.INTERVAL
    )

    assert result.skipped
    feed.fetch_matches.assert_not_awaited()


@pytest.mark.asyncio
async def test_require_pending_runs_after_kickoff(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await seed.championship()
    await seed.match("m1", external_id="501", scheduled_at=NOW - timedelta(minutes=5))
    feed = make_feed(feed_match(status=MatchStatus.LIVE, full=(0, 0), kickoff=NOW - timedelta(minutes=5)))

    result = await SyncPipeline(db, feed, settings).run_cycle(require_pending=True, now=NOW)

    assert not result.skipped
    assert result.updates == 1


# ── Scoped sync ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_scoped_sync_reaches_future_matches(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await seed.championship(sync_mode="manual")
    await seed.match("next-week", external_id="501", scheduled_at=NOW + timedelta(days=7))
    await seed.match("done", external_id="502", status="finished", home_score=1, away_score=0)
    moved = NOW + timedelta(days=8)
    feed = make_feed(feed_match(status=MatchStatus.SCHEDULED, full=(None, None), kickoff=moved))

    trace = SyncTrace()
    result = await SyncPipeline(db, feed, settings).run_cycle("bsa", now=NOW, trace=trace)

    assert result.checked == 1
    assert result.updates == 1
    f = sent_filter(feed)
    assert f.competition_codes == {"BSA"}
    assert f.date_from is None and f.date_to is None
    row = await seed.get_match("next-week")
    assert row.scheduled_at.replace(tzinfo=None) == moved.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_scoped_sync_unknown_championship(db: DatabaseManager, settings: Settings) -> None:
    with pytest.raises(SyncError):
        await SyncPipeline(db, make_feed(), settings).run_cycle("nope", now=NOW)


@pytest.mark.asyncio
async def test_scoped_sync_requires_code(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await seed.championship(api_code=None)
    with pytest.raises(SyncError):
        await SyncPipeline(db, make_feed(), settings).run_cycle("bsa", now=NOW)


# ── Failures ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_write_failure_propagates(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await _seed_pool(seed)
    pipeline = SyncPipeline(db, make_feed(feed_match()), settings)
    pipeline.writer = AsyncMock()
    pipeline.writer.apply.side_effect = RuntimeError("db down")

    with pytest.raises(RuntimeError, match="db down"):
        await pipeline.run_cycle(now=NOW)
    assert (await seed.get_user("ana")).total_points == 0


class FailingWrites:
    """Delegates to a DatabaseManager but fails the Nth write transaction."""

    def __init__(self, db: DatabaseManager, fail_on: int) -> None:
        self._db = db
        self._fail_on = fail_on
        self.calls = 0

    @asynccontextmanager
    async def write_session(self) -> AsyncIterator[AsyncSession]:
        self.calls += 1
        if self.calls == self._fail_on:
            raise RuntimeError("commit failed")
        async with self._db.write_session() as session:
            yield session


# ── Resuming after a failed cycle ───────────────────────────────────────

@pytest.mark.asyncio
async def test_scoring_failure_is_resumed_next_cycle(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await _seed_pool(seed)
    pipeline = SyncPipeline(db, make_feed(feed_match()), settings)
    score_match = pipeline.scoring.score_match
    pipeline.scoring.score_match = AsyncMock(side_effect=RuntimeError("db blip"))

    with pytest.raises(RuntimeError, match="db blip"):
        await pipeline.run_cycle(now=NOW)
    assert (await seed.get_match("m1")).status == "finished"
    assert (await seed.get_prediction("m1", "ana")).points is None

    pipeline.scoring.score_match = score_match
    again = await pipeline.run_cycle(now=NOW + timedelta(minutes=3))

    assert (again.updates, again.scored) == (0, 2)
    assert (await seed.get_prediction("m1", "ana")).points == 3
    assert (await seed.get_prediction("m1", "bruno")).points == 0
    assert (await seed.get_user("ana")).total_points == 3

    third = await pipeline.run_cycle(now=NOW + timedelta(minutes=6))
    assert third.scored == 0
    assert (await seed.get_user("ana")).total_points == 3


@pytest.mark.asyncio
async def test_failed_later_batch_is_resumed_next_cycle(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await seed.championship()
    await seed.match("m1", external_id="501", status="live", home_score=1, away_score=1,
                     scheduled_at=NOW - timedelta(hours=2))
    await seed.match("m2", external_id="502", status="live", home_score=0, away_score=0,
                     scheduled_at=NOW - timedelta(hours=1))
    await seed.user("ana")
    await seed.prediction("m1", "ana", 2, 1)
    await seed.prediction("m2", "ana", 1, 0)
    feed = make_feed(
        feed_match("501", full=(2, 1), kickoff=NOW - timedelta(hours=2)),
        feed_match("502", full=(3, 0), kickoff=NOW - timedelta(hours=1)),
    )
    one_per_batch = settings.model_copy(update={"sync_batch_size": 1})
    pipeline = SyncPipeline(db, feed, one_per_batch, writer=BatchedWriter(FailingWrites(db, fail_on=2), 1))

    with pytest.raises(RuntimeError, match="commit failed"):
        await pipeline.run_cycle(now=NOW)
    assert (await seed.get_match("m1")).status == "finished"
    assert (await seed.get_match("m2")).status == "live"

    pipeline.writer = BatchedWriter(db, 1)
    again = await pipeline.run_cycle(now=NOW + timedelta(minutes=3))

    assert (again.updates, again.scored) == (1, 2)
    assert (await seed.get_match("m2")).status == "finished"
    ana = await seed.get_user("ana")
    assert (ana.total_points, ana.exact_scores, ana.outcomes) == (4, 1, 1)


@pytest.mark.asyncio
async def test_pending_scores_settle_without_feed_work(db: DatabaseManager, seed: Seeder, settings: Settings) -> None:
    await seed.championship()
    await seed.match("m1", external_id="501", status="finished", home_score=2, away_score=1,
                     scheduled_at=NOW - timedelta(hours=2), last_updated_at=NOW - timedelta(minutes=10))
    await seed.user("ana")
    await seed.prediction("m1", "ana", 2, 1)
    feed = make_feed()

    result = await SyncPipeline(db, feed, settings).run_cycle(
        require_pending=True, now=NOW, trigger=SyncTrigger.INTERVAL
    )

    assert result.skipped
    assert result.scored == 1
    feed.fetch_matches.assert_not_awaited()
    assert (await seed.get_user("ana")).total_points == 3
