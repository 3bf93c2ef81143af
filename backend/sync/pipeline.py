"""
The reconciliation cycle shared by every trigger.

collect -> fetch -> reconcile -> apply -> score. Fetching and writing never
interleave: the full diff set exists before the first write.
"""
from __future__ import annotations

import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, Sequence

from shared.config import Settings, get_settings
from shared.models.domain import FeedFilter, FeedMatch, MatchRecord, SyncResult
from shared.models.enums import MatchStatus, SyncTrigger
from shared.utils.database import DatabaseManager
from shared.utils.logging import bind_cycle_context, clear_cycle_context, get_logger
from shared.utils.metrics import ACTIVE_MATCHES, SYNC_CYCLE_DURATION, SYNC_CYCLES, SYNC_DIFFS
from shared.utils.trace import SyncTrace

from sync.reconciler import reconcile
from sync.scoring import ScoringEngine
from sync.settings import SettingsProvider
from sync.store import MatchStore
from sync.writer import BatchedWriter

logger = get_logger(__name__)


class SyncError(Exception):
    """Invalid input for a reconciliation cycle (unknown championship, no feed code)."""


class FeedClient(Protocol):
    async def fetch_matches(
        self, feed_filter: FeedFilter, trace: SyncTrace | None = None
    ) -> list[FeedMatch]: ...


def has_pending_work(matches: Sequence[MatchRecord], now: datetime) -> bool:
    """True while something is live or a scheduled kickoff has passed."""
    for match in matches:
        if match.status == MatchStatus.LIVE:
            return True
        if match.status == MatchStatus.SCHEDULED and match.scheduled_at <= now:
            return True
    return False


class SyncPipeline:
    def __init__(
        self,
        db: DatabaseManager,
        feed: FeedClient,
        settings: Settings | None = None,
        *,
        store: MatchStore | None = None,
        writer: BatchedWriter | None = None,
        scoring: ScoringEngine | None = None,
        settings_provider: SettingsProvider | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._feed = feed
        self.store = store or MatchStore(db)
        self.writer = writer or BatchedWriter(db, self._settings.sync_batch_size)
        self.scoring = scoring or ScoringEngine(db)
        self.settings_provider = settings_provider or SettingsProvider(db)

    async def run_cycle(
        self,
        championship_id: Optional[str] = None,
        *,
        require_pending: bool = False,
        now: datetime | None = None,
        trace: SyncTrace | None = None,
        trigger: SyncTrigger = SyncTrigger.EXTERNAL,
    ) -> SyncResult:
        """
        Run one reconciliation cycle.

        Args:
            championship_id: Limit the cycle to one championship's open schedule.
                None sweeps every hybrid/auto championship's active matches.
            require_pending: Skip the feed unless a match is live or overdue.
            now: Clock override.
            trace: Collects operator-facing progress lines.
            trigger: Who started the cycle; used for logs and metrics.

        Raises:
            SyncError: Unknown championship or championship without a feed code.
            Exception: Persistence failures propagate unchanged.
        """
        now = now or datetime.now(timezone.utc)
        trace = trace if trace is not None else SyncTrace()
        bind_cycle_context(uuid.uuid4().hex[:12], trigger.value)
        start = time.perf_counter()
        outcome = "error"
        try:
            result = await self._run(championship_id, require_pending, now, trace)
            outcome = "skipped" if result.skipped else "ok"
            result.logs = trace.lines
            logger.info(
                "sync_cycle_completed",
                championship_id=championship_id,
                checked=result.checked,
                updates=result.updates,
                scored=result.scored,
                skipped=result.skipped,
            )
            return result
        finally:
            SYNC_CYCLES.labels(trigger=trigger.value, outcome=outcome).inc()
            SYNC_CYCLE_DURATION.labels(trigger=trigger.value).observe(time.perf_counter() - start)
            clear_cycle_context()

    async def _run(
        self, championship_id: Optional[str], require_pending: bool, now: datetime, trace: SyncTrace
    ) -> SyncResult:
        # ── Collect ─────────────────────────────────────────────────────
        if championship_id is not None:
            matches, feed_filter, scope = await self._collect_scoped(championship_id, trace)
        else:
            matches, feed_filter, scope = await self._collect_sweep(now, trace)
        ACTIVE_MATCHES.set(len(matches))

        if not matches:
            trace.add("sync_nothing_active", "No active matches to check")
            return SyncResult(checked=0, scored=await self._score_backlog(scope, trace))

        if require_pending and not has_pending_work(matches, now):
            trace.add("sync_no_pending_work", "Nothing live or overdue, feed not queried")
            return SyncResult(
                checked=len(matches), skipped=True, scored=await self._score_backlog(scope, trace)
            )

        system = await self.settings_provider.get()

        # ── Fetch ───────────────────────────────────────────────────────
        feed = await self._feed.fetch_matches(feed_filter, trace)
        trace.add("feed_fetched", f"Feed returned {len(feed)} matches", count=len(feed))

        # ── Reconcile ───────────────────────────────────────────────────
        diffs = reconcile(
            matches,
            feed,
            score_priority=system.score_priority,
            drift_tolerance=timedelta(minutes=self._settings.sync_date_drift_minutes),
            trace=trace,
        )
        SYNC_DIFFS.inc(len(diffs))

        # ── Apply ───────────────────────────────────────────────────────
        updates = await self.writer.apply(diffs, now=now)
        if updates:
            trace.add("sync_applied", f"Saved {updates} match updates", updates=updates)

        # ── Score ───────────────────────────────────────────────────────
        scored = 0
        for diff in diffs:
            if not diff.finished_transition or diff.final_score is None:
                continue
            home, away = diff.final_score
            count = await self.scoring.score_match(diff.match_id, home, away)
            scored += count
            trace.add(
                "sync_match_scored",
                f"Match {diff.match_id} finished {home}-{away}: scored {count} predictions",
                match_id=diff.match_id,
            )
        scored += await self._score_backlog(scope, trace)

        return SyncResult(updates=updates, checked=len(matches), scored=scored)

    async def _score_backlog(self, championship_ids: list[str], trace: SyncTrace) -> int:
        """
        Score finished matches whose predictions are still unscored.

        A cycle that dies between committing a finish and scoring it leaves the
        match finished with no transition left to observe; this picks it up on
        any later cycle over the same championships.
        """
        scored = 0
        for match in await self.store.finished_unscored(championship_ids):
            count = await self.scoring.score_match(match.id, match.home_score, match.away_score)
            scored += count
            if count:
                trace.add(
                    "sync_backlog_scored",
                    f"Match {match.id} {match.home_score}-{match.away_score}: "
                    f"scored {count} pending predictions",
                    match_id=match.id,
                )
        return scored

    async def _collect_sweep(
        self, now: datetime, trace: SyncTrace
    ) -> tuple[list[MatchRecord], FeedFilter, list[str]]:
        championships = await self.store.syncable_championships()
        if not championships:
            trace.add("sync_no_championships", "No championships in hybrid or auto mode")
            return [], FeedFilter(), []

        scope = [c.id for c in championships]
        matches = await self.store.active_matches(
            scope,
            now,
            finished_lookback=timedelta(minutes=self._settings.sync_finished_lookback_minutes),
        )
        codes = {c.feed_code for c in championships if c.feed_code}
        today = now.astimezone(timezone.utc).date()
        oldest = min((m.scheduled_at.date() for m in matches), default=today)
        feed_filter = FeedFilter(
            competition_codes=codes,
            date_from=min(oldest, today) - timedelta(days=1),
            date_to=today + timedelta(days=1),
        )
        trace.add(
            "sync_collected",
            f"{len(matches)} active matches across {len(championships)} championships",
            matches=len(matches),
        )
        return matches, feed_filter, scope

    async def _collect_scoped(
        self, championship_id: str, trace: SyncTrace
    ) -> tuple[list[MatchRecord], FeedFilter, list[str]]:
        championship = await self.store.get_championship(championship_id)
        if championship is None:
            raise SyncError(f"Championship {championship_id} not found")
        if not championship.feed_code:
            raise SyncError(f"Championship {championship.name} has no competition code")

        matches = await self.store.schedule_matches(championship_id)
        trace.add(
            "sync_collected",
            f"{len(matches)} open matches in {championship.name} ({championship.feed_code})",
            matches=len(matches),
        )
        return matches, FeedFilter(competition_codes={championship.feed_code}), [championship.id]
