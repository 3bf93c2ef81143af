"""
Diff local match records against a fetched feed.

Pure and synchronous: no I/O, no clock. Running it twice over the same inputs
after the first result was applied yields no diffs.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Optional, Sequence

from shared.models.domain import FeedMatch, MatchDiff, MatchRecord, ensure_utc
from shared.models.enums import MatchStatus, ScorePriority
from shared.utils.logging import get_logger
from shared.utils.trace import SyncTrace

from ingest.providers.football_data import resolve_score

logger = get_logger(__name__)

DEFAULT_DRIFT_TOLERANCE = timedelta(minutes=5)


class FeedIndex:
    """Lookup tables over one fetched feed."""

    def __init__(self, feed: Iterable[FeedMatch]) -> None:
        self.by_id: dict[str, FeedMatch] = {}
        self.by_names: dict[tuple[str, str], list[FeedMatch]] = {}
        for item in feed:
            self.by_id.setdefault(item.external_id, item)
            self.by_names.setdefault((item.home_team_name, item.away_team_name), []).append(item)

    def __len__(self) -> int:
        return len(self.by_id)


def _link(
    match: MatchRecord, index: FeedIndex, trace: SyncTrace | None
) -> tuple[Optional[FeedMatch], bool]:
    """Return (feed match, linked by name). An id link always wins."""
    if match.external_id and match.external_id in index.by_id:
        return index.by_id[match.external_id], False

    candidates = index.by_names.get((match.home_team.name, match.away_team.name))
    if not candidates:
        return None, False
    if len(candidates) > 1:
        logger.warning(
            "reconcile_ambiguous_name_link",
            match_id=match.id,
            candidates=[c.external_id for c in candidates],
        )
        if trace is not None:
            trace.add(
                "reconcile_ambiguous_name_link",
                f"{match.home_team.name} vs {match.away_team.name}: "
                f"{len(candidates)} feed entries, using {candidates[0].external_id}",
                warning=True,
            )
    return candidates[0], True


def diff_match(
    match: MatchRecord,
    index: FeedIndex,
    *,
    score_priority: ScorePriority,
    drift_tolerance: timedelta = DEFAULT_DRIFT_TOLERANCE,
    trace: SyncTrace | None = None,
) -> Optional[MatchDiff]:
    """Diff a single match against the indexed feed."""
    feed_match, name_linked = _link(match, index, trace)
    if feed_match is None:
        if match.status != MatchStatus.SCHEDULED:
            logger.info("reconcile_no_feed_data", match_id=match.id, status=match.status.value)
            if trace is not None:
                trace.add(
                    "reconcile_no_feed_data",
                    f"No feed data for {match.home_team.name} vs {match.away_team.name}",
                    match_id=match.id,
                )
        return None

    # Overridden records are frozen, smart link included
    if match.is_manual_override:
        return None

    diff = MatchDiff(match_id=match.id)
    changed = False

    if feed_match.status != match.status:
        diff.status = feed_match.status
        changed = True

    score = resolve_score(feed_match, score_priority)
    if score is not None:
        home, away = score
        if home != match.home_score:
            diff.home_score = home
            changed = True
        if away != match.away_score:
            diff.away_score = away
            changed = True

    if feed_match.kickoff_time is not None:
        kickoff = ensure_utc(feed_match.kickoff_time)
        if abs(kickoff - match.scheduled_at) > drift_tolerance:
            diff.scheduled_at = kickoff
            changed = True

    if name_linked:
        diff.external_id = feed_match.external_id

    if not changed and not name_linked:
        return None

    if feed_match.status == MatchStatus.FINISHED and match.status != MatchStatus.FINISHED:
        diff.finished_transition = True
        diff.final_score = score if score is not None else (match.home_score or 0, match.away_score or 0)

    if trace is not None:
        trace.add(
            "reconcile_diff",
            f"{match.home_team.name} vs {match.away_team.name}: {_describe(diff)}",
            match_id=match.id,
        )
    return diff


def reconcile(
    active_matches: Sequence[MatchRecord],
    feed: Iterable[FeedMatch],
    *,
    score_priority: ScorePriority = ScorePriority.REGULAR,
    drift_tolerance: timedelta = DEFAULT_DRIFT_TOLERANCE,
    trace: SyncTrace | None = None,
) -> list[MatchDiff]:
    """Compute the diffs that bring `active_matches` in line with `feed`."""
    index = feed if isinstance(feed, FeedIndex) else FeedIndex(feed)
    diffs: list[MatchDiff] = []
    for match in active_matches:
        diff = diff_match(
            match, index,
            score_priority=score_priority,
            drift_tolerance=drift_tolerance,
            trace=trace,
        )
        if diff is not None:
            diffs.append(diff)
    logger.debug("reconcile_completed", checked=len(active_matches), feed=len(index), diffs=len(diffs))
    return diffs


def _describe(diff: MatchDiff) -> str:
    parts = []
    changes = diff.changes()
    if "status" in changes:
        parts.append(f"status={changes['status']}")
    if "home_score" in changes or "away_score" in changes:
        parts.append(f"score={diff.home_score if diff.home_score is not None else '-'}"
                     f"x{diff.away_score if diff.away_score is not None else '-'}")
    if "scheduled_at" in changes:
        parts.append(f"kickoff={diff.scheduled_at.isoformat()}")
    if "external_id" in changes:
        parts.append(f"linked to {diff.external_id}")
    return ", ".join(parts)
