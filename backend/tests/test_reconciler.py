"""
Unit tests for the reconciler. Pure function: no database, no network.

Run: pytest backend/tests/test_reconciler.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from shared.models.domain import FeedMatch, FeedScore, MatchRecord, TeamRef
from shared.models.enums import FeedDuration, MatchStatus, ScorePriority
from shared.utils.trace import SyncTrace
from sync.reconciler import reconcile

KICKOFF = datetime(2026, 5, 10, 19, 0, tzinfo=timezone.utc)


def local(
    match_id: str = "m1",
    *,
    home: str = "Flamengo",
    away: str = "Palmeiras",
    external_id: Optional[str] = "501",
    status: MatchStatus = MatchStatus.SCHEDULED,
    score: Optional[tuple[int, int]] = None,
    **kw: Any,
) -> MatchRecord:
    return MatchRecord(
        id=match_id,
        championship_id="bsa",
        home_team=TeamRef(id=home.lower(), name=home),
        away_team=TeamRef(id=away.lower(), name=away),
        external_id=external_id,
        scheduled_at=kw.pop("scheduled_at", KICKOFF),
        status=status,
        home_score=score[0] if score else None,
        away_score=score[1] if score else None,
        **kw,
    )


def remote(
    external_id: str = "501",
    *,
    home: str = "Flamengo",
    away: str = "Palmeiras",
    status: MatchStatus = MatchStatus.LIVE,
    full: tuple[Optional[int], Optional[int]] = (None, None),
    regular: tuple[Optional[int], Optional[int]] = (None, None),
    duration: FeedDuration = FeedDuration.REGULAR,
    kickoff: Optional[datetime] = KICKOFF,
) -> FeedMatch:
    return FeedMatch(
        external_id=external_id,
        home_team_name=home,
        away_team_name=away,
        raw_status=status.value.upper(),
        status=status,
        duration=duration,
        full_time=FeedScore(home=full[0], away=full[1]),
        regular_time=FeedScore(home=regular[0], away=regular[1]),
        kickoff_time=kickoff,
        competition_code="BSA",
    )


# ── Status / score changes ──────────────────────────────────────────────

def test_kickoff_produces_live_diff_with_zero_score() -> None:
    diffs = reconcile([local()], [remote(full=(None, None))])
    assert len(diffs) == 1
    d = diffs[0]
    assert d.status == MatchStatus.LIVE
    assert (d.home_score, d.away_score) == (0, 0)
    assert not d.finished_transition
    assert d.external_id is None


def test_unchanged_match_produces_no_diff() -> None:
    match = local(status=MatchStatus.LIVE, score=(1, 0))
    assert reconcile([match], [remote(full=(1, 0))]) == []


def test_second_pass_after_apply_is_empty() -> None:
    matches = [local("m1"), local("m2", external_id=None, home="Santos", away="Grêmio")]
    feed = [
        remote("501", status=MatchStatus.FINISHED, full=(2, 1)),
        remote("777", home="Santos", away="Grêmio", full=(0, 0), kickoff=KICKOFF + timedelta(hours=2)),
    ]
    diffs = reconcile(matches, feed)
    assert len(diffs) == 2

    by_id = {d.match_id: d for d in diffs}
    applied = [by_id[m.id].apply_to(m) for m in matches]
    assert reconcile(applied, feed) == []


def test_finished_transition_carries_final_score() -> None:
    diffs = reconcile(
        [local(status=MatchStatus.LIVE, score=(1, 1))],
        [remote(status=MatchStatus.FINISHED, full=(2, 1))],
    )
    d = diffs[0]
    assert d.status == MatchStatus.FINISHED
    assert d.finished_transition
    assert d.final_score == (2, 1)


def test_already_finished_score_correction_is_not_a_transition() -> None:
    diffs = reconcile(
        [local(status=MatchStatus.FINISHED, score=(2, 1))],
        [remote(status=MatchStatus.FINISHED, full=(2, 2))],
    )
    assert diffs[0].away_score == 2
    assert diffs[0].status is None
    assert not diffs[0].finished_transition


def test_score_priority_applies_to_penalty_finish() -> None:
    feed = [remote(
        status=MatchStatus.FINISHED,
        duration=FeedDuration.PENALTY_SHOOTOUT,
        regular=(1, 1),
        full=(2, 1),
    )]
    regular = reconcile([local(status=MatchStatus.LIVE, score=(1, 1))], feed, score_priority=ScorePriority.REGULAR)
    full = reconcile([local(status=MatchStatus.LIVE, score=(1, 1))], feed, score_priority=ScorePriority.FULL)
    assert regular[0].final_score == (1, 1)
    assert full[0].final_score == (2, 1)


def test_postponed_without_score_keeps_stored_score() -> None:
    diffs = reconcile(
        [local(status=MatchStatus.SCHEDULED)],
        [remote(status=MatchStatus.POSTPONED)],
    )
    d = diffs[0]
    assert d.status == MatchStatus.POSTPONED
    assert "home_score" not in d.changes()


# ── Manual override ─────────────────────────────────────────────────────

def test_manual_override_is_never_touched() -> None:
    match = local(external_id=None, is_manual_override=True, status=MatchStatus.LIVE, score=(0, 0))
    feed = [remote("900", status=MatchStatus.FINISHED, full=(3, 3))]
    assert reconcile([match], feed) == []


def test_manual_override_still_reports_missing_feed_data() -> None:
    trace = SyncTrace()
    match = local(is_manual_override=True, status=MatchStatus.LIVE, score=(0, 0))
    assert reconcile([match], [remote("1", home="X", away="Y")], trace=trace) == []
    assert any("No feed data" in line for line in trace.lines)


def test_empty_trace_receives_first_line() -> None:
    trace = SyncTrace()
    assert len(trace) == 0
    reconcile([local(status=MatchStatus.LIVE, score=(0, 0))], [], trace=trace)
    assert len(trace) == 1


# ── Linking ─────────────────────────────────────────────────────────────

def test_name_link_emits_external_id_even_without_other_changes() -> None:
    match = local(external_id=None)
    diffs = reconcile([match], [remote("42", status=MatchStatus.SCHEDULED)])
    assert len(diffs) == 1
    assert diffs[0].external_id == "42"
    assert diffs[0].changes() == {"external_id": "42"}


def test_id_link_wins_over_names() -> None:
    match = local(external_id="501", status=MatchStatus.LIVE, score=(0, 0))
    feed = [
        remote("999", status=MatchStatus.FINISHED, full=(5, 5)),
        remote("501", home="Renamed FC", away="Other FC", full=(1, 0)),
    ]
    d = reconcile([match], feed)[0]
    assert d.changes() == {"home_score": 1}
    assert d.external_id is None


def test_ambiguous_names_pick_first_and_note_it() -> None:
    trace = SyncTrace()
    feed = [remote("10", status=MatchStatus.SCHEDULED), remote("11", status=MatchStatus.SCHEDULED)]
    d = reconcile([local(external_id=None)], feed, trace=trace)[0]
    assert d.external_id == "10"
    assert any("2 feed entries" in line for line in trace.lines)


def test_unlinked_live_match_is_reported() -> None:
    trace = SyncTrace()
    diffs = reconcile([local(status=MatchStatus.LIVE, score=(0, 0))], [remote("1", home="X", away="Y")], trace=trace)
    assert diffs == []
    assert any("No feed data" in line for line in trace.lines)


def test_unlinked_scheduled_match_is_silent() -> None:
    trace = SyncTrace()
    assert reconcile([local(external_id=None)], [], trace=trace) == []
    assert len(trace) == 0


# ── Kickoff drift ───────────────────────────────────────────────────────

def test_small_kickoff_drift_is_ignored() -> None:
    feed = [remote(status=MatchStatus.SCHEDULED, kickoff=KICKOFF + timedelta(minutes=4))]
    assert reconcile([local()], feed) == []


def test_large_kickoff_drift_updates_schedule() -> None:
    moved = KICKOFF + timedelta(days=1)
    diffs = reconcile([local()], [remote(status=MatchStatus.SCHEDULED, kickoff=moved)])
    assert diffs[0].scheduled_at == moved
    assert diffs[0].changes() == {"scheduled_at": moved}


def test_drift_tolerance_is_configurable() -> None:
    feed = [remote(status=MatchStatus.SCHEDULED, kickoff=KICKOFF + timedelta(minutes=4))]
    diffs = reconcile([local()], feed, drift_tolerance=timedelta(minutes=1))
    assert diffs[0].scheduled_at == KICKOFF + timedelta(minutes=4)
