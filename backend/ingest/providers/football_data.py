"""
Football-Data.org (football-data.org) feed client.
v4 API with X-Auth-Token. Free tier: 10 requests/min.

Provider vocabulary (statuses, score components) is translated here and
nowhere else; downstream code only sees FeedMatch and MatchStatus.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.models.domain import FeedFilter, FeedMatch, FeedScore
from shared.models.enums import FeedDuration, MatchStatus, ScorePriority
from shared.utils.http_client import FeedHTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import FEED_FAILURES
from shared.utils.trace import SyncTrace

logger = get_logger(__name__)

PROVIDER_NAME = "football_data"

LIVE_STATUSES = frozenset({"IN_PLAY", "PAUSED", "EXTRA_TIME", "PENALTY_SHOOTOUT", "LIVE"})

_FINISHED_FAMILY_STATUS: dict[str, MatchStatus] = {
    "FINISHED": MatchStatus.FINISHED,
    "AWARDED": MatchStatus.FINISHED,
    "CANCELLED": MatchStatus.CANCELLED,
    "POSTPONED": MatchStatus.POSTPONED,
    "SUSPENDED": MatchStatus.SUSPENDED,
}


def map_status(raw_status: str) -> MatchStatus:
    """Map a football-data.org status to the internal MatchStatus."""
    s = (raw_status or "").strip().upper()
    if s in LIVE_STATUSES:
        return MatchStatus.LIVE
    if s in _FINISHED_FAMILY_STATUS:
        return _FINISHED_FAMILY_STATUS[s]
    # SCHEDULED, TIMED and anything new the provider invents
    return MatchStatus.SCHEDULED


def _score_part(raw: Any) -> FeedScore:
    if not isinstance(raw, dict):
        return FeedScore()
    return FeedScore(home=_safe_int(raw.get("home")), away=_safe_int(raw.get("away")))


def _safe_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_kickoff(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_duration(value: Any) -> FeedDuration:
    try:
        return FeedDuration(str(value or "REGULAR").upper())
    except ValueError:
        return FeedDuration.REGULAR


def parse_feed_match(raw: dict[str, Any], competition_code: Optional[str] = None) -> FeedMatch:
    """Build a FeedMatch from one element of the provider's `matches` array."""
    score = raw.get("score") or {}
    competition = raw.get("competition") or {}
    raw_status = str(raw.get("status") or "")
    return FeedMatch(
        external_id=str(raw["id"]),
        home_team_name=(raw.get("homeTeam") or {}).get("name") or "",
        away_team_name=(raw.get("awayTeam") or {}).get("name") or "",
        raw_status=raw_status,
        status=map_status(raw_status),
        duration=_parse_duration(score.get("duration")),
        regular_time=_score_part(score.get("regularTime")),
        full_time=_score_part(score.get("fullTime")),
        kickoff_time=_parse_kickoff(raw.get("utcDate")),
        competition_code=competition.get("code") or competition_code,
    )


def resolve_score(match: FeedMatch, priority: ScorePriority) -> Optional[tuple[int, int]]:
    """
    The score a pool should store for this feed match, or None to leave it alone.

    Live: full time so far. Finished after regulation: full time. Finished after
    extra time or penalties: `regular` prefers the 90-minute score, `full` uses
    the final one. Postponed/suspended/cancelled only carry a complete score.
    """
    ft = match.full_time
    if match.status == MatchStatus.SCHEDULED:
        return None
    if match.status == MatchStatus.LIVE:
        return (ft.home or 0, ft.away or 0)
    if match.status != MatchStatus.FINISHED:
        return (ft.home, ft.away) if ft.complete else None

    if match.duration == FeedDuration.REGULAR or priority == ScorePriority.FULL:
        return (ft.home or 0, ft.away or 0)
    rt = match.regular_time
    home = rt.home if rt.home is not None else ft.home
    away = rt.away if rt.away is not None else ft.away
    return (home or 0, away or 0)


class FootballDataClient:
    """Fetches and normalizes matches from football-data.org v4."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        headers: dict[str, str] = {}
        if settings.football_data_api_key:
            headers["X-Auth-Token"] = settings.football_data_api_key
        else:
            logger.warning("football_data_api_key_missing")
        self._http = FeedHTTPClient(
            provider_name=PROVIDER_NAME,
            base_url=settings.football_data_base_url,
            headers=headers,
            timeout_s=settings.provider_request_timeout_s,
            max_retries=max_retries,
            transport=transport,
        )

    async def start(self) -> None:
        await self._http.start()

    async def close(self) -> None:
        await self._http.close()

    async def fetch_matches(self, feed_filter: FeedFilter, trace: SyncTrace | None = None) -> list[FeedMatch]:
        """
        One global query when no competition codes are given, otherwise one
        concurrent query per code. A failing code contributes no matches.
        """
        params = feed_filter.query_params()
        if not feed_filter.competition_codes:
            if trace is not None:
                trace.add("feed_fetch_global", "Fetching globally (no competition filter)")
            return await self._fetch_safe(None, params, trace)

        codes = sorted(feed_filter.competition_codes)
        if trace is not None:
            trace.add("feed_fetch_competitions", f"Fetching competitions: {', '.join(codes)}", codes=codes)
        results = await asyncio.gather(*(self._fetch_safe(code, params, trace) for code in codes))
        return [match for batch in results for match in batch]

    async def _fetch_safe(
        self, code: Optional[str], params: dict[str, str], trace: SyncTrace | None
    ) -> list[FeedMatch]:
        try:
            return await self._fetch(code, params)
        except Exception as exc:
            FEED_FAILURES.labels(competition=code or "global").inc()
            logger.warning("feed_fetch_failed", competition=code or "global", error=str(exc))
            if trace is not None:
                trace.add(
                    "feed_fetch_failed", f"Feed error for {code or 'global query'}: {exc}",
                    warning=True, competition=code,
                )
            return []

    async def _fetch(self, code: Optional[str], params: dict[str, str]) -> list[FeedMatch]:
        path = f"/competitions/{code}/matches" if code else "/matches"
        data = await self._http.get_json(path, params=params or None, scope=code or "global")
        matches: list[FeedMatch] = []
        for raw in (data or {}).get("matches", []):
            try:
                matches.append(parse_feed_match(raw, code))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("feed_match_parse_error", competition=code, error=str(exc))
        return matches
