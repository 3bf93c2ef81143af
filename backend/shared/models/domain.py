"""
Pydantic v2 domain models shared across matchpool services.
These are the internal/wire representations, not ORM models.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.models.enums import FeedDuration, MatchStatus, ScorePriority, SyncMode

DIFF_FIELDS = ("status", "home_score", "away_score", "scheduled_at", "external_id")


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes (SQLite round-trips) are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Local records ───────────────────────────────────────────────────────
class TeamRef(DomainModel):
    id: str
    name: str
    crest_url: Optional[str] = None


class ChampionshipRecord(DomainModel):
    id: str
    name: str
    api_code: Optional[str] = None
    sync_mode: SyncMode = SyncMode.MANUAL
    status: str = "active"

    @property
    def feed_code(self) -> Optional[str]:
        """Competition code usable against the feed; long values are legacy ids, not codes."""
        code = (self.api_code or "").strip()
        if not code or len(code) >= 5:
            return None
        return code


class MatchRecord(DomainModel):
    id: str
    championship_id: str
    home_team: TeamRef
    away_team: TeamRef
    external_id: Optional[str] = None
    scheduled_at: datetime
    round: str = ""
    status: MatchStatus = MatchStatus.SCHEDULED
    home_score: Optional[int] = Field(default=None, ge=0)
    away_score: Optional[int] = Field(default=None, ge=0)
    last_updated_at: Optional[datetime] = None
    is_manual_override: bool = False
    betting_reopened: bool = False

    @field_validator("scheduled_at", "last_updated_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @classmethod
    def from_orm_row(cls, row: Any) -> "MatchRecord":
        return cls(
            id=row.id,
            championship_id=row.championship_id,
            home_team=TeamRef(id=row.home_team_id, name=row.home_team_name, crest_url=row.home_team_crest),
            away_team=TeamRef(id=row.away_team_id, name=row.away_team_name, crest_url=row.away_team_crest),
            external_id=row.external_id,
            scheduled_at=row.scheduled_at,
            round=row.round or "",
            status=MatchStatus(row.status),
            home_score=row.home_score,
            away_score=row.away_score,
            last_updated_at=row.last_updated_at,
            is_manual_override=bool(row.is_manual_override),
            betting_reopened=bool(row.betting_reopened),
        )

    def is_prediction_locked(self, now: datetime) -> bool:
        """Predictions close at kickoff unless an admin reopened them."""
        default_locked = (
            ensure_utc(now) >= self.scheduled_at
            or self.status in (MatchStatus.LIVE, MatchStatus.FINISHED)
        )
        return default_locked and not self.betting_reopened


# ── Feed ────────────────────────────────────────────────────────────────
class FeedScore(DomainModel):
    home: Optional[int] = None
    away: Optional[int] = None

    @property
    def complete(self) -> bool:
        return self.home is not None and self.away is not None


class FeedMatch(DomainModel):
    """One provider match, normalized. Never persisted."""
    external_id: str
    home_team_name: str
    away_team_name: str
    raw_status: str
    status: MatchStatus
    duration: FeedDuration = FeedDuration.REGULAR
    regular_time: FeedScore = Field(default_factory=FeedScore)
    full_time: FeedScore = Field(default_factory=FeedScore)
    kickoff_time: Optional[datetime] = None
    competition_code: Optional[str] = None


class FeedFilter(DomainModel):
    competition_codes: set[str] = Field(default_factory=set)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    statuses: Optional[list[str]] = None

    def query_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.date_from:
            params["dateFrom"] = self.date_from.isoformat()
        if self.date_to:
            params["dateTo"] = self.date_to.isoformat()
        if self.statuses:
            params["status"] = ",".join(self.statuses)
        return params


# ── Diffs ───────────────────────────────────────────────────────────────
class MatchDiff(DomainModel):
    """The changed subset of one match's fields, applied as one atomic row update."""
    match_id: str
    status: Optional[MatchStatus] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    scheduled_at: Optional[datetime] = None
    external_id: Optional[str] = None
    finished_transition: bool = False
    final_score: Optional[tuple[int, int]] = None

    def changes(self) -> dict[str, Any]:
        values = {name: getattr(self, name) for name in DIFF_FIELDS}
        changed = {name: value for name, value in values.items() if value is not None}
        if "status" in changed:
            changed["status"] = changed["status"].value
        return changed

    def apply_to(self, match: MatchRecord) -> MatchRecord:
        update = {name: getattr(self, name) for name in DIFF_FIELDS if getattr(self, name) is not None}
        return match.model_copy(update=update)


# ── Settings / results ──────────────────────────────────────────────────
class SystemSettings(DomainModel):
    api_update_interval: int = Field(default=3, ge=1, alias="apiUpdateInterval")
    score_priority: ScorePriority = Field(default=ScorePriority.REGULAR, alias="scorePriority")


class SyncResult(DomainModel):
    success: bool = True
    updates: int = 0
    checked: int = 0
    scored: int = 0
    skipped: bool = False
    error: Optional[str] = None
    logs: list[str] = Field(default_factory=list)


class RankingEntry(DomainModel):
    user_id: str
    display_name: str
    total_points: int = 0
    exact_scores: int = 0
    outcomes: int = 0
