"""Domain enumerations for matchpool."""
from __future__ import annotations

from enum import Enum


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"
    POSTPONED = "postponed"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """No further automatic transition happens from these."""
        return self in (MatchStatus.FINISHED, MatchStatus.CANCELLED)


class SyncMode(str, Enum):
    MANUAL = "manual"
    HYBRID = "hybrid"
    AUTO = "auto"

    @property
    def is_synced(self) -> bool:
        return self in (SyncMode.HYBRID, SyncMode.AUTO)


class ScorePriority(str, Enum):
    """Which score counts when a knockout match went past regulation."""
    REGULAR = "regular"
    FULL = "full"


class FeedDuration(str, Enum):
    REGULAR = "REGULAR"
    EXTRA_TIME = "EXTRA_TIME"
    PENALTY_SHOOTOUT = "PENALTY_SHOOTOUT"


class SyncTrigger(str, Enum):
    EXTERNAL = "external"
    INTERVAL = "interval"
    MANUAL = "manual"
