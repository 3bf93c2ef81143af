"""
Match-state reconciliation and scoring core.

The pipeline collects active matches, fetches the feed, diffs the two with the
pure reconciler, persists diffs in batches and scores matches that finished.
"""
from sync.pipeline import SyncError, SyncPipeline
from sync.reconciler import reconcile
from sync.scoring import ScoringEngine, calculate_points
from sync.settings import SettingsProvider
from sync.store import MatchStore
from sync.writer import BatchedWriter

__all__ = [
    "BatchedWriter",
    "MatchStore",
    "ScoringEngine",
    "SettingsProvider",
    "SyncError",
    "SyncPipeline",
    "calculate_points",
    "reconcile",
]
