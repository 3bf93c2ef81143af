"""
Prometheus metrics for matchpool.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
FEED_REQUESTS = Counter(
    "mp_feed_requests_total",
    "Total feed provider HTTP requests",
    ["provider", "scope", "status"],
)
FEED_FAILURES = Counter(
    "mp_feed_failures_total",
    "Competition fetches that degraded to an empty result",
    ["competition"],
)
SYNC_CYCLES = Counter(
    "mp_sync_cycles_total",
    "Reconciliation cycles by trigger and outcome",
    ["trigger", "outcome"],
)
SYNC_DIFFS = Counter(
    "mp_sync_diffs_total",
    "Match diffs produced by the reconciler",
)
MATCH_WRITE_BATCHES = Counter(
    "mp_match_write_batches_total",
    "Committed match update batches",
)
PREDICTIONS_SCORED = Counter(
    "mp_predictions_scored_total",
    "Predictions awarded points, by points value",
    ["points"],
)
SCHEDULER_DROPPED_TRIGGERS = Counter(
    "mp_scheduler_dropped_triggers_total",
    "Interval triggers dropped because a cycle was still running",
)

# ── Histograms ──────────────────────────────────────────────────────────
FEED_LATENCY = Histogram(
    "mp_feed_latency_seconds",
    "Feed provider request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
SYNC_CYCLE_DURATION = Histogram(
    "mp_sync_cycle_seconds",
    "Wall time of one reconciliation cycle",
    ["trigger"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
ACTIVE_MATCHES = Gauge(
    "mp_active_matches",
    "Matches in the working set of the last cycle",
)
SYNC_IN_FLIGHT = Gauge(
    "mp_sync_in_flight",
    "1 while an interval-triggered cycle is running",
)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
