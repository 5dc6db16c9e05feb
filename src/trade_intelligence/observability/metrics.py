"""Prometheus metrics for the recompute pipeline."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
)

# ---------------------------------------------------------------------------
# System metrics
# ---------------------------------------------------------------------------

SYSTEM_INFO = Info("trade_intel", "Trade intelligence core information")

# ---------------------------------------------------------------------------
# Recompute metrics
# ---------------------------------------------------------------------------

RECOMPUTES_TOTAL = Counter(
    "trade_intel_recomputes_total",
    "Full recomputes by final status",
    ["status"],
)

RECOMPUTE_DURATION = Histogram(
    "trade_intel_recompute_duration_seconds",
    "Wall time of a full recompute",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

SNAPSHOT_VERSION = Gauge(
    "trade_intel_snapshot_version",
    "Version of the published derived snapshot",
)

LEDGER_ROWS = Gauge(
    "trade_intel_ledger_rows",
    "Ledger rows read by the last recompute",
    ["state"],
)

MALFORMED_RECORDS = Counter(
    "trade_intel_malformed_records_total",
    "Rows excluded from a grouping for a missing field",
    ["dimension"],
)

# ---------------------------------------------------------------------------
# Signal weight metrics
# ---------------------------------------------------------------------------

OVERRIDES_TOTAL = Counter(
    "trade_intel_overrides_total",
    "Manual signal weight override changes",
    ["action"],
)

ACTIVE_OVERRIDES = Gauge(
    "trade_intel_active_overrides",
    "Signals currently carrying a manual override",
)


def start_metrics_server(port: int = 9090) -> None:
    """Start Prometheus metrics HTTP server in a background thread."""
    SYSTEM_INFO.info({"version": "0.1.0"})
    start_http_server(port)


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------

def record_recompute(status: str, duration_s: float | None = None) -> None:
    """Count a finished recompute; duration only for successful runs."""
    RECOMPUTES_TOTAL.labels(status=status).inc()
    if duration_s is not None:
        RECOMPUTE_DURATION.observe(duration_s)


def record_snapshot(version: int, total_rows: int, closed_rows: int) -> None:
    """Update gauges for a newly published snapshot."""
    SNAPSHOT_VERSION.set(version)
    LEDGER_ROWS.labels(state="all").set(total_rows)
    LEDGER_ROWS.labels(state="closed").set(closed_rows)


def record_malformed(dimension: str, count: int) -> None:
    if count:
        MALFORMED_RECORDS.labels(dimension=dimension).inc(count)


def record_override(action: str, active: int) -> None:
    OVERRIDES_TOTAL.labels(action=action).inc()
    ACTIVE_OVERRIDES.set(active)
