"""
Lightweight metrics collection for blockrecon.
Prometheus collectors shared by the service modules.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
STREAM_UPDATES = Counter(
    "br_stream_updates_total",
    "Total updates received from the streaming source",
    ["kind"],
)
STREAM_CONNECTIONS = Counter(
    "br_stream_connections_total",
    "Streaming source connection attempts",
    ["outcome"],
)
COMPARISONS = Counter(
    "br_comparisons_total",
    "Block comparisons against the reference source",
    ["result"],
)
RPC_REQUESTS = Counter(
    "br_rpc_requests_total",
    "Total reference JSON-RPC requests",
    ["method", "status"],
)

# ── Histograms ──────────────────────────────────────────────────────────
RPC_LATENCY = Histogram(
    "br_rpc_latency_seconds",
    "Reference JSON-RPC request latency in seconds",
    ["method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
COMPARISONS_IN_FLIGHT = Gauge(
    "br_comparisons_in_flight",
    "Comparisons dispatched but not yet completed",
)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server when enabled."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
