"""
Prometheus collectors for time-series store traffic.

Kept in a dedicated registry so the ``/metrics`` endpoint only exposes what
this service records.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

metrics_registry = CollectorRegistry()

tsdb_request_duration = Histogram(
    "emberpulse_tsdb_request_duration_seconds",
    "Time spent on time-series store operations",
    ["operation"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=metrics_registry,
)

tsdb_failures = Counter(
    "emberpulse_tsdb_failures_total",
    "Time-series store operations that ended in an error",
    ["operation"],
    registry=metrics_registry,
)

tsdb_write_delayed = Counter(
    "emberpulse_tsdb_write_delayed_total",
    "Writes left queued in the socket buffer above the high-water mark",
    registry=metrics_registry,
)

tsdb_reconnects = Counter(
    "emberpulse_tsdb_reconnects_total",
    "Successful dials of the time-series store write socket",
    registry=metrics_registry,
)

tsdb_circuit_open = Gauge(
    "emberpulse_tsdb_circuit_open",
    "1 while the reconnect circuit breaker is open",
    registry=metrics_registry,
)
