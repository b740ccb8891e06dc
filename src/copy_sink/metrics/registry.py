"""
Prometheus metrics for the loader, registered in the global REGISTRY on import.
"""

from prometheus_client import Counter, Gauge, Histogram

ROWS_WRITTEN_TOTAL = Counter(
    "copy_sink_rows_written_total",
    "Rows accepted by load streams",
    ["worker"],
)

WRITE_LATENCY_SECONDS = Histogram(
    "copy_sink_write_latency_seconds",
    "Latency of one chunk write to a load stream",
    ["worker"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

QUEUE_DEPTH = Gauge(
    "copy_sink_queue_depth",
    "Batches waiting in a worker queue",
    ["worker"],
)

WORKER_FAILURES_TOTAL = Counter(
    "copy_sink_worker_failures_total",
    "Workers that ended in the failed state",
    ["reason"],
)

TRANSACTIONS_TOTAL = Counter(
    "copy_sink_transactions_total",
    "Load transactions by outcome",
    ["outcome"],
)


class MetricsRegistry:
    """Centralized access to the loader metrics."""

    rows_written_total = ROWS_WRITTEN_TOTAL
    write_latency_seconds = WRITE_LATENCY_SECONDS
    queue_depth = QUEUE_DEPTH
    worker_failures_total = WORKER_FAILURES_TOTAL
    transactions_total = TRANSACTIONS_TOTAL


# Singleton instance
metrics_registry = MetricsRegistry()
