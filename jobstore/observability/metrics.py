"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from jobstore.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_ADDED,
    METRIC_JOBS_FINISHED,
    METRIC_JOBS_REMOVED,
    METRIC_JOBS_REQUEUED,
    METRIC_JOBS_RESERVED,
    METRIC_QUEUE_DEPTH,
    METRIC_RESERVE_LATENCY,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job store.

    Collects metrics for:
    - Jobs added and removed
    - Reservations and their latency
    - Recovery requeues per policy
    - Job outcomes and execution duration
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs per status",
            ["status"],
            registry=self._registry,
        )

        self.jobs_added = Counter(
            METRIC_JOBS_ADDED,
            "Total number of jobs added",
            registry=self._registry,
        )

        self.jobs_reserved = Counter(
            METRIC_JOBS_RESERVED,
            "Total number of jobs reserved",
            ["worker_id"],
            registry=self._registry,
        )

        self.reserve_latency = Histogram(
            METRIC_RESERVE_LATENCY,
            "Reservation round trip in seconds",
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
            registry=self._registry,
        )

        self.jobs_requeued = Counter(
            METRIC_JOBS_REQUEUED,
            "Total number of jobs returned to ready by recovery",
            ["policy"],
            registry=self._registry,
        )

        self.jobs_removed = Counter(
            METRIC_JOBS_REMOVED,
            "Total number of jobs removed",
            registry=self._registry,
        )

        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of jobs finished by workers",
            ["status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

    def record_job_added(self) -> None:
        self.jobs_added.inc()

    def record_job_reserved(self, worker_id: str, duration_seconds: float) -> None:
        """Record a successful reservation."""
        self.jobs_reserved.labels(worker_id=worker_id).inc()
        self.reserve_latency.observe(duration_seconds)

    def record_requeued(self, policy: str, count: int) -> None:
        """Record jobs requeued by a recovery scan."""
        if count > 0:
            self.jobs_requeued.labels(policy=policy).inc(count)

    def record_removed(self, count: int) -> None:
        if count > 0:
            self.jobs_removed.inc(count)

    def record_job_finished(self, status: str, duration_seconds: float) -> None:
        """Record a job finished by a worker."""
        self.jobs_finished.labels(status=status).inc()
        self.job_duration.labels(status=status).observe(duration_seconds)

    def update_queue_depth(self, status: str, depth: int) -> None:
        self.queue_depth.labels(status=status).set(depth)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: If given, serve /metrics on this port.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    if port is not None:
        start_http_server(port)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
