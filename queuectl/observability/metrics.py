"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from queuectl.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOB_OUTCOMES,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_ENQUEUED,
    METRIC_QUEUE_DEPTH,
    METRIC_STALE_RECOVERED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth per state
    - Job submissions and claims
    - Execution outcomes and duration
    - Stale claim recovery
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
            "Number of jobs per state",
            ["state"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed",
            ["worker_id"],
            registry=self._registry,
        )

        # Labelled by the state the job moved to
        self.job_outcomes = Counter(
            METRIC_JOB_OUTCOMES,
            "Total number of recorded execution outcomes",
            ["state"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Command execution duration in seconds",
            ["state"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )

        self.stale_recovered = Counter(
            METRIC_STALE_RECOVERED,
            "Total number of stale processing jobs returned to pending",
            registry=self._registry,
        )

    def record_job_enqueued(self) -> None:
        """Record a job submission."""
        self.jobs_enqueued.inc()

    def record_job_claimed(self, worker_id: str) -> None:
        """Record a successful claim."""
        self.jobs_claimed.labels(worker_id=worker_id).inc()

    def record_outcome(self, state: str, duration_seconds: float | None) -> None:
        """Record the transition applied after an execution."""
        self.job_outcomes.labels(state=state).inc()
        if duration_seconds is not None:
            self.job_duration.labels(state=state).observe(duration_seconds)

    def record_stale_recovered(self, count: int) -> None:
        self.stale_recovered.inc(count)

    def update_queue_depth(self, counts: dict[str, int]) -> None:
        """Update the per-state gauge from a stats snapshot."""
        for state, count in counts.items():
            self.queue_depth.labels(state=state).set(count)

    def serve(self, port: int) -> None:
        """Expose the registry over HTTP on the given port."""
        start_http_server(port, registry=self._registry)


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
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
