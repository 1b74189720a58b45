"""
Prometheus metrics collection.

A command-line run has no scrape endpoint, so the collected registry is
written out in textfile-collector format at exit when requested.
"""

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    write_to_textfile,
)

from bgjob.constants import (
    METRIC_POLL_DURATION,
    METRIC_POLL_ITERATIONS,
    METRIC_STATUS_QUERIES,
    METRIC_SUBMISSIONS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for one client run.

    Collects metrics for:
    - Background submissions
    - Status queries
    - Polling iterations and duration
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. A fresh one is created if not provided.
        """
        self._registry = registry or CollectorRegistry()

        self.submissions = Counter(
            METRIC_SUBMISSIONS,
            "Total number of background job submissions",
            ["function", "outcome"],
            registry=self._registry,
        )

        self.status_queries = Counter(
            METRIC_STATUS_QUERIES,
            "Total number of job status queries",
            ["outcome"],
            registry=self._registry,
        )

        self.poll_iterations = Counter(
            METRIC_POLL_ITERATIONS,
            "Total number of polling iterations by terminal state",
            ["state"],
            registry=self._registry,
        )

        self.poll_duration = Histogram(
            METRIC_POLL_DURATION,
            "Wall-clock time spent polling a job until it left the running state",
            ["state"],
            buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0, 3600.0),
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_submission(self, function: str, success: bool) -> None:
        """Record a background submission attempt."""
        outcome = "accepted" if success else "failed"
        self.submissions.labels(function=function, outcome=outcome).inc()

    def record_status_query(self, success: bool) -> None:
        """Record a status query."""
        self.status_queries.labels(outcome="ok" if success else "error").inc()

    def record_poll_finished(self, state: str, iterations: int, duration_seconds: float) -> None:
        """Record the end of a polling loop."""
        self.poll_iterations.labels(state=state).inc(iterations)
        self.poll_duration.labels(state=state).observe(duration_seconds)

    def write_textfile(self, path: str) -> None:
        """Write all metrics to a textfile-collector file."""
        write_to_textfile(path, self._registry)


def setup_metrics(registry: CollectorRegistry | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector(registry)
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


def reset_metrics() -> None:
    """Drop the global collector so the next run starts from zero."""
    global _metrics
    _metrics = None
