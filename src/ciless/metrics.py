"""
Prometheus metrics for the ciless bridge.

Covers webhook reception and rejection, config fetches, and the outcome and
duration of each pipeline run.
"""

from prometheus_client import Counter, Histogram
import time

from ciless.exceptions import ConfigNotFoundError


# Webhook reception metrics
webhooks_received_total = Counter(
    'ciless_webhooks_received_total',
    'Total number of webhooks received',
    ['event_type']  # event_type = pull_request|ping|push|etc
)

webhooks_rejected_total = Counter(
    'ciless_webhooks_rejected_total',
    'Total number of webhooks rejected at the HTTP boundary',
    ['reason']  # reason = signature|malformed
)

webhooks_dropped_total = Counter(
    'ciless_webhooks_dropped_total',
    'Total number of verified webhooks dropped without running the pipeline',
    ['reason']  # reason = unsupported|action|malformed
)

# Pipeline metrics
pipeline_runs_total = Counter(
    'ciless_pipeline_runs_total',
    'Total number of pipeline runs by result',
    ['result']  # result = created|updated|conflict_retried|failed|no_config|invalid_config|transport_error
)

pipeline_duration_seconds = Histogram(
    'ciless_pipeline_duration_seconds',
    'Time spent running the pipeline for one event',
)

config_fetch_errors_total = Counter(
    'ciless_config_fetch_errors_total',
    'Total number of config fetch errors',
    ['error_type']
)

config_fetch_duration_seconds = Histogram(
    'ciless_config_fetch_duration_seconds',
    'Time spent fetching build configs from GitHub, retries included',
)


class MetricsContext:
    """Context manager for timing operations and handling errors with metrics."""

    def __init__(self, histogram, error_counter=None, error_labels=None, ignore=()):
        self.histogram = histogram
        self.error_counter = error_counter
        self.error_labels = error_labels or []
        self.ignore = ignore
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            duration = time.time() - self.start_time
            self.histogram.observe(duration)

        if (
            exc_type is not None
            and self.error_counter is not None
            and not issubclass(exc_type, self.ignore)
        ):
            error_type = exc_type.__name__
            self.error_counter.labels(*self.error_labels, error_type).inc()

        return False  # Don't suppress exceptions


def track_pipeline_run():
    """Context manager for tracking pipeline run duration."""
    return MetricsContext(pipeline_duration_seconds)


def track_config_fetch():
    """Context manager for tracking config fetch duration and errors."""
    return MetricsContext(
        config_fetch_duration_seconds,
        config_fetch_errors_total,
        ignore=(ConfigNotFoundError,),
    )
