"""
Prometheus metrics for the multi-factor risk service

Tracks refresh cycles, per-study synchronization outcomes, and pie
storage so a scrape of /metrics shows how the last cycles went.
"""
import time
from contextlib import contextmanager

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


REGISTRY = CollectorRegistry()


# =======================
# REFRESH CYCLE METRICS
# =======================

refresh_cycles_total = Counter(
    name="riskservice_refresh_cycles_total",
    documentation="Total number of refresh cycles run",
    labelnames=["trigger", "status"],  # trigger: http, cron, cli; status: success, failure
    registry=REGISTRY,
)

refresh_duration_seconds = Histogram(
    name="riskservice_refresh_duration_seconds",
    documentation="Wall-clock duration of a refresh cycle in seconds",
    labelnames=["trigger"],
    buckets=[0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0],
    registry=REGISTRY,
)

refresh_in_progress = Gauge(
    name="riskservice_refresh_in_progress",
    documentation="Whether a refresh cycle currently holds the refresh lock (1) or not (0)",
    registry=REGISTRY,
)

# =======================
# SYNCHRONIZATION METRICS
# =======================

studies_synchronized_total = Counter(
    name="riskservice_studies_synchronized_total",
    documentation="Total number of studies processed by refresh cycles",
    labelnames=["status"],  # status: success, failure
    registry=REGISTRY,
)

risk_assessments_posted_total = Counter(
    name="riskservice_risk_assessments_posted_total",
    documentation="Total number of risk assessments posted to the FHIR server",
    registry=REGISTRY,
)

records_dropped_total = Counter(
    name="riskservice_records_dropped_total",
    documentation="Records skipped during conversion (incomplete or malformed)",
    labelnames=["reason"],
    registry=REGISTRY,
)

sync_errors_total = Counter(
    name="riskservice_sync_errors_total",
    documentation="Total number of per-study synchronization errors",
    labelnames=["error_type"],
    registry=REGISTRY,
)

# =======================
# PIE STORE METRICS
# =======================

pies_stored_total = Counter(
    name="riskservice_pies_stored_total",
    documentation="Total number of pies written to the pie store",
    registry=REGISTRY,
)

pies_pruned_total = Counter(
    name="riskservice_pies_pruned_total",
    documentation="Total number of superseded pies deleted from the pie store",
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """Render all service metrics in Prometheus text format"""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


@contextmanager
def track_duration(histogram: Histogram, **labels):
    """
    Observe the wall-clock time of a block into a labelled histogram

    The observation is recorded whether or not the block raises.

    Usage:
        with track_duration(refresh_duration_seconds, trigger="cron"):
            orchestrator.refresh()
    """
    started = time.monotonic()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.monotonic() - started)


def record_refresh_cycle(trigger: str, success: bool) -> None:
    status = "success" if success else "failure"
    refresh_cycles_total.labels(trigger=trigger, status=status).inc()


def record_sync_results(results) -> None:
    """
    Record the outcome of one refresh cycle's study results.

    Args:
        results: Iterable of SyncResult
    """
    for result in results:
        if result.error is None:
            studies_synchronized_total.labels(status="success").inc()
            risk_assessments_posted_total.inc(result.risk_assessment_count)
        else:
            studies_synchronized_total.labels(status="failure").inc()
            sync_errors_total.labels(error_type=type(result.error).__name__).inc()


def record_dropped_record(reason: str) -> None:
    records_dropped_total.labels(reason=reason).inc()
