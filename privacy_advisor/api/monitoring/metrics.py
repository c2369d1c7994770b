"""
Prometheus metrics for monitoring and observability.

Queue depth gauges are refreshed from the broker when /metrics is scraped;
admission decisions are counted as they happen.
"""

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

from privacy_advisor.models.job import QueueMetrics

logger = logging.getLogger(__name__)

# Create a custom registry for our metrics
metrics_registry = CollectorRegistry()

# ============================================================================
# Queue Metrics
# ============================================================================

queue_waiting_gauge = Gauge(
    'privacy_advisor_queue_jobs_waiting',
    'Jobs waiting to run, including those delayed for retry',
    ['queue'],
    registry=metrics_registry
)

queue_active_gauge = Gauge(
    'privacy_advisor_queue_jobs_active',
    'Jobs currently executing',
    ['queue'],
    registry=metrics_registry
)

queue_failed_gauge = Gauge(
    'privacy_advisor_queue_jobs_failed',
    'Jobs in the dead-letter store',
    ['queue'],
    registry=metrics_registry
)

queue_total_pending_gauge = Gauge(
    'privacy_advisor_queue_jobs_total_pending',
    'Waiting plus active jobs',
    ['queue'],
    registry=metrics_registry
)

# ============================================================================
# Admission Metrics
# ============================================================================

admission_decisions_counter = Counter(
    'privacy_advisor_admission_decisions_total',
    'Admission decisions by policy and outcome',
    ['policy', 'decision'],
    registry=metrics_registry
)


def update_queue_metrics(queue: str, metrics: QueueMetrics):
    """
    Publish a queue snapshot.

    Args:
        queue: Queue name
        metrics: Snapshot read from the broker
    """
    try:
        queue_waiting_gauge.labels(queue=queue).set(metrics.waiting)
        queue_active_gauge.labels(queue=queue).set(metrics.active)
        queue_failed_gauge.labels(queue=queue).set(metrics.failed)
        queue_total_pending_gauge.labels(queue=queue).set(metrics.total_pending)
    except Exception as e:
        logger.error(f"Failed to update queue metrics: {e}")


def record_admission_decision(policy: str, allowed: bool):
    """Count one admission decision."""
    try:
        admission_decisions_counter.labels(
            policy=policy,
            decision='allowed' if allowed else 'denied'
        ).inc()
    except Exception as e:
        logger.error(f"Failed to record admission decision metric: {e}")


def get_metrics_text() -> bytes:
    """
    Get Prometheus metrics in text format.

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(metrics_registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
