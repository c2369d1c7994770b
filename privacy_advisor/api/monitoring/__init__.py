"""
Monitoring and observability module.
"""

from privacy_advisor.api.monitoring.metrics import (
    metrics_registry,
    queue_waiting_gauge,
    queue_active_gauge,
    queue_failed_gauge,
    queue_total_pending_gauge,
    admission_decisions_counter,
    record_admission_decision,
    update_queue_metrics,
)

__all__ = [
    'metrics_registry',
    'queue_waiting_gauge',
    'queue_active_gauge',
    'queue_failed_gauge',
    'queue_total_pending_gauge',
    'admission_decisions_counter',
    'record_admission_decision',
    'update_queue_metrics',
]
