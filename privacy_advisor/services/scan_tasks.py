"""
Celery tasks for scan job execution.
"""

import asyncio
import logging
from typing import Optional

from privacy_advisor.services.celery_app import get_celery_app
from privacy_advisor.services.errors import JobNotFoundError
from privacy_advisor.services.job_broker import SCAN_TASK_NAME
from privacy_advisor.services.job_runner import JobRunner

logger = logging.getLogger(__name__)

celery_app = get_celery_app()

_job_runner: Optional[JobRunner] = None


def get_job_runner() -> JobRunner:
    """Build the worker's job runner from configuration on first use."""
    global _job_runner
    if _job_runner is None:
        # Import here to avoid loading Redis and the executor at task registration
        from privacy_advisor.core.config import get_or_init_config
        from privacy_advisor.core.redis_client import create_redis_client
        from privacy_advisor.services.job_broker import RedisJobBroker
        from privacy_advisor.services.job_runner import load_executor

        config = get_or_init_config()
        if not config.queue.executor:
            raise RuntimeError("QUEUE_EXECUTOR is not configured")

        broker = RedisJobBroker(
            create_redis_client(config.redis),
            dead_letter_queue=config.queue.dead_name,
        )
        _job_runner = JobRunner(broker, load_executor(config.queue.executor))
    return _job_runner


def set_job_runner(runner: Optional[JobRunner]) -> None:
    """Replace the worker's job runner (None rebuilds it from configuration)."""
    global _job_runner
    _job_runner = runner


@celery_app.task(name=SCAN_TASK_NAME, bind=True, max_retries=None)
def execute_scan_job(self, job_id: str):
    """
    Execute one attempt of a scan job.

    Retry bookkeeping lives in the broker: a failed attempt with attempts
    left is re-scheduled with the job's backoff delay, an exhausted job is
    dead-lettered and the task fails.

    Args:
        self: Celery task instance
        job_id: Broker job id

    Returns:
        Result dict
    """
    runner = get_job_runner()
    try:
        decision = asyncio.run(runner.run(job_id))
    except JobNotFoundError:
        # redelivery of a job that already completed or was dead-lettered
        logger.warning(f"Job {job_id} is no longer pending, skipping delivery")
        return {"job_id": job_id, "status": "skipped"}

    if decision is not None:
        raise self.retry(countdown=decision.delay_seconds)

    return {"job_id": job_id, "status": "completed"}
