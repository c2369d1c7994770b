"""
Celery application configuration for the scan worker pool.
"""

import logging
import os

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun

from privacy_advisor.core.config import Config, get_config

logger = logging.getLogger(__name__)


def create_celery_app(config: Config = None) -> Celery:
    """
    Create and configure Celery application.

    Args:
        config: Application configuration; falls back to the global config,
            then to REDIS_URL from the environment

    Returns:
        Configured Celery instance
    """
    if config is None:
        try:
            config = get_config()
        except RuntimeError:
            config = None

    if config is not None and config.redis.url:
        redis_url = config.redis.url
    else:
        redis_url = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
        logger.warning(f"Redis URL not configured, using REDIS_URL from env: {redis_url}")

    queue_name = config.queue.name if config else 'scan.site'
    time_limit = config.queue.task_time_limit if config else 300
    concurrency = config.queue.concurrency if config else 2

    app = Celery(
        'privacy_advisor',
        broker=redis_url,
        backend=redis_url
    )

    app.conf.update(
        task_serializer='json',
        accept_content=['json'],
        result_serializer='json',
        timezone='UTC',
        enable_utc=True,
        task_track_started=True,
        task_time_limit=time_limit,
        task_soft_time_limit=int(time_limit * 0.9),
        worker_prefetch_multiplier=1,
        worker_concurrency=concurrency,
        worker_max_tasks_per_child=1000,
        worker_hijack_root_logger=False,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        result_expires=3600,
        broker_connection_retry_on_startup=True,
        task_routes={
            'execute_scan_job': {'queue': queue_name},
        },
        task_default_queue=queue_name,
    )

    logger.info("Celery app created and configured")
    return app


_celery_app = None


def get_celery_app() -> Celery:
    """Get or create the Celery app instance."""
    global _celery_app
    if _celery_app is None:
        _celery_app = create_celery_app()
    return _celery_app


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **extra_kwargs):
    """Log when a task starts."""
    logger.info(f"Task started: {task.name} (ID: {task_id})")


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, retval=None, **extra_kwargs):
    """Log when a task completes."""
    logger.info(f"Task completed: {task.name} (ID: {task_id})")


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, args=None, kwargs=None, traceback=None, einfo=None, **extra_kwargs):
    """Log when a task fails."""
    logger.error(f"Task failed: {sender.name} (ID: {task_id}), Error: {exception}", exc_info=einfo)
