"""
Dead-letter recovery: move dead scan jobs back onto their source queue.

Usage:
    privacy-advisor-requeue [SOURCE] [DEAD] [LIMIT]

Reads REDIS_URL from the environment (default redis://localhost:6379/0).
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from privacy_advisor.services.job_broker import DEFAULT_DEAD_QUEUE, DEFAULT_QUEUE, JobBroker, SCAN_JOB_NAME

logger = logging.getLogger(__name__)


def requeue_dead_jobs(
    broker: JobBroker,
    source: str = DEFAULT_QUEUE,
    dead: str = DEFAULT_DEAD_QUEUE,
    limit: int = 50
) -> int:
    """
    Re-enqueue up to limit dead jobs onto the source queue.

    Each job keeps its payload, name and {attempts, backoff} options and is
    removed from the dead-letter store only after its re-enqueue succeeded.

    Returns:
        Number of jobs requeued

    Raises:
        BrokerError: if a re-enqueue fails; jobs requeued before it stay requeued
    """
    jobs = broker.list_dead_letter(dead, limit)
    for job in jobs:
        logger.info(f"Requeuing job {job.id}")
        opts = {"attempts": job.opts.attempts, "backoff": job.opts.backoff}
        broker.enqueue(job.name or SCAN_JOB_NAME, job.payload, opts, queue=source)
        broker.remove_dead_letter(job.id, dead)
    return len(jobs)


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Requeue dead-lettered scan jobs')
    parser.add_argument('source', nargs='?', default=DEFAULT_QUEUE, help=f'Target queue (default: {DEFAULT_QUEUE})')
    parser.add_argument('dead', nargs='?', default=DEFAULT_DEAD_QUEUE, help=f'Dead-letter queue (default: {DEFAULT_DEAD_QUEUE})')
    parser.add_argument('limit', nargs='?', type=int, default=50, help='Maximum jobs to requeue (default: 50)')
    return parser.parse_args(argv)


def build_broker(dead: str) -> JobBroker:
    """Redis broker dispatching to the Celery worker pool."""
    from privacy_advisor.core.config import RedisConfig
    from privacy_advisor.core.redis_client import create_redis_client
    from privacy_advisor.services.celery_app import get_celery_app
    from privacy_advisor.services.job_broker import RedisJobBroker

    redis_url = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    redis_client = create_redis_client(RedisConfig(), url=redis_url)
    return RedisJobBroker(redis_client, celery_app=get_celery_app(), dead_letter_queue=dead)


def main(argv: Optional[List[str]] = None, broker: Optional[JobBroker] = None) -> int:
    """Requeue dead jobs and report the count. Returns the process exit code."""
    args = parse_args(argv)
    try:
        broker = broker or build_broker(args.dead)
        count = requeue_dead_jobs(broker, args.source, args.dead, args.limit)
    except Exception as e:
        logger.error(f"Requeue failed: {e}", exc_info=True)
        print(f"Requeue failed: {e}", file=sys.stderr)
        return 1

    if count == 0:
        print("No jobs to requeue")
    else:
        print(f"Requeued {count} jobs")
    return 0


if __name__ == '__main__':
    sys.exit(main())
