#!/usr/bin/env python3
"""
Celery worker startup script for the scan queue.

Usage:
    privacy-advisor-worker [options]

Options:
    --queue QUEUE       Queue name to consume from (default: QUEUE_NAME)
    --concurrency N     Number of worker processes (default: QUEUE_CONCURRENCY)
    --loglevel LEVEL    Log level (default: INFO)
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

from privacy_advisor.core.config import init_config
from privacy_advisor.core.logging_config import configure_structlog

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Start the scan worker')

    parser.add_argument(
        '--queue',
        type=str,
        default=None,
        help='Queue name to consume from (default: configured scan queue)'
    )

    parser.add_argument(
        '--concurrency',
        type=int,
        default=None,
        help='Number of worker processes (default: configured concurrency)'
    )

    parser.add_argument(
        '--loglevel',
        type=str,
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Log level (default: INFO)'
    )

    parser.add_argument(
        '--pool',
        type=str,
        default='prefork',
        choices=['prefork', 'solo', 'threads'],
        help='Worker pool type (default: prefork)'
    )

    return parser.parse_args(argv)


def build_worker_args(args, config):
    """Celery worker argv for the parsed options and configuration."""
    queue = args.queue or config.queue.name
    concurrency = args.concurrency or config.queue.concurrency
    return [
        'worker',
        f'--loglevel={args.loglevel}',
        f'--pool={args.pool}',
        '--queues', queue,
        '--concurrency', str(concurrency),
        f'--time-limit={config.queue.task_time_limit}',
        '--max-tasks-per-child=1000',
        '--prefetch-multiplier=1',
    ]


def main(argv=None):
    """Start Celery worker."""
    load_dotenv()
    args = parse_args(argv)

    try:
        config = init_config()
    except Exception as e:
        logger.error(f"Failed to initialize configuration: {e}")
        sys.exit(1)

    configure_structlog(
        log_level=args.loglevel,
        json_logs=(config.monitoring.log_format == 'json'),
        development_mode=(config.environment == 'development')
    )

    # Registers the scan task on the shared Celery app
    from privacy_advisor.services.scan_tasks import celery_app

    worker_args = build_worker_args(args, config)
    logger.info(f"Starting Celery worker with args: {' '.join(worker_args)}")

    try:
        celery_app.worker_main(argv=worker_args)
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
