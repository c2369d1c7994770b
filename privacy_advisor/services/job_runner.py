"""
Executes broker jobs with an external scan executor.
"""

import importlib
import logging
from typing import Any, Optional, Protocol, runtime_checkable

from privacy_advisor.core.logging_config import job_context
from privacy_advisor.models.job import Job, RetryDecision
from privacy_advisor.services.job_broker import JobBroker

logger = logging.getLogger(__name__)


@runtime_checkable
class ScanExecutor(Protocol):
    """Performs the actual scan for a job payload and persists its findings."""

    async def execute(self, job: Job) -> Any:
        ...


class JobRunner:
    """
    Runs one job execution: consume, execute, then ack or record the failure.
    """

    def __init__(self, broker: JobBroker, executor: ScanExecutor):
        self.broker = broker
        self.executor = executor

    async def run(self, job_id: str) -> Optional[RetryDecision]:
        """
        Execute the job with the given id.

        Args:
            job_id: Broker job id

        Returns:
            None on success, or a retry decision when the job should run again

        Raises:
            JobNotFoundError: if the broker does not know the job
            Exception: the executor's error once the job has been dead-lettered
        """
        job = self.broker.consume(job_id)
        attempt = job.attempts_made + 1

        with job_context(job.id, job.queue, attempt):
            logger.info(f"Running job {job.id} ({job.name}), attempt {attempt}/{job.opts.attempts}")

            try:
                await self.executor.execute(job)
            except Exception as e:
                decision = self.broker.fail_with_retry(job, e)
                if decision.retry:
                    return decision
                logger.exception(f"Job {job.id} exhausted {job.opts.attempts} attempts: {e}")
                raise

            self.broker.ack(job)
            logger.info(f"Job {job.id} completed")
            return None


def load_executor(import_path: str) -> ScanExecutor:
    """
    Resolve a scan executor from ``package.module:attribute``.

    A class attribute is instantiated without arguments.
    """
    module_name, _, attribute = import_path.partition(':')
    if not module_name or not attribute:
        raise ValueError(f"Invalid executor path {import_path!r}, expected 'module:attribute'")

    target = getattr(importlib.import_module(module_name), attribute)
    executor = target() if isinstance(target, type) else target
    if not isinstance(executor, ScanExecutor):
        raise TypeError(f"{import_path} does not provide an async execute(job) method")
    return executor
