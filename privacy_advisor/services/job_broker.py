"""
Durable job broker for the scan pipeline.

The broker owns job records and their state (waiting, active, dead). Celery
only carries job ids between processes: every execution reads the record
back from the broker, so attempt counts and backoff options survive worker
restarts and redeliveries.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Union

from redis import Redis
from redis.exceptions import RedisError

from privacy_advisor.models.job import (
    BackoffPolicy,
    BackoffType,
    Job,
    JobOptions,
    JobStatus,
    QueueMetrics,
    RetryDecision,
)
from privacy_advisor.services.errors import BrokerError, JobNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_QUEUE = 'scan.site'
DEFAULT_DEAD_QUEUE = 'scan.dead'
SCAN_JOB_NAME = 'scan-url'
SCAN_TASK_NAME = 'execute_scan_job'


class JobBroker(ABC):
    """Capability interface over the queue backend."""

    def __init__(self, dead_letter_queue: str = DEFAULT_DEAD_QUEUE):
        self.dead_letter_queue = dead_letter_queue

    @abstractmethod
    def enqueue(
        self,
        name: str,
        payload: Dict[str, Any],
        opts: Union[JobOptions, Dict[str, Any], None] = None,
        queue: str = DEFAULT_QUEUE
    ) -> Job:
        """
        Store a new waiting job and hand it to the worker pool.

        Raises:
            BrokerError: if the job could not be stored or dispatched
        """

    @abstractmethod
    def consume(self, job_id: str) -> Job:
        """
        Mark a job active and return it.

        Raises:
            JobNotFoundError: if the job is not waiting or active
        """

    @abstractmethod
    def ack(self, job: Job) -> None:
        """Mark an active job completed and drop its record."""

    @abstractmethod
    def move_to_dead_letter(self, job: Job, reason: str, dead_queue: Optional[str] = None) -> None:
        """Move a job out of its queue into the dead-letter store."""

    @abstractmethod
    def list_dead_letter(self, dead_queue: Optional[str] = None, limit: int = 50) -> List[Job]:
        """Oldest first, at most limit jobs."""

    @abstractmethod
    def remove_dead_letter(self, job_id: str, dead_queue: Optional[str] = None) -> bool:
        """Remove one job from the dead-letter store. Returns False if it was not there."""

    @abstractmethod
    def get_metrics(self, queue: str = DEFAULT_QUEUE) -> QueueMetrics:
        """Snapshot of waiting, active and dead-lettered job counts."""

    @abstractmethod
    def _save_retry(self, job: Job) -> None:
        """Persist a failed job back into its queue's waiting state."""

    def fail_with_retry(self, job: Job, error: Union[BaseException, str]) -> RetryDecision:
        """
        Record a failed execution.

        If attempts remain the job returns to waiting and the decision carries
        the backoff delay; otherwise the job is dead-lettered.

        Args:
            job: The active job that failed
            error: Failure cause

        Returns:
            Retry decision for the caller's scheduler
        """
        job.attempts_made += 1
        job.failed_reason = str(error)

        if job.attempts_made < job.opts.attempts:
            job.status = JobStatus.WAITING
            backoff = job.opts.backoff
            delay = backoff.delay_for(job.attempts_made) if backoff else 0.0
            self._save_retry(job)
            logger.warning(
                f"Job {job.id} failed (attempt {job.attempts_made}/{job.opts.attempts}), "
                f"retrying in {delay:.1f}s: {job.failed_reason}"
            )
            return RetryDecision(retry=True, delay_seconds=delay, attempts_made=job.attempts_made)

        self.move_to_dead_letter(job, job.failed_reason)
        return RetryDecision(retry=False, attempts_made=job.attempts_made)

    @staticmethod
    def build_job(
        name: str,
        payload: Dict[str, Any],
        opts: Union[JobOptions, Dict[str, Any], None],
        queue: str
    ) -> Job:
        if opts is None:
            opts = JobOptions()
        elif isinstance(opts, dict):
            opts = JobOptions.model_validate(opts)
        return Job(name=name, payload=dict(payload), opts=opts, queue=queue)


class InMemoryJobBroker(JobBroker):
    """Process-local broker used by tests and single-process runs."""

    def __init__(self, dead_letter_queue: str = DEFAULT_DEAD_QUEUE):
        super().__init__(dead_letter_queue)
        self._lock = threading.Lock()
        self._jobs: Dict[str, Job] = {}
        self._dead: Dict[str, "OrderedDict[str, Job]"] = {}

    def enqueue(self, name, payload, opts=None, queue=DEFAULT_QUEUE) -> Job:
        with self._lock:
            job = self.build_job(name, payload, opts, queue)
            self._jobs[job.id] = job
        logger.info(f"Enqueued job {job.id} ({name}) on {queue}")
        return job.model_copy(deep=True)

    def consume(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            job.status = JobStatus.ACTIVE
            return job.model_copy(deep=True)

    def ack(self, job: Job) -> None:
        with self._lock:
            self._jobs.pop(job.id, None)
        job.status = JobStatus.COMPLETED

    def _save_retry(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)

    def move_to_dead_letter(self, job: Job, reason: str, dead_queue: Optional[str] = None) -> None:
        dead_queue = dead_queue or self.dead_letter_queue
        job.status = JobStatus.DEAD
        job.failed_reason = reason
        with self._lock:
            self._jobs.pop(job.id, None)
            self._dead.setdefault(dead_queue, OrderedDict())[job.id] = job.model_copy(deep=True)
        logger.error(f"Job {job.id} moved to dead-letter queue {dead_queue}: {reason}")

    def list_dead_letter(self, dead_queue: Optional[str] = None, limit: int = 50) -> List[Job]:
        with self._lock:
            dead = self._dead.get(dead_queue or self.dead_letter_queue, OrderedDict())
            return [job.model_copy(deep=True) for job in list(dead.values())[:max(limit, 0)]]

    def remove_dead_letter(self, job_id: str, dead_queue: Optional[str] = None) -> bool:
        with self._lock:
            dead = self._dead.get(dead_queue or self.dead_letter_queue, OrderedDict())
            return dead.pop(job_id, None) is not None

    def get_metrics(self, queue: str = DEFAULT_QUEUE) -> QueueMetrics:
        with self._lock:
            jobs = [job for job in self._jobs.values() if job.queue == queue]
            return QueueMetrics(
                waiting=sum(1 for job in jobs if job.status == JobStatus.WAITING),
                active=sum(1 for job in jobs if job.status == JobStatus.ACTIVE),
                failed=len(self._dead.get(self.dead_letter_queue, {})),
            )

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None


class RedisJobBroker(JobBroker):
    """
    Redis-backed broker.

    Keys (prefix ``jobs`` by default):
        jobs:records              hash   job id -> job JSON (waiting and active)
        jobs:<queue>:waiting      set    waiting job ids
        jobs:<queue>:active       set    active job ids
        jobs:<dead>:dead          list   dead job ids, oldest first
        jobs:<dead>:dead:records  hash   job id -> dead job JSON
    """

    # KEYS[1]=waiting, KEYS[2]=active, KEYS[3]=records, ARGV[1]=job id
    CONSUME_SCRIPT = """
    if redis.call("smove", KEYS[1], KEYS[2], ARGV[1]) == 1 or redis.call("sismember", KEYS[2], ARGV[1]) == 1 then
        return redis.call("hget", KEYS[3], ARGV[1])
    end
    return false
    """

    def __init__(
        self,
        redis_client: Redis,
        celery_app=None,
        dead_letter_queue: str = DEFAULT_DEAD_QUEUE,
        key_prefix: str = 'jobs',
        task_name: str = SCAN_TASK_NAME
    ):
        """
        Initialize the broker.

        Args:
            redis_client: Redis client (decode_responses=True)
            celery_app: Celery app used to dispatch job ids to workers; None stores only
            dead_letter_queue: Default dead-letter queue name
            key_prefix: Redis key prefix
            task_name: Celery task executing a job id
        """
        super().__init__(dead_letter_queue)
        self.redis = redis_client
        self.celery_app = celery_app
        self.key_prefix = key_prefix
        self.task_name = task_name
        self._consume = self.redis.register_script(self.CONSUME_SCRIPT)

    @property
    def _records_key(self) -> str:
        return f"{self.key_prefix}:records"

    def _state_key(self, queue: str, state: str) -> str:
        return f"{self.key_prefix}:{queue}:{state}"

    def _dead_keys(self, dead_queue: Optional[str]):
        base = f"{self.key_prefix}:{dead_queue or self.dead_letter_queue}:dead"
        return base, f"{base}:records"

    def enqueue(self, name, payload, opts=None, queue=DEFAULT_QUEUE) -> Job:
        job = self.build_job(name, payload, opts, queue)
        try:
            pipe = self.redis.pipeline()
            pipe.hset(self._records_key, job.id, job.model_dump_json())
            pipe.sadd(self._state_key(queue, 'waiting'), job.id)
            pipe.execute()
        except RedisError as e:
            raise BrokerError(f"Failed to store job {name} on {queue}: {e}") from e

        if self.celery_app is not None:
            try:
                self.celery_app.send_task(self.task_name, args=[job.id], queue=queue)
            except Exception as e:
                self._discard(job)
                raise BrokerError(f"Failed to dispatch job {job.id} to {queue}: {e}") from e

        logger.info(f"Enqueued job {job.id} ({name}) on {queue}")
        return job

    def _discard(self, job: Job) -> None:
        try:
            pipe = self.redis.pipeline()
            pipe.hdel(self._records_key, job.id)
            pipe.srem(self._state_key(job.queue, 'waiting'), job.id)
            pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to discard undispatched job {job.id}: {e}")

    def consume(self, job_id: str) -> Job:
        # the record names the queue whose state sets the job moves between
        raw = self.redis.hget(self._records_key, job_id)
        if raw is None:
            raise JobNotFoundError(job_id)
        job = Job.model_validate_json(raw)

        raw = self._consume(
            keys=[
                self._state_key(job.queue, 'waiting'),
                self._state_key(job.queue, 'active'),
                self._records_key,
            ],
            args=[job_id],
        )
        if not raw:
            raise JobNotFoundError(job_id)

        job = Job.model_validate_json(raw)
        job.status = JobStatus.ACTIVE
        self.redis.hset(self._records_key, job.id, job.model_dump_json())
        return job

    def ack(self, job: Job) -> None:
        pipe = self.redis.pipeline()
        pipe.hdel(self._records_key, job.id)
        pipe.srem(self._state_key(job.queue, 'active'), job.id)
        pipe.execute()
        job.status = JobStatus.COMPLETED

    def _save_retry(self, job: Job) -> None:
        pipe = self.redis.pipeline()
        pipe.hset(self._records_key, job.id, job.model_dump_json())
        pipe.smove(self._state_key(job.queue, 'active'), self._state_key(job.queue, 'waiting'), job.id)
        pipe.execute()

    def move_to_dead_letter(self, job: Job, reason: str, dead_queue: Optional[str] = None) -> None:
        job.status = JobStatus.DEAD
        job.failed_reason = reason
        dead_list, dead_records = self._dead_keys(dead_queue)

        pipe = self.redis.pipeline()
        pipe.hset(dead_records, job.id, job.model_dump_json())
        pipe.rpush(dead_list, job.id)
        pipe.hdel(self._records_key, job.id)
        pipe.srem(self._state_key(job.queue, 'active'), job.id)
        pipe.srem(self._state_key(job.queue, 'waiting'), job.id)
        pipe.execute()
        logger.error(f"Job {job.id} moved to dead-letter queue {dead_queue or self.dead_letter_queue}: {reason}")

    def list_dead_letter(self, dead_queue: Optional[str] = None, limit: int = 50) -> List[Job]:
        if limit <= 0:
            return []
        dead_list, dead_records = self._dead_keys(dead_queue)
        job_ids = self.redis.lrange(dead_list, 0, limit - 1)
        if not job_ids:
            return []

        jobs = []
        for job_id, raw in zip(job_ids, self.redis.hmget(dead_records, job_ids)):
            if raw is None:
                logger.warning(f"Dead-letter entry {job_id} has no record, skipping")
                continue
            jobs.append(Job.model_validate_json(raw))
        return jobs

    def remove_dead_letter(self, job_id: str, dead_queue: Optional[str] = None) -> bool:
        dead_list, dead_records = self._dead_keys(dead_queue)
        pipe = self.redis.pipeline()
        pipe.lrem(dead_list, 0, job_id)
        pipe.hdel(dead_records, job_id)
        removed, _ = pipe.execute()
        return removed > 0

    def get_metrics(self, queue: str = DEFAULT_QUEUE) -> QueueMetrics:
        dead_list, _ = self._dead_keys(None)
        pipe = self.redis.pipeline()
        pipe.scard(self._state_key(queue, 'waiting'))
        pipe.scard(self._state_key(queue, 'active'))
        pipe.llen(dead_list)
        waiting, active, failed = pipe.execute()
        return QueueMetrics(waiting=waiting, active=active, failed=failed)


def enqueue_scan(
    broker: JobBroker,
    scan_id: str,
    url: str,
    normalized_input: Optional[str] = None,
    request_id: Optional[str] = None,
    attempts: int = 3,
    backoff_ms: int = 5000,
    queue: str = DEFAULT_QUEUE
) -> Job:
    """
    Enqueue a scan of url for the given scan record.

    Retries use exponential backoff starting at backoff_ms.
    """
    payload = {
        "scanId": scan_id,
        "url": url,
        "normalizedInput": normalized_input or url,
        "requestId": request_id,
    }
    opts = JobOptions(
        attempts=attempts,
        backoff=BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=backoff_ms),
    )
    return broker.enqueue(SCAN_JOB_NAME, payload, opts, queue=queue)
