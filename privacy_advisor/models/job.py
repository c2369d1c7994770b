"""
Job pipeline data models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_serializer


class JobStatus(str, Enum):
    """Job status enumeration."""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    DEAD = "dead"


class BackoffType(str, Enum):
    """Retry delay strategy."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class BackoffPolicy(BaseModel):
    """
    Delay between retries of a failed job.

    Accepts the compact string form ``"fixed:1000"`` or a mapping
    ``{"type": "exponential", "delay": 5000}`` and serializes back to the
    form it was given, so requeued jobs keep their original options.
    """
    model_config = ConfigDict(frozen=True)

    type: BackoffType = BackoffType.FIXED
    delay_ms: int = Field(default=0, ge=0)
    compact: bool = Field(default=False, exclude=True)

    @classmethod
    def parse(cls, value: Union[str, Dict[str, Any], 'BackoffPolicy', None]) -> Optional['BackoffPolicy']:
        """Build a policy from its string, mapping or model form."""
        if value is None or isinstance(value, BackoffPolicy):
            return value
        if isinstance(value, str):
            kind, _, delay = value.partition(':')
            return cls(type=BackoffType(kind.strip().lower()), delay_ms=int(delay or 0), compact=True)
        if isinstance(value, dict):
            delay = value.get('delay', value.get('delay_ms', 0))
            return cls(type=BackoffType(value.get('type', 'fixed')), delay_ms=int(delay))
        raise ValueError(f"Unsupported backoff policy: {value!r}")

    def delay_for(self, attempt: int) -> float:
        """
        Seconds to wait before the retry following the given failed attempt.

        Args:
            attempt: Number of attempts made so far (1 after the first failure)
        """
        base = self.delay_ms / 1000.0
        if self.type == BackoffType.EXPONENTIAL:
            return base * (2 ** max(attempt - 1, 0))
        return base

    @model_serializer
    def serialize(self):
        if self.compact:
            return f"{self.type.value}:{self.delay_ms}"
        return {"type": self.type.value, "delay": self.delay_ms}


class JobOptions(BaseModel):
    """Options a producer attaches to a job on enqueue."""
    attempts: int = Field(default=3, ge=1, description="Total executions allowed before dead-lettering")
    backoff: Optional[BackoffPolicy] = Field(None, description="Delay policy between attempts")

    @field_validator('backoff', mode='before')
    @classmethod
    def parse_backoff(cls, v):
        return BackoffPolicy.parse(v)


class Job(BaseModel):
    """A unit of work owned by the broker."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., description="Job name, e.g. 'scan-url'")
    queue: str = Field(default="scan.site", description="Queue the job belongs to")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Target descriptor")
    opts: JobOptions = Field(default_factory=JobOptions)
    attempts_made: int = Field(default=0, ge=0)
    status: JobStatus = Field(default=JobStatus.WAITING)
    failed_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_enqueue_format(self) -> Dict[str, Any]:
        """Producer-facing representation: {name, data, opts}."""
        return {
            "name": self.name,
            "data": self.payload,
            "opts": self.opts.model_dump(exclude_none=True),
        }


class RetryDecision(BaseModel):
    """Outcome of recording a failed execution."""
    retry: bool
    delay_seconds: float = 0.0
    attempts_made: int = 0


class QueueMetrics(BaseModel):
    """Point-in-time snapshot of a queue, read from the broker."""
    waiting: int = Field(default=0, ge=0)
    active: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)

    @computed_field
    @property
    def total_pending(self) -> int:
        return self.waiting + self.active

    @property
    def failure_ratio(self) -> float:
        total = self.total_pending + self.failed
        if total == 0:
            return 0.0
        return self.failed / total
