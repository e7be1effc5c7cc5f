"""Job domain models.

Defines the core data structures for background jobs:
- Job: a unit of asynchronous work identified by a type string
- RecurringJob: a template that spawns Jobs on a schedule
- JobStatus / JobPriority and the job state machine

These records are plain dataclasses. Stores hand out deep copies, so a
record returned to a caller is a snapshot, never a live view.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any

from jobspine.core.timestamps import to_iso8601, utcnow


class InvalidTransitionError(ValueError):
    """Raised when an illegal state transition is attempted.

    Stores never raise this to callers of the public API; it signals a
    bug inside the engine (for example a mutation that changes status
    behind the compare-and-set).
    """

    def __init__(self, current: str, target: str, enum_name: str = "JobStatus") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid {enum_name} transition: {current} → {target}")


class JobStatus(str, Enum):
    """Status of a background job.

    Valid transition graph::

        PENDING   → SCHEDULED | RUNNING | CANCELLED | PAUSED
        SCHEDULED → RUNNING | CANCELLED | PAUSED
        RUNNING   → COMPLETED | FAILED
        PAUSED    → PENDING
        FAILED    → PENDING (explicit retry)
        COMPLETED → (terminal)
        CANCELLED → (terminal)

    SCHEDULED means a tick has claimed the job and queued it on the
    worker pool; it has not started yet.
    """

    PENDING = "pending"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PAUSED = "paused"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.CANCELLED)


JOB_VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({
        JobStatus.SCHEDULED,
        JobStatus.RUNNING,
        JobStatus.CANCELLED,
        JobStatus.PAUSED,
    }),
    JobStatus.SCHEDULED: frozenset({
        JobStatus.RUNNING,
        JobStatus.CANCELLED,
        JobStatus.PAUSED,
    }),
    JobStatus.RUNNING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.FAILED,
    }),
    JobStatus.PAUSED: frozenset({
        JobStatus.PENDING,
    }),
    JobStatus.FAILED: frozenset({
        JobStatus.PENDING,  # retry
    }),
    JobStatus.COMPLETED: frozenset(),  # terminal
    JobStatus.CANCELLED: frozenset(),  # terminal
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Return True if *current → target* is allowed."""
    return target in JOB_VALID_TRANSITIONS.get(current, frozenset())


def validate_job_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_job_transition(JobStatus.RUNNING, JobStatus.COMPLETED)
        >>> validate_job_transition(JobStatus.COMPLETED, JobStatus.RUNNING)
        InvalidTransitionError: Invalid JobStatus transition: completed → running
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


class JobPriority(IntEnum):
    """Dispatch priority. Higher values are dispatched first."""

    LOW = 0
    NORMAL = 1
    HIGH = 2
    CRITICAL = 3


@dataclass
class Job:
    """A background job record.

    ``id``, ``status`` and ``created_at`` are assigned by
    :meth:`JobScheduler.submit`; anything the caller puts there is
    overwritten.

    Example:
        >>> job = Job(job_type="cleanup_logs", parameters={"log_dir": "/var/log/app"})
        >>> job_id = scheduler.submit(job)
    """

    job_type: str
    id: str = ""
    name: str = ""
    description: str = ""
    priority: JobPriority = JobPriority.NORMAL
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    retry_count: int = 0
    max_retries: int | None = None
    timeout_seconds: float | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    results: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_by: str | None = None
    assigned_to: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Wall-clock execution time, if the job has started and finished."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def can_retry(self) -> bool:
        return (
            self.status == JobStatus.FAILED
            and self.retry_count < (self.max_retries or 0)
        )

    def copy(self) -> Job:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["priority"] = self.priority.name.lower()
        data["status"] = self.status.value
        for key in ("created_at", "scheduled_at", "started_at", "completed_at"):
            data[key] = to_iso8601(getattr(self, key))
        data["duration_seconds"] = self.duration_seconds
        return data


@dataclass
class RecurringJob:
    """A template that spawns a new :class:`Job` each time its schedule fires.

    Firing never modifies ``parameters``, ``tags`` or ``metadata`` of the
    template; spawned jobs get deep copies and an independent lifecycle.
    """

    job_type: str
    schedule: str
    id: str = ""
    name: str = ""
    description: str = ""
    enabled: bool = True
    created_at: datetime = field(default_factory=utcnow)
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    created_by: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    priority: JobPriority = JobPriority.NORMAL
    max_retries: int | None = None
    timeout_seconds: float | None = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    run_count: int = 0
    last_job_id: str | None = None

    def spawn(self) -> Job:
        """Build a new Job from this template."""
        return Job(
            job_type=self.job_type,
            name=self.name,
            description=self.description,
            priority=self.priority,
            max_retries=self.max_retries,
            timeout_seconds=self.timeout_seconds,
            parameters=copy.deepcopy(self.parameters),
            tags=list(self.tags),
            metadata={**copy.deepcopy(self.metadata), "recurring_job_id": self.id},
            created_by=self.created_by,
        )

    def copy(self) -> RecurringJob:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["priority"] = self.priority.name.lower()
        for key in ("created_at", "last_run_at", "next_run_at"):
            data[key] = to_iso8601(getattr(self, key))
        return data
