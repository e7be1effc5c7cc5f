"""Statistics rollups over job and workflow records.

Pure functions over snapshots: they take lists of records and never touch a
store, so callers decide how consistent a view they need. Ratios and means
are defined as 0 when there is nothing to divide by.

Example:
    >>> stats = compute_job_statistics(scheduler.store.all())
    >>> stats.success_rate      # percent, 0..100
    75.0
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from jobspine.core.timestamps import utcnow
from jobspine.jobs.models import Job, JobStatus

if TYPE_CHECKING:
    from jobspine.workflows.models import WorkflowDefinition, WorkflowExecution


def _success_rate(completed: int, failed: int) -> float:
    finished = completed + failed
    if finished == 0:
        return 0.0
    return round(completed / finished * 100, 2)


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 3)


def _elapsed(start: datetime | None, end: datetime | None) -> float | None:
    if start is None or end is None:
        return None
    return max((end - start).total_seconds(), 0.0)


@dataclass
class JobStatistics:
    """Job counts by status and type, success rate and mean duration."""

    total_jobs: int = 0
    pending_jobs: int = 0
    scheduled_jobs: int = 0
    running_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    paused_jobs: int = 0
    success_rate: float = 0.0
    average_execution_time: float = 0.0
    jobs_by_type: dict[str, int] = field(default_factory=dict)
    jobs_by_status: dict[str, int] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["generated_at"] = self.generated_at.isoformat()
        return data


def compute_job_statistics(jobs: Iterable[Job]) -> JobStatistics:
    """Aggregate *jobs* into a :class:`JobStatistics`."""
    jobs = list(jobs)
    by_status = Counter(job.status for job in jobs)
    by_type = Counter(job.job_type for job in jobs)

    durations = [
        d
        for job in jobs
        if job.status == JobStatus.COMPLETED
        and (d := _elapsed(job.started_at, job.completed_at)) is not None
    ]

    completed = by_status[JobStatus.COMPLETED]
    failed = by_status[JobStatus.FAILED]
    return JobStatistics(
        total_jobs=len(jobs),
        pending_jobs=by_status[JobStatus.PENDING],
        scheduled_jobs=by_status[JobStatus.SCHEDULED],
        running_jobs=by_status[JobStatus.RUNNING],
        completed_jobs=completed,
        failed_jobs=failed,
        cancelled_jobs=by_status[JobStatus.CANCELLED],
        paused_jobs=by_status[JobStatus.PAUSED],
        success_rate=_success_rate(completed, failed),
        average_execution_time=_mean(durations),
        jobs_by_type=dict(by_type),
        jobs_by_status={status.value: count for status, count in by_status.items()},
    )


@dataclass
class WorkflowStatistics:
    """Workflow and execution counts, success rate and mean run time."""

    total_workflows: int = 0
    enabled_workflows: int = 0
    total_executions: int = 0
    running_executions: int = 0
    completed_executions: int = 0
    failed_executions: int = 0
    cancelled_executions: int = 0
    paused_executions: int = 0
    success_rate: float = 0.0
    average_execution_time: float = 0.0
    executions_by_status: dict[str, int] = field(default_factory=dict)
    executions_by_workflow: dict[str, int] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["generated_at"] = self.generated_at.isoformat()
        return data


def compute_workflow_statistics(
    workflows: Iterable[WorkflowDefinition],
    executions: Iterable[WorkflowExecution],
) -> WorkflowStatistics:
    """Aggregate workflow definitions and their executions."""
    from jobspine.workflows.models import WorkflowStatus

    workflows = list(workflows)
    executions = list(executions)
    by_status = Counter(execution.status for execution in executions)
    by_workflow = Counter(execution.workflow_name or execution.workflow_id for execution in executions)

    durations = [
        d
        for execution in executions
        if execution.status == WorkflowStatus.COMPLETED
        and (d := _elapsed(execution.started_at, execution.completed_at)) is not None
    ]

    completed = by_status[WorkflowStatus.COMPLETED]
    failed = by_status[WorkflowStatus.FAILED]
    return WorkflowStatistics(
        total_workflows=len(workflows),
        enabled_workflows=sum(1 for w in workflows if w.enabled),
        total_executions=len(executions),
        running_executions=by_status[WorkflowStatus.RUNNING],
        completed_executions=completed,
        failed_executions=failed,
        cancelled_executions=by_status[WorkflowStatus.CANCELLED],
        paused_executions=by_status[WorkflowStatus.PAUSED],
        success_rate=_success_rate(completed, failed),
        average_execution_time=_mean(durations),
        executions_by_status={status.value: count for status, count in by_status.items()},
        executions_by_workflow=dict(by_workflow),
    )


__all__ = [
    "JobStatistics",
    "WorkflowStatistics",
    "compute_job_statistics",
    "compute_workflow_statistics",
]
