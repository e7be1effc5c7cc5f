"""Workflow domain models.

Defines the records for multi-step automations:
- WorkflowDefinition / WorkflowStep: the graph authors create
- WorkflowExecution / StepExecution: one run and its per-step records
- WorkflowStatus / StepStatus / StepType and the execution state machine

An execution holds a private deep copy of the definition taken when it was
created, so editing or deleting a workflow never changes a run in flight.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from jobspine.core.errors import ExpressionError, WorkflowDefinitionError
from jobspine.core.timestamps import to_iso8601, utcnow
from jobspine.jobs.models import InvalidTransitionError
from jobspine.workflows.expressions import compile_expression

DEFAULT_STEP_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_ITERATIONS = 1000


class StepType(str, Enum):
    """Type of workflow step. Parsed case-insensitively."""

    ACTION = "action"
    CONDITION = "condition"
    LOOP = "loop"
    PARALLEL = "parallel"

    @classmethod
    def _missing_(cls, value: object) -> StepType | None:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class WorkflowStatus(str, Enum):
    """Status of a workflow execution.

    Valid transition graph::

        PENDING → RUNNING | FAILED | CANCELLED
        RUNNING → COMPLETED | FAILED | PAUSED | CANCELLED
        PAUSED  → RUNNING | CANCELLED
        COMPLETED, FAILED, CANCELLED → (terminal)
    """

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED)


WORKFLOW_VALID_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.PENDING: frozenset({
        WorkflowStatus.RUNNING,
        WorkflowStatus.FAILED,
        WorkflowStatus.CANCELLED,
    }),
    WorkflowStatus.RUNNING: frozenset({
        WorkflowStatus.COMPLETED,
        WorkflowStatus.FAILED,
        WorkflowStatus.PAUSED,
        WorkflowStatus.CANCELLED,
    }),
    WorkflowStatus.PAUSED: frozenset({
        WorkflowStatus.RUNNING,
        WorkflowStatus.FAILED,
        WorkflowStatus.CANCELLED,
    }),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
    WorkflowStatus.CANCELLED: frozenset(),
}


def validate_workflow_transition(current: WorkflowStatus, target: WorkflowStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in WORKFLOW_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value, "WorkflowStatus")


class StepStatus(str, Enum):
    """Status of one step execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class WorkflowStep:
    """One node of a workflow graph.

    ``condition`` is a guard for action/parallel steps, the branch test
    for condition steps (true → ``next_steps[0]``, false →
    ``next_steps[1]``) and the continue-test for loop steps.
    """

    id: str
    name: str = ""
    step_type: StepType = StepType.ACTION
    action: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    next_steps: list[str] = field(default_factory=list)
    condition: str | None = None
    timeout_seconds: float = DEFAULT_STEP_TIMEOUT_SECONDS
    required: bool = True
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.step_type = StepType(self.step_type)
        if not self.name:
            self.name = self.id

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["step_type"] = self.step_type.value
        return data


@dataclass
class WorkflowDefinition:
    """A named, versioned graph of steps sharing a variables namespace.

    Example:
        >>> definition = WorkflowDefinition(
        ...     name="nightly-maintenance",
        ...     steps=[
        ...         WorkflowStep(id="cleanup", action="cleanup_logs", next_steps=["report"]),
        ...         WorkflowStep(id="report", action="performance_report"),
        ...     ],
        ... )
    """

    name: str
    steps: list[WorkflowStep] = field(default_factory=list)
    id: str = ""
    description: str = ""
    version: str = "1.0"
    variables: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    entry_step_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None
    created_by: str | None = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def step(self, step_id: str) -> WorkflowStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    @property
    def entry_step(self) -> WorkflowStep | None:
        if self.entry_step_id:
            return self.step(self.entry_step_id)
        return self.steps[0] if self.steps else None

    def copy(self) -> WorkflowDefinition:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["steps"] = [step.to_dict() for step in self.steps]
        data["created_at"] = to_iso8601(self.created_at)
        data["updated_at"] = to_iso8601(self.updated_at)
        return data


def validate_definition(definition: WorkflowDefinition) -> None:
    """Check the step graph of *definition*.

    Raises:
        WorkflowDefinitionError: On an empty graph, blank or duplicate step
            ids, dangling references, or unparseable conditions.
    """
    name = definition.name or definition.id
    if not definition.name or not definition.name.strip():
        raise WorkflowDefinitionError("Workflow name is required", workflow=name)
    if not definition.steps:
        raise WorkflowDefinitionError("Workflow must have at least one step", workflow=name)

    seen: set[str] = set()
    for step in definition.steps:
        if not step.id or not step.id.strip():
            raise WorkflowDefinitionError("Step id is required", workflow=name)
        if step.id in seen:
            raise WorkflowDefinitionError(f"Duplicate step id: {step.id!r}", workflow=name)
        seen.add(step.id)

    for step in definition.steps:
        unknown = [s for s in step.next_steps if s not in seen]
        if unknown:
            raise WorkflowDefinitionError(
                f"Step {step.id!r} references unknown steps: {unknown}", workflow=name
            )
        if step.timeout_seconds is not None and step.timeout_seconds <= 0:
            raise WorkflowDefinitionError(f"Step {step.id!r} timeout must be positive", workflow=name)
        if step.step_type in (StepType.CONDITION, StepType.LOOP) and not step.condition:
            raise WorkflowDefinitionError(
                f"{step.step_type.value.capitalize()} step {step.id!r} requires a condition",
                workflow=name,
            )
        if step.step_type == StepType.CONDITION and len(step.next_steps) > 2:
            raise WorkflowDefinitionError(
                f"Condition step {step.id!r} takes at most two next steps (true, false)",
                workflow=name,
            )
        if step.condition:
            try:
                compile_expression(step.condition)
            except ExpressionError as exc:
                raise WorkflowDefinitionError(
                    f"Step {step.id!r} has an invalid condition: {exc.reason}",
                    workflow=name,
                    cause=exc,
                ) from exc

    if definition.entry_step_id and definition.entry_step_id not in seen:
        raise WorkflowDefinitionError(
            f"Entry step {definition.entry_step_id!r} does not exist", workflow=name
        )


@dataclass
class StepExecution:
    """Record of one step visit (one per loop iteration)."""

    step_id: str
    step_name: str = ""
    id: str = ""
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    inputs: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    error: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["started_at"] = to_iso8601(self.started_at)
        data["completed_at"] = to_iso8601(self.completed_at)
        data["duration_seconds"] = self.duration_seconds
        return data


@dataclass
class WorkflowExecution:
    """One run of a workflow."""

    workflow_id: str
    id: str = ""
    workflow_name: str = ""
    workflow_version: str = ""
    status: WorkflowStatus = WorkflowStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    started_by: str | None = None
    inputs: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    step_executions: list[StepExecution] = field(default_factory=list)
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    job_id: str | None = None
    # Where a paused walk stopped; set only while it is parked.
    resume_point: dict[str, Any] | None = None
    step_visits: int = 0
    definition: WorkflowDefinition | None = field(default=None, repr=False)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def step_ids(self) -> list[str]:
        """Step ids in the order they were recorded."""
        return [s.step_id for s in self.step_executions]

    def copy(self) -> WorkflowExecution:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "workflow_version": self.workflow_version,
            "status": self.status.value,
            "created_at": to_iso8601(self.created_at),
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at),
            "duration_seconds": self.duration_seconds,
            "started_by": self.started_by,
            "inputs": copy.deepcopy(self.inputs),
            "outputs": copy.deepcopy(self.outputs),
            "variables": copy.deepcopy(self.variables),
            "step_executions": [s.to_dict() for s in self.step_executions],
            "error": self.error,
            "metadata": copy.deepcopy(self.metadata),
            "job_id": self.job_id,
        }
