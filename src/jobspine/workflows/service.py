"""Workflow service — definitions, executions and dispatch through jobs.

Manifesto:
    A workflow run is just another background job. ``execute()`` records a
    PENDING execution with its own copy of the definition and submits one
    ``workflow_execution`` job; the job executor later calls the runner,
    which walks the steps. Scheduling, worker capacity, timeouts and
    statistics all come from the job layer for free.

ARCHITECTURE
────────────
::

    WorkflowService(scheduler)
      │
      ├── create / get / list / update / delete      ─ WorkflowStore
      │
      ├── execute(workflow_id, inputs) ─┐
      │     ExecutionStore.insert(PENDING, definition snapshot)
      │     scheduler.submit(Job("workflow_execution",
      │                          {workflow_id, execution_id, inputs}))
      │                                 │
      │          ... tick → pool → JobExecutor ...
      │                                 ▼
      ├── _handle_job(params, ctx) ─► WorkflowRunner.run(execution_id, ctx)
      │
      ├── pause / cancel_execution                   ─ status CAS only
      ├── resume_execution                           ─ CAS, then a continuation
      │                                                job if the walk was parked
      └── statistics()                               ─ WorkflowStatistics

Tags:
    jobspine, workflows, service, dispatcher
"""

from __future__ import annotations

import copy
from typing import Any

from jobspine.audit import AuditTrail
from jobspine.core.errors import WorkflowDefinitionError
from jobspine.core.logging import get_logger
from jobspine.core.timestamps import new_id
from jobspine.jobs.models import Job, JobPriority
from jobspine.jobs.registry import HandlerResult, JobContext
from jobspine.scheduling.service import JobScheduler
from jobspine.stats import WorkflowStatistics, compute_workflow_statistics
from jobspine.workflows.actions import ActionRegistry, register_builtin_actions
from jobspine.workflows.models import (
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStatus,
    validate_definition,
)
from jobspine.workflows.runner import WorkflowRunner
from jobspine.workflows.store import ExecutionStore, WorkflowStore

logger = get_logger(__name__)

WORKFLOW_JOB_TYPE = "workflow_execution"


class WorkflowService:
    """Workflow management API bound to a :class:`JobScheduler`.

    Example:
        >>> scheduler = JobScheduler()
        >>> workflows = WorkflowService(scheduler)
        >>> wf_id = workflows.create(definition)
        >>> workflows.execute(wf_id, {"x": 1})
        True
    """

    def __init__(
        self,
        scheduler: JobScheduler,
        *,
        store: WorkflowStore | None = None,
        executions: ExecutionStore | None = None,
        actions: ActionRegistry | None = None,
        audit: AuditTrail | None = None,
        register_builtins: bool = True,
    ) -> None:
        self.scheduler = scheduler
        self.store = store if store is not None else WorkflowStore()
        self.executions = executions if executions is not None else ExecutionStore()
        self.actions = actions if actions is not None else ActionRegistry()
        if register_builtins:
            register_builtin_actions(self.actions, scheduler.registry)
        self.audit = audit or scheduler.audit
        self.runner = WorkflowRunner(
            self.executions,
            self.actions,
            handlers=scheduler.registry,
            clock=scheduler.now,
        )
        scheduler.registry.register(
            WORKFLOW_JOB_TYPE,
            self._handle_job,
            description="Walk the steps of a workflow execution",
        )

    # === Definitions ===

    def create(self, definition: WorkflowDefinition) -> str:
        """Validate and store *definition*; returns its id.

        Raises:
            WorkflowDefinitionError: If the step graph is invalid or the
                given id is already taken.
        """
        validate_definition(definition)
        now = self.scheduler.now()
        record = definition.copy()
        record.id = record.id or new_id()
        record.created_at = now
        record.updated_at = now
        if not self.store.insert(record):
            raise WorkflowDefinitionError(f"Workflow id already exists: {record.id}", workflow=record.name)

        logger.info("workflow.created", workflow_id=record.id, workflow=record.name, steps=len(record.steps))
        self.audit.emit(
            "WORKFLOW_CREATED", "workflow", record.id, actor=record.created_by, name=record.name
        )
        return record.id

    def get(self, workflow_id: str) -> WorkflowDefinition | None:
        return self.store.get(workflow_id)

    def list(self, enabled: bool | None = None) -> list[WorkflowDefinition]:
        items = self.store.all()
        if enabled is None:
            return items
        return [w for w in items if w.enabled == enabled]

    def update(self, definition: WorkflowDefinition) -> bool:
        """Replace an existing definition. Running executions keep their copy.

        Raises:
            WorkflowDefinitionError: If the new step graph is invalid.
        """
        existing = self.store.get(definition.id)
        if existing is None:
            return False
        validate_definition(definition)
        record = definition.copy()
        record.created_at = existing.created_at
        record.updated_at = self.scheduler.now()
        if not self.store.replace(record):
            return False
        logger.info("workflow.updated", workflow_id=record.id, version=record.version)
        self.audit.emit("WORKFLOW_UPDATED", "workflow", record.id, version=record.version)
        return True

    def delete(self, workflow_id: str) -> bool:
        if not self.store.delete(workflow_id):
            return False
        logger.info("workflow.deleted", workflow_id=workflow_id)
        self.audit.emit("WORKFLOW_DELETED", "workflow", workflow_id)
        return True

    # === Execution ===

    def start(
        self,
        workflow_id: str,
        inputs: dict[str, Any] | None = None,
        started_by: str | None = None,
        priority: JobPriority = JobPriority.NORMAL,
    ) -> WorkflowExecution | None:
        """Create a PENDING execution and submit its job.

        Returns None if the workflow does not exist or is disabled.
        """
        definition = self.store.get(workflow_id)
        if definition is None or not definition.enabled:
            logger.info("workflow.execute_rejected", workflow_id=workflow_id,
                        reason="missing" if definition is None else "disabled")
            return None

        inputs = copy.deepcopy(inputs or {})
        variables = copy.deepcopy(definition.variables)
        # Inputs named like a declared variable override its default.
        for name in definition.variables:
            if name in inputs:
                variables[name] = copy.deepcopy(inputs[name])

        execution = WorkflowExecution(
            workflow_id=definition.id,
            id=new_id(),
            workflow_name=definition.name,
            workflow_version=definition.version,
            status=WorkflowStatus.PENDING,
            created_at=self.scheduler.now(),
            started_by=started_by,
            inputs=inputs,
            variables=variables,
            definition=definition,
        )
        self.executions.insert(execution)
        execution = self._submit_job(execution, priority, started_by)
        job_id = execution.job_id

        logger.info(
            "workflow.execution_created",
            workflow_id=definition.id,
            execution_id=execution.id,
            job_id=job_id,
        )
        self.audit.emit(
            "WORKFLOW_EXECUTION_STARTED",
            "workflow_execution",
            execution.id,
            actor=started_by,
            workflow_id=definition.id,
            job_id=job_id,
        )
        return execution

    def execute(
        self,
        workflow_id: str,
        inputs: dict[str, Any] | None = None,
        started_by: str | None = None,
    ) -> bool:
        """Queue a run of *workflow_id*. False if it is missing or disabled."""
        return self.start(workflow_id, inputs, started_by) is not None

    def _submit_job(
        self,
        execution: WorkflowExecution,
        priority: JobPriority,
        created_by: str | None,
        resume: bool = False,
    ) -> WorkflowExecution:
        """Submit the job that walks *execution* and record it as ``job_id``."""
        parameters: dict[str, Any] = {
            "workflow_id": execution.workflow_id,
            "execution_id": execution.id,
            "inputs": execution.inputs,
        }
        if resume:
            parameters["resume"] = True
        job_id = self.scheduler.submit(
            Job(
                job_type=WORKFLOW_JOB_TYPE,
                name=f"workflow:{execution.workflow_name}",
                priority=priority,
                parameters=parameters,
                created_by=created_by,
                max_retries=0,
                metadata={"workflow_id": execution.workflow_id, "execution_id": execution.id},
            )
        )
        return self.executions.update(execution.id, lambda e: setattr(e, "job_id", job_id)) or execution

    def run_now(self, execution_id: str) -> WorkflowExecution | None:
        """Walk a PENDING execution on the calling thread."""
        return self._finish_run(execution_id, self.runner.run(execution_id))

    def _handle_job(self, params: dict[str, Any], ctx: JobContext) -> HandlerResult:
        execution_id = params.get("execution_id")
        if not execution_id:
            return HandlerResult.fail("workflow_execution requires an 'execution_id' parameter")
        execution = self._finish_run(execution_id, self.runner.run(execution_id, job=ctx))
        if execution is None:
            return HandlerResult.fail(f"Workflow execution not found: {execution_id}")

        data = {
            "execution_id": execution.id,
            "workflow_id": execution.workflow_id,
            "status": execution.status.value,
            "outputs": execution.outputs,
            "steps": execution.step_ids(),
        }
        if execution.status == WorkflowStatus.FAILED:
            return HandlerResult.fail(execution.error or "Workflow failed", **data)
        return HandlerResult.ok(**data)

    def _finish_run(
        self, execution_id: str, execution: WorkflowExecution | None
    ) -> WorkflowExecution | None:
        if execution is None:
            return None
        if execution.status.is_terminal:
            outcome = "failure" if execution.status == WorkflowStatus.FAILED else "success"
            self.audit.emit(
                f"WORKFLOW_EXECUTION_{execution.status.name}",
                "workflow_execution",
                execution_id,
                outcome=outcome,
                workflow_id=execution.workflow_id,
                error=execution.error,
            )
        return execution

    # === Execution management ===

    def pause_execution(self, execution_id: str, actor: str | None = None) -> bool:
        done = self.executions.transition(execution_id, (WorkflowStatus.RUNNING,), WorkflowStatus.PAUSED)
        return self._managed(done, "WORKFLOW_EXECUTION_PAUSED", execution_id, actor)

    def resume_execution(self, execution_id: str, actor: str | None = None) -> bool:
        """Resume a PAUSED execution.

        A walk that already let go of its worker is continued by a new
        ``workflow_execution`` job with the priority of the previous one.
        """
        done = self.executions.transition(execution_id, (WorkflowStatus.PAUSED,), WorkflowStatus.RUNNING)
        if done is not None and done.resume_point is not None:
            previous = self.scheduler.get_job(done.job_id) if done.job_id else None
            priority = previous.priority if previous is not None else JobPriority.NORMAL
            done = self._submit_job(done, priority, actor, resume=True)
            logger.info("workflow.continuation_submitted", execution_id=execution_id, job_id=done.job_id)
        return self._managed(done, "WORKFLOW_EXECUTION_RESUMED", execution_id, actor)

    def cancel_execution(self, execution_id: str, actor: str | None = None) -> bool:
        done = self.executions.transition(
            execution_id,
            (WorkflowStatus.RUNNING, WorkflowStatus.PAUSED),
            WorkflowStatus.CANCELLED,
            completed_at=self.scheduler.now(),
            resume_point=None,
        )
        return self._managed(done, "WORKFLOW_EXECUTION_CANCELLED", execution_id, actor)

    def _managed(
        self, done: WorkflowExecution | None, action: str, execution_id: str, actor: str | None
    ) -> bool:
        if done is None:
            return False
        logger.info("workflow.execution_status", execution_id=execution_id, status=done.status.value)
        self.audit.emit(action, "workflow_execution", execution_id, actor=actor, workflow_id=done.workflow_id)
        return True

    # === Queries ===

    def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        return self.executions.get(execution_id)

    def list_executions(self, workflow_id: str | None = None) -> list[WorkflowExecution]:
        """Executions newest first, optionally for one workflow."""
        return self.executions.find(lambda e: workflow_id is None or e.workflow_id == workflow_id)

    def executions_by_status(self, status: WorkflowStatus | str) -> list[WorkflowExecution]:
        try:
            wanted = WorkflowStatus(status)
        except ValueError:
            return []
        return self.executions.find(lambda e: e.status == wanted)

    def statistics(self) -> WorkflowStatistics:
        return compute_workflow_statistics(self.store.all(), self.executions.all())
