"""Workflow Runner — walks a workflow execution step by step.

The ``workflow_execution`` job handler hands the runner an execution id.
The runner works exclusively from the execution's private copy of the
definition and its own variables, and records one
:class:`~jobspine.workflows.models.StepExecution` per step visit.

- **Action** steps run their action (guarded by ``condition``)
- **Condition** steps branch: true → ``next_steps[0]``, false → ``next_steps[1]``
- **Loop** steps repeat their action while ``condition`` holds
- **Parallel** steps walk every ``next_steps`` branch concurrently
- Failures of non-required steps are recorded and the walk continues

ARCHITECTURE
────────────
::

    run(execution_id, job)
      │  CAS PENDING → RUNNING, or unpark a resumed walk
      ▼
    _walk(stack)  ◄──────────────────────────────┐
      │  stack of step ids, visited in order     │
      │                                          │
      ├── _checkpoint()  PAUSED → park, release  │
      │                  CANCELLED → stop        │
      │                  job timed out → FAILED  │
      ├── visit budget (10 000 per run)          │
      ▼                                          │
    _visit(step) ── returns next step ids ───────┘
      │
      ├── ACTION     guard → action → record → next_steps
      ├── CONDITION  evaluate → next_steps[0] | next_steps[1]
      ├── LOOP       while cond and budget: action (one record per pass)
      └── PARALLEL   guard → action → ThreadPoolExecutor(branches) → join
      │
      ▼
    RUNNING → COMPLETED | FAILED (required step error)

A pause never holds a worker. The walk saves its remaining stack (one
nested frame per unfinished parallel branch) in ``resume_point`` and
returns; resuming the execution submits a fresh ``workflow_execution``
job that picks the walk up from there.

Example::

    runner = WorkflowRunner(executions, actions, handlers)
    execution = runner.run(execution_id)
    if execution.status == WorkflowStatus.COMPLETED:
        print(execution.step_ids())
"""

from __future__ import annotations

import contextvars
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any

from jobspine.core.errors import ExpressionError
from jobspine.core.logging import LogContext, get_logger
from jobspine.core.timestamps import Clock, new_id, utcnow
from jobspine.jobs.registry import HandlerRegistry, HandlerResult, JobContext
from jobspine.jobs.timeout import Deadline, TimeoutExpired, run_with_timeout
from jobspine.workflows.actions import ActionRegistry, StepAction, StepContext
from jobspine.workflows.expressions import evaluate_condition, resolve_placeholders
from jobspine.workflows.models import (
    StepExecution,
    StepStatus,
    StepType,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStatus,
    WorkflowStep,
)
from jobspine.workflows.store import ExecutionStore

logger = get_logger(__name__)

MAX_STEP_VISITS = 10_000


class _Abort(Exception):
    """A required step failed; the whole run stops."""


class _Cancelled(Exception):
    """The execution was cancelled (or removed) while walking."""


class _Paused(Exception):
    """The execution was paused; *frame* is where the walk stopped."""

    def __init__(self, frame: dict[str, Any] | None = None) -> None:
        super().__init__()
        self.frame = frame


def _frame(stack: list[str], branches: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    # Parked branches finish (in parallel) before the rest of the stack.
    return {"stack": list(stack), "branches": list(branches or [])}


@dataclass
class _RunState:
    execution_id: str
    workflow_id: str
    definition: WorkflowDefinition
    inputs: dict[str, Any]
    variables: dict[str, Any]
    job: JobContext | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)
    aborted: threading.Event = field(default_factory=threading.Event)
    visits: int = 0
    error: str | None = None
    error_step: str | None = None

    def namespace(self) -> dict[str, Any]:
        with self.lock:
            return {**self.inputs, **self.variables}

    def variables_snapshot(self) -> dict[str, Any]:
        with self.lock:
            return dict(self.variables)

    def abort(self, step_id: str | None, error: str) -> None:
        with self.lock:
            if self.error is None:
                self.error = error
                self.error_step = step_id
        self.aborted.set()
        raise _Abort(error)


class WorkflowRunner:
    """Executes the step graph of one workflow execution."""

    def __init__(
        self,
        executions: ExecutionStore,
        actions: ActionRegistry,
        handlers: HandlerRegistry | None = None,
        clock: Clock = utcnow,
        max_step_visits: int = MAX_STEP_VISITS,
        max_parallel_branches: int = 8,
    ) -> None:
        self._executions = executions
        self._actions = actions
        self._handlers = handlers
        self._clock = clock
        self._max_step_visits = max_step_visits
        self._max_parallel_branches = max_parallel_branches

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #

    def run(self, execution_id: str, job: JobContext | None = None) -> WorkflowExecution | None:
        """Walk *execution_id* until it ends or is paused; return the record.

        Starts a PENDING execution from its entry step, or continues a
        resumed one from its ``resume_point``. *job* is the context of the
        job carrying the run; once its cancel event is set the execution
        fails at the next step boundary. Returns the record unchanged if
        there is nothing to run, and None if it does not exist.
        """
        execution = self._executions.get(execution_id)
        if execution is None:
            logger.warning("workflow.execution_missing", execution_id=execution_id)
            return None

        resumed = False
        started = self._executions.transition(
            execution_id, (WorkflowStatus.PENDING,), WorkflowStatus.RUNNING, started_at=self._clock()
        )
        if started is None:
            started = self._executions.unpark(execution_id)
            resumed = started is not None
        if started is None:
            logger.warning(
                "workflow.not_runnable", execution_id=execution_id, status=execution.status.value
            )
            return self._executions.get(execution_id) or execution

        definition = started.definition
        if definition is None or definition.entry_step is None:
            return self._finish(execution_id, WorkflowStatus.FAILED, "Workflow definition is missing")

        state = _RunState(
            execution_id=execution_id,
            workflow_id=started.workflow_id,
            definition=definition,
            inputs=dict(started.inputs),
            variables=dict(started.variables),
            job=job,
            visits=started.step_visits,
        )
        frame = started.resume_point if resumed else _frame([definition.entry_step.id])

        with LogContext(execution_id=execution_id, workflow=definition.name):
            logger.info("workflow.resume" if resumed else "workflow.start", step_count=len(definition.steps))
            try:
                parked = self._drive(state, frame)
            except _Abort:
                logger.warning("workflow.failed", step=state.error_step, error=state.error)
                return self._finish(execution_id, WorkflowStatus.FAILED, state.error, state.visits)
            except _Cancelled:
                logger.info("workflow.cancelled")
                return self._executions.get(execution_id)
            except Exception as e:
                logger.exception("workflow.internal_error")
                return self._finish(execution_id, WorkflowStatus.FAILED, str(e) or type(e).__name__, state.visits)
            if parked is not None:
                return parked

            final = self._finish(execution_id, WorkflowStatus.COMPLETED, visits=state.visits)
            logger.info(
                "workflow.complete",
                status=final.status.value if final else None,
                steps=state.visits,
            )
            return final

    def _drive(self, state: _RunState, frame: dict[str, Any]) -> WorkflowExecution | None:
        """Walk *frame* to the end; returns the parked record if paused."""
        while True:
            try:
                self._walk(state, frame["stack"], frame["branches"])
                return None
            except _Paused as paused:
                frame = paused.frame or _frame([])
            status = self._executions.park(state.execution_id, frame, state.visits)
            if status == WorkflowStatus.PAUSED:
                logger.info("workflow.paused", remaining=len(frame["stack"]), branches=len(frame["branches"]))
                return self._executions.get(state.execution_id)
            if status != WorkflowStatus.RUNNING:
                raise _Cancelled()
            # Resumed before the walk could park; keep going on this worker.

    def _finish(
        self,
        execution_id: str,
        target: WorkflowStatus,
        error: str | None = None,
        visits: int = 0,
    ) -> WorkflowExecution | None:
        expected = [WorkflowStatus.RUNNING]
        if target == WorkflowStatus.FAILED:
            # A failure stands even if the execution was paused meanwhile.
            expected.append(WorkflowStatus.PAUSED)
        while True:
            done = self._executions.transition(
                execution_id,
                expected,
                target,
                completed_at=self._clock(),
                error=error,
                resume_point=None,
            )
            if done is not None:
                return done
            # Paused after the last step: park with nothing left to walk.
            status = self._executions.park(execution_id, _frame([]), visits)
            if status != WorkflowStatus.RUNNING:
                return self._executions.get(execution_id)

    # ------------------------------------------------------------------ #
    # Walking
    # ------------------------------------------------------------------ #

    def _walk(
        self, state: _RunState, stack: list[str], branches: list[dict[str, Any]] | None = None
    ) -> None:
        stack = list(stack)
        if branches:
            self._run_branches(state, branches, stack)
        while stack:
            try:
                self._checkpoint(state)
            except _Paused:
                raise _Paused(_frame(stack)) from None
            step_id = stack.pop()
            self._count_visit(state, step_id)
            step = state.definition.step(step_id)
            if step is None:
                state.abort(step_id, f"Unknown step: {step_id}")
            try:
                next_ids = self._visit(state, step, stack)
            except _Paused as paused:
                # Paused between loop passes: the loop step runs again on resume.
                raise _Paused(paused.frame or _frame(stack + [step_id])) from None
            stack.extend(reversed(next_ids))

    def _checkpoint(self, state: _RunState) -> None:
        if state.aborted.is_set():
            raise _Abort(state.error)
        if state.job is not None and state.job.cancelled:
            timeout = state.job.timeout_seconds
            state.abort(None, f"Job timed out after {timeout:g}s" if timeout else "Job was cancelled")
        status = self._executions.status(state.execution_id)
        if status == WorkflowStatus.PAUSED:
            raise _Paused()
        if status != WorkflowStatus.RUNNING:
            raise _Cancelled()

    def _count_visit(self, state: _RunState, step_id: str) -> None:
        with state.lock:
            state.visits += 1
            visits = state.visits
        if visits > self._max_step_visits:
            state.abort(step_id, f"Step visit limit exceeded ({self._max_step_visits})")

    def _visit(self, state: _RunState, step: WorkflowStep, stack: list[str]) -> list[str]:
        if step.step_type == StepType.CONDITION:
            return self._run_condition(state, step)
        if step.step_type == StepType.LOOP:
            return self._run_loop(state, step)

        if step.condition:
            started = self._clock()
            try:
                allowed = evaluate_condition(step.condition, state.namespace())
            except ExpressionError as e:
                self._record(state, step, StepStatus.FAILED, started, error=str(e))
                self._on_failure(state, step, str(e))
                return list(step.next_steps)
            if not allowed:
                self._record(state, step, StepStatus.SKIPPED, started)
                logger.info("workflow.step.skipped", step=step.id, condition=step.condition)
                return list(step.next_steps)

        record = self._run_action(state, step)
        if record.status == StepStatus.FAILED:
            self._on_failure(state, step, record.error or "Step failed")

        if step.step_type == StepType.PARALLEL:
            self._run_branches(state, [_frame([branch_id]) for branch_id in step.next_steps], stack)
            return []
        return list(step.next_steps)

    def _run_condition(self, state: _RunState, step: WorkflowStep) -> list[str]:
        started = self._clock()
        try:
            result = evaluate_condition(step.condition or "", state.namespace())
        except ExpressionError as e:
            self._record(state, step, StepStatus.FAILED, started, error=str(e))
            self._on_failure(state, step, str(e))
            return []

        self._record(state, step, StepStatus.COMPLETED, started, outputs={"result": result})
        logger.debug("workflow.branch", step=step.id, result=result)
        return step.next_steps[:1] if result else step.next_steps[1:2]

    def _run_loop(self, state: _RunState, step: WorkflowStep) -> list[str]:
        deadline = Deadline(step.timeout_seconds)
        iteration = 0
        while True:
            if iteration >= step.max_iterations:
                logger.warning("workflow.loop.max_iterations", step=step.id, iterations=iteration)
                break
            if deadline.expired:
                logger.warning("workflow.loop.timeout", step=step.id, iterations=iteration)
                break
            if iteration > 0:
                self._checkpoint(state)
                self._count_visit(state, step.id)

            started = self._clock()
            try:
                keep_going = evaluate_condition(step.condition or "", state.namespace())
            except ExpressionError as e:
                self._record(state, step, StepStatus.FAILED, started, error=str(e), iteration=iteration)
                self._on_failure(state, step, str(e))
                break
            if not keep_going:
                break

            remaining = deadline.remaining
            budget = max(remaining, 0.001) if remaining is not None else None
            record = self._run_action(state, step, iteration=iteration, timeout=budget)
            if record.status == StepStatus.FAILED:
                self._on_failure(state, step, record.error or "Step failed")
                break
            iteration += 1

        return list(step.next_steps)

    def _run_branches(self, state: _RunState, branches: list[dict[str, Any]], stack: list[str]) -> None:
        """Walk each branch frame to the end; *stack* is what follows the join."""
        if not branches:
            return
        if len(branches) == 1:
            try:
                self._walk(state, branches[0]["stack"], branches[0]["branches"])
                errors: list[BaseException] = []
            except Exception as e:
                errors = [e]
        else:
            workers = min(len(branches), self._max_parallel_branches)
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="jobspine-branch") as pool:
                # One context copy per branch so each thread carries the log context.
                futures = [
                    pool.submit(contextvars.copy_context().run, self._walk, state, b["stack"], b["branches"])
                    for b in branches
                ]
                wait(futures)
            errors = [f.exception() for f in futures if f.exception() is not None]

        for exc in errors:
            if isinstance(exc, _Abort):
                raise exc
        for exc in errors:
            if isinstance(exc, _Cancelled):
                raise exc
        for exc in errors:
            if not isinstance(exc, _Paused):
                raise exc
        # Branches that already finished are not walked again.
        parked = [exc.frame for exc in errors if isinstance(exc, _Paused)]
        if parked:
            raise _Paused(_frame(stack, parked))

    # ------------------------------------------------------------------ #
    # Actions
    # ------------------------------------------------------------------ #

    def _resolve(self, name: str) -> StepAction | None:
        action = self._actions.get(name)
        if action is not None:
            return action
        if self._handlers is None:
            return None
        handler = self._handlers.get(name)
        if handler is None:
            return None

        def _as_action(params: dict[str, Any], ctx: StepContext) -> Any:
            job_context = JobContext(
                job_id=f"{ctx.execution_id}:{ctx.step_id}",
                job_type=name,
                attempt=ctx.iteration,
                timeout_seconds=ctx.timeout_seconds,
                cancel_event=ctx.cancel_event,
            )
            return handler(params, job_context)

        return _as_action

    def _run_action(
        self,
        state: _RunState,
        step: WorkflowStep,
        iteration: int = 0,
        timeout: float | None = None,
    ) -> StepExecution:
        started = self._clock()
        params = resolve_placeholders(step.parameters, state.namespace())
        if not step.action:
            return self._record(state, step, StepStatus.COMPLETED, started, inputs=params, iteration=iteration)

        action = self._resolve(step.action)
        if action is None:
            return self._record(
                state, step, StepStatus.FAILED, started,
                inputs=params, error=f"Unknown action: {step.action}", iteration=iteration,
            )

        limit = step.timeout_seconds
        if timeout is not None:
            limit = min(limit, timeout) if limit else timeout
        context = StepContext(
            execution_id=state.execution_id,
            workflow_id=state.workflow_id,
            step_id=step.id,
            variables=state.variables_snapshot(),
            inputs=state.inputs,
            iteration=iteration,
            timeout_seconds=limit,
        )

        try:
            raw = run_with_timeout(
                action,
                limit or None,
                operation=f"step:{step.id}",
                args=(dict(params), context),
                on_timeout=context.cancel_event.set,
            )
            result = HandlerResult.coerce(raw)
        except TimeoutExpired:
            error = f"Step {step.id!r} timed out after {limit:g}s"
            return self._record(state, step, StepStatus.FAILED, started, inputs=params, error=error, iteration=iteration)
        except Exception as e:
            logger.warning("workflow.step.exception", step=step.id, error=str(e), exc_info=True)
            return self._record(
                state, step, StepStatus.FAILED, started,
                inputs=params, error=str(e) or type(e).__name__, iteration=iteration,
            )

        if not result.success:
            return self._record(
                state, step, StepStatus.FAILED, started,
                inputs=params, outputs=result.data,
                error=result.error or "Step reported failure", iteration=iteration,
            )
        return self._record(
            state, step, StepStatus.COMPLETED, started,
            inputs=params, outputs=result.data, iteration=iteration, merge=True,
        )

    def _record(
        self,
        state: _RunState,
        step: WorkflowStep,
        status: StepStatus,
        started: Any,
        inputs: dict[str, Any] | None = None,
        outputs: dict[str, Any] | None = None,
        error: str | None = None,
        iteration: int = 0,
        merge: bool = False,
    ) -> StepExecution:
        record = StepExecution(
            step_id=step.id,
            step_name=step.name,
            id=new_id(),
            status=status,
            started_at=started,
            completed_at=self._clock(),
            inputs=dict(inputs or {}),
            outputs=dict(outputs or {}),
            retry_count=iteration,
            error=error,
        )
        merged = dict(outputs or {}) if merge else None
        with state.lock:
            if merged:
                state.variables.update(merged)
            self._executions.record_step(
                state.execution_id, record, variables=merged, outputs=merged
            )
        logger.debug("workflow.step", step=step.id, status=status.value, iteration=iteration, error=error)
        return record

    def _on_failure(self, state: _RunState, step: WorkflowStep, error: str) -> None:
        if step.required:
            state.abort(step.id, error)
        logger.warning("workflow.step.failed_optional", step=step.id, error=error)
