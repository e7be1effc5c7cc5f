"""Tests for jobspine.workflows.runner — step semantics of a single run."""

from __future__ import annotations

import threading

import pytest

from jobspine.core.timestamps import new_id
from jobspine.jobs.registry import HandlerRegistry, HandlerResult, JobContext
from jobspine.workflows.actions import ActionRegistry, register_builtin_actions
from jobspine.workflows.models import (
    StepStatus,
    StepType,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStatus,
    WorkflowStep,
)
from jobspine.workflows.runner import WorkflowRunner
from jobspine.workflows.store import ExecutionStore


@pytest.fixture
def executions() -> ExecutionStore:
    return ExecutionStore()


@pytest.fixture
def handlers() -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register("ping", lambda params, ctx: {"pong": params.get("value"), "attempt": ctx.attempt})
    return registry


@pytest.fixture
def actions(handlers) -> ActionRegistry:
    registry = register_builtin_actions(ActionRegistry(), handlers)
    registry.register("fail", lambda params, ctx: HandlerResult.fail(params.get("reason", "nope")))

    def explode(params, ctx):
        raise RuntimeError("kaboom")

    registry.register("explode", explode)
    return registry


@pytest.fixture
def runner(executions, actions, handlers) -> WorkflowRunner:
    return WorkflowRunner(executions, actions, handlers)


@pytest.fixture
def run(executions, runner):
    """Insert a PENDING execution for the given steps and walk it."""

    def _run(*steps, inputs=None, variables=None, runner_override=None, job=None):
        definition = WorkflowDefinition(
            name="test", id="wf", steps=list(steps), variables=dict(variables or {})
        )
        execution = WorkflowExecution(
            workflow_id="wf",
            id=new_id(),
            inputs=dict(inputs or {}),
            variables=dict(variables or {}),
            definition=definition,
        )
        executions.insert(execution)
        return (runner_override or runner).run(execution.id, job=job)

    return _run


def _statuses(execution: WorkflowExecution) -> list[tuple[str, StepStatus]]:
    return [(s.step_id, s.status) for s in execution.step_executions]


class TestSequential:
    def test_runs_in_order_and_merges_outputs(self, run):
        result = run(
            WorkflowStep(id="a", action="set_variables", parameters={"x": 1}, next_steps=["b"]),
            WorkflowStep(id="b", action="set_variables", parameters={"y": "${x}"}),
        )
        assert result.status == WorkflowStatus.COMPLETED
        assert result.step_ids() == ["a", "b"]
        assert result.variables == {"x": 1, "y": 1}
        assert result.outputs == {"x": 1, "y": 1}
        assert result.started_at is not None and result.completed_at is not None

    def test_placeholders_from_inputs(self, run):
        result = run(
            WorkflowStep(id="a", action="set_variables", parameters={"target": "backup-${db}"}),
            inputs={"db": "orders"},
        )
        assert result.variables["target"] == "backup-orders"
        assert result.step_executions[0].inputs == {"target": "backup-orders"}

    def test_step_without_action_completes(self, run):
        result = run(WorkflowStep(id="noop"))
        assert _statuses(result) == [("noop", StepStatus.COMPLETED)]

    def test_job_handler_used_as_action(self, run):
        result = run(WorkflowStep(id="a", action="ping", parameters={"value": 7}))
        assert result.status == WorkflowStatus.COMPLETED
        assert result.variables["pong"] == 7

    def test_only_pending_runs(self, run, runner):
        result = run(WorkflowStep(id="a"))
        again = runner.run(result.id)
        assert again.status == WorkflowStatus.COMPLETED
        assert again.step_ids() == ["a"]

    def test_missing_execution(self, runner):
        assert runner.run("nope") is None


class TestGuardsAndBranches:
    def test_false_guard_skips_and_continues(self, run):
        result = run(
            WorkflowStep(id="a", action="fail", condition="enabled", next_steps=["b"]),
            WorkflowStep(id="b"),
            inputs={"enabled": False},
        )
        assert result.status == WorkflowStatus.COMPLETED
        assert _statuses(result) == [("a", StepStatus.SKIPPED), ("b", StepStatus.COMPLETED)]

    @pytest.mark.parametrize(("flag", "taken"), [(True, "yes"), (False, "no")])
    def test_condition_branches(self, run, flag, taken):
        result = run(
            WorkflowStep(id="check", step_type=StepType.CONDITION, condition="flag",
                         next_steps=["yes", "no"]),
            WorkflowStep(id="yes"),
            WorkflowStep(id="no"),
            inputs={"flag": flag},
        )
        assert result.step_ids() == ["check", taken]
        assert result.step_executions[0].outputs == {"result": flag}

    def test_false_without_else_ends_path(self, run):
        result = run(
            WorkflowStep(id="check", step_type="condition", condition="count > 10", next_steps=["big"]),
            WorkflowStep(id="big"),
            variables={"count": 3},
        )
        assert result.status == WorkflowStatus.COMPLETED
        assert result.step_ids() == ["check"]

    def test_bad_condition_fails_required_step(self, run):
        result = run(
            WorkflowStep(id="check", step_type="condition", condition="undefined_name", next_steps=["x"]),
            WorkflowStep(id="x"),
        )
        assert result.status == WorkflowStatus.FAILED
        assert "unknown name" in result.error


class TestLoops:
    def test_loop_until_condition_false(self, run):
        result = run(
            WorkflowStep(id="count", step_type=StepType.LOOP, action="increment",
                         parameters={"name": "n"}, condition="n < 3", next_steps=["done"]),
            WorkflowStep(id="done"),
            variables={"n": 0},
        )
        assert result.status == WorkflowStatus.COMPLETED
        assert result.variables["n"] == 3
        loop_records = [s for s in result.step_executions if s.step_id == "count"]
        assert [s.retry_count for s in loop_records] == [0, 1, 2]
        assert result.step_ids()[-1] == "done"

    def test_max_iterations_ends_loop(self, run):
        result = run(
            WorkflowStep(id="spin", step_type=StepType.LOOP, action="increment",
                         parameters={"name": "n"}, condition="true", max_iterations=4),
        )
        assert result.status == WorkflowStatus.COMPLETED
        assert result.variables["n"] == 4
        assert len(result.step_executions) == 4

    def test_failing_body_stops_loop(self, run):
        result = run(
            WorkflowStep(id="spin", step_type=StepType.LOOP, action="fail",
                         condition="true", required=False, next_steps=["after"]),
            WorkflowStep(id="after"),
        )
        assert result.status == WorkflowStatus.COMPLETED
        assert _statuses(result) == [("spin", StepStatus.FAILED), ("after", StepStatus.COMPLETED)]


class TestParallel:
    def test_branches_all_run(self, run):
        result = run(
            WorkflowStep(id="fan", step_type=StepType.PARALLEL, next_steps=["left", "right"]),
            WorkflowStep(id="left", action="set_variables", parameters={"left": True}),
            WorkflowStep(id="right", action="set_variables", parameters={"right": True}),
        )
        assert result.status == WorkflowStatus.COMPLETED
        assert result.step_ids()[0] == "fan"
        assert sorted(result.step_ids()[1:]) == ["left", "right"]
        assert result.variables == {"left": True, "right": True}

    def test_join_step_runs_per_branch(self, run):
        result = run(
            WorkflowStep(id="fan", step_type=StepType.PARALLEL, next_steps=["left", "right"]),
            WorkflowStep(id="left", next_steps=["join"]),
            WorkflowStep(id="right", next_steps=["join"]),
            WorkflowStep(id="join"),
        )
        assert result.step_ids().count("join") == 2

    def test_required_branch_failure_fails_run(self, run):
        result = run(
            WorkflowStep(id="fan", step_type=StepType.PARALLEL, next_steps=["ok", "bad"]),
            WorkflowStep(id="ok"),
            WorkflowStep(id="bad", action="fail", parameters={"reason": "branch broke"}),
        )
        assert result.status == WorkflowStatus.FAILED
        assert result.error == "branch broke"


class TestFailures:
    def test_required_failure_aborts(self, run):
        result = run(
            WorkflowStep(id="a", action="fail", parameters={"reason": "disk full"}, next_steps=["b"]),
            WorkflowStep(id="b"),
        )
        assert result.status == WorkflowStatus.FAILED
        assert result.error == "disk full"
        assert result.step_ids() == ["a"]

    def test_optional_failure_continues(self, run):
        result = run(
            WorkflowStep(id="a", action="fail", required=False, next_steps=["b"]),
            WorkflowStep(id="b"),
        )
        assert result.status == WorkflowStatus.COMPLETED
        assert _statuses(result) == [("a", StepStatus.FAILED), ("b", StepStatus.COMPLETED)]

    def test_unknown_action(self, run):
        result = run(WorkflowStep(id="a", action="nothing"))
        assert result.status == WorkflowStatus.FAILED
        assert result.error == "Unknown action: nothing"

    def test_action_exception(self, run):
        result = run(WorkflowStep(id="a", action="explode"))
        assert result.status == WorkflowStatus.FAILED
        assert result.error == "kaboom"

    def test_step_timeout(self, run):
        result = run(
            WorkflowStep(id="slow", action="wait", parameters={"seconds": 5}, timeout_seconds=0.05)
        )
        assert result.status == WorkflowStatus.FAILED
        assert result.error == "Step 'slow' timed out after 0.05s"

    def test_visit_budget(self, run, executions, actions, handlers):
        limited = WorkflowRunner(executions, actions, handlers, max_step_visits=20)
        result = run(
            WorkflowStep(id="a", next_steps=["b"]),
            WorkflowStep(id="b", next_steps=["a"]),
            runner_override=limited,
        )
        assert result.status == WorkflowStatus.FAILED
        assert "visit limit" in result.error
        assert len(result.step_executions) == 20


class TestPauseAndCancel:
    def test_cancel_stops_walk(self, run, executions, actions):
        def cancel_self(params, ctx):
            executions.transition(ctx.execution_id, (WorkflowStatus.RUNNING,), WorkflowStatus.CANCELLED)
            return {}

        actions.register("cancel_self", cancel_self)
        result = run(
            WorkflowStep(id="a", action="cancel_self", next_steps=["b"]),
            WorkflowStep(id="b"),
        )
        assert result.status == WorkflowStatus.CANCELLED
        assert result.step_ids() == ["a"]

    def test_pause_parks_the_walk(self, run, runner, executions, actions):
        def pause_self(params, ctx):
            executions.transition(ctx.execution_id, (WorkflowStatus.RUNNING,), WorkflowStatus.PAUSED)
            return {}

        actions.register("pause_self", pause_self)
        paused = run(
            WorkflowStep(id="a", action="pause_self", next_steps=["b"]),
            WorkflowStep(id="b"),
        )
        assert paused.status == WorkflowStatus.PAUSED
        assert paused.step_ids() == ["a"]
        assert paused.resume_point == {"stack": ["b"], "branches": []}
        assert paused.step_visits == 1

        # Still paused: nothing to continue.
        assert runner.run(paused.id).status == WorkflowStatus.PAUSED

        executions.transition(paused.id, (WorkflowStatus.PAUSED,), WorkflowStatus.RUNNING)
        result = runner.run(paused.id)
        assert result.status == WorkflowStatus.COMPLETED
        assert result.step_ids() == ["a", "b"]
        assert result.resume_point is None
        # The saved walk is claimed once.
        assert runner.run(paused.id).status == WorkflowStatus.COMPLETED
        assert executions.get(paused.id).step_ids() == ["a", "b"]

    def test_pause_after_last_step(self, run, runner, executions, actions):
        def pause_self(params, ctx):
            executions.transition(ctx.execution_id, (WorkflowStatus.RUNNING,), WorkflowStatus.PAUSED)
            return {}

        actions.register("pause_self", pause_self)
        paused = run(WorkflowStep(id="a", action="pause_self"))
        assert paused.status == WorkflowStatus.PAUSED
        assert paused.resume_point == {"stack": [], "branches": []}

        executions.transition(paused.id, (WorkflowStatus.PAUSED,), WorkflowStatus.RUNNING)
        assert runner.run(paused.id).status == WorkflowStatus.COMPLETED

    def test_pause_inside_parallel_branch(self, run, runner, executions, actions):
        y_started = threading.Event()
        paused_event = threading.Event()

        def pause_self(params, ctx):
            assert y_started.wait(5)
            executions.transition(ctx.execution_id, (WorkflowStatus.RUNNING,), WorkflowStatus.PAUSED)
            paused_event.set()
            return {}

        def after_pause(params, ctx):
            y_started.set()
            assert paused_event.wait(5)
            return {}

        actions.register("pause_self", pause_self)
        actions.register("after_pause", after_pause)
        paused = run(
            WorkflowStep(id="fan", step_type=StepType.PARALLEL, next_steps=["x", "y"]),
            WorkflowStep(id="x", action="pause_self", next_steps=["x2"]),
            WorkflowStep(id="x2"),
            WorkflowStep(id="y", action="after_pause"),
        )
        assert paused.status == WorkflowStatus.PAUSED
        assert sorted(paused.step_ids()) == ["fan", "x", "y"]
        assert paused.resume_point == {
            "stack": [],
            "branches": [{"stack": ["x2"], "branches": []}],
        }

        executions.transition(paused.id, (WorkflowStatus.PAUSED,), WorkflowStatus.RUNNING)
        result = runner.run(paused.id)
        assert result.status == WorkflowStatus.COMPLETED
        assert sorted(result.step_ids()) == ["fan", "x", "x2", "y"]

    def test_cancel_while_parked(self, run, runner, executions, actions):
        def pause_self(params, ctx):
            executions.transition(ctx.execution_id, (WorkflowStatus.RUNNING,), WorkflowStatus.PAUSED)
            return {}

        actions.register("pause_self", pause_self)
        paused = run(
            WorkflowStep(id="a", action="pause_self", next_steps=["b"]),
            WorkflowStep(id="b"),
        )
        executions.transition(paused.id, (WorkflowStatus.PAUSED,), WorkflowStatus.CANCELLED)
        result = runner.run(paused.id)
        assert result.status == WorkflowStatus.CANCELLED
        assert result.step_ids() == ["a"]


class TestJobInterruption:
    def test_job_timeout_fails_execution_between_steps(self, run, actions):
        job = JobContext(job_id="job-1", job_type="workflow_execution", timeout_seconds=0.3)

        def outlive_job(params, ctx):
            job.cancel_event.set()
            return {}

        actions.register("outlive_job", outlive_job)
        result = run(
            WorkflowStep(id="a", action="outlive_job", next_steps=["b"]),
            WorkflowStep(id="b"),
            job=job,
        )
        assert result.status == WorkflowStatus.FAILED
        assert result.error == "Job timed out after 0.3s"
        assert result.step_ids() == ["a"]

    def test_unset_cancel_event_is_ignored(self, run):
        job = JobContext(job_id="job-1", job_type="workflow_execution", timeout_seconds=0.3)
        result = run(WorkflowStep(id="a", next_steps=["b"]), WorkflowStep(id="b"), job=job)
        assert result.status == WorkflowStatus.COMPLETED
