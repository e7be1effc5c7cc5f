"""Tests for jobspine.workflows.models — definitions, validation, status machine."""

from __future__ import annotations

import pytest

from jobspine.core.errors import WorkflowDefinitionError
from jobspine.jobs.models import InvalidTransitionError
from jobspine.workflows.models import (
    StepType,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStatus,
    WorkflowStep,
    validate_definition,
    validate_workflow_transition,
)


def _definition(*steps: WorkflowStep, **kwargs) -> WorkflowDefinition:
    return WorkflowDefinition(name=kwargs.pop("name", "wf"), steps=list(steps), **kwargs)


class TestWorkflowStep:
    def test_step_type_case_insensitive(self):
        assert WorkflowStep(id="a", step_type="Condition").step_type == StepType.CONDITION
        assert StepType("PARALLEL") == StepType.PARALLEL

    def test_unknown_step_type(self):
        with pytest.raises(ValueError):
            WorkflowStep(id="a", step_type="teleport")

    def test_defaults(self):
        step = WorkflowStep(id="a")
        assert step.name == "a"
        assert step.timeout_seconds == 300.0
        assert step.required is True
        assert step.max_iterations == 1000


class TestValidateDefinition:
    def test_valid(self):
        validate_definition(
            _definition(
                WorkflowStep(id="a", next_steps=["b"]),
                WorkflowStep(id="b", step_type=StepType.CONDITION, condition="x > 1", next_steps=["c"]),
                WorkflowStep(id="c"),
                entry_step_id="a",
            )
        )

    @pytest.mark.parametrize(
        ("definition", "message"),
        [
            (_definition(), "at least one step"),
            (_definition(WorkflowStep(id="a"), name=""), "name is required"),
            (_definition(WorkflowStep(id="a"), WorkflowStep(id="a")), "Duplicate step id"),
            (_definition(WorkflowStep(id="a", next_steps=["zzz"])), "unknown steps"),
            (_definition(WorkflowStep(id="a"), entry_step_id="zzz"), "Entry step"),
            (_definition(WorkflowStep(id="a", step_type=StepType.LOOP)), "requires a condition"),
            (_definition(WorkflowStep(id="a", condition="x ==")), "invalid condition"),
            (_definition(WorkflowStep(id="a", timeout_seconds=0)), "timeout must be positive"),
            (
                _definition(
                    WorkflowStep(id="a", step_type="condition", condition="x", next_steps=["b", "c", "d"]),
                    WorkflowStep(id="b"),
                    WorkflowStep(id="c"),
                    WorkflowStep(id="d"),
                ),
                "at most two",
            ),
        ],
    )
    def test_rejects(self, definition, message):
        with pytest.raises(WorkflowDefinitionError) as exc_info:
            validate_definition(definition)
        assert message in str(exc_info.value)


class TestEntryStep:
    def test_defaults_to_first(self):
        assert _definition(WorkflowStep(id="a"), WorkflowStep(id="b")).entry_step.id == "a"

    def test_explicit(self):
        definition = _definition(WorkflowStep(id="a"), WorkflowStep(id="b"), entry_step_id="b")
        assert definition.entry_step.id == "b"


class TestWorkflowStatus:
    def test_transitions(self):
        validate_workflow_transition(WorkflowStatus.RUNNING, WorkflowStatus.PAUSED)
        validate_workflow_transition(WorkflowStatus.PAUSED, WorkflowStatus.CANCELLED)
        validate_workflow_transition(WorkflowStatus.PAUSED, WorkflowStatus.FAILED)
        with pytest.raises(InvalidTransitionError):
            validate_workflow_transition(WorkflowStatus.COMPLETED, WorkflowStatus.RUNNING)
        with pytest.raises(InvalidTransitionError):
            validate_workflow_transition(WorkflowStatus.PAUSED, WorkflowStatus.COMPLETED)

    def test_terminal(self):
        assert {s for s in WorkflowStatus if s.is_terminal} == {
            WorkflowStatus.COMPLETED,
            WorkflowStatus.FAILED,
            WorkflowStatus.CANCELLED,
        }


class TestExecutionRecord:
    def test_to_dict_excludes_definition(self):
        execution = WorkflowExecution(
            workflow_id="wf", id="ex", definition=_definition(WorkflowStep(id="a"))
        )
        data = execution.to_dict()
        assert "definition" not in data
        assert data["status"] == "pending"
        assert data["step_executions"] == []
