"""Tests for jobspine.core.errors — typed exception hierarchy."""

from __future__ import annotations

from jobspine.core.errors import (
    ErrorCategory,
    ExpressionError,
    JobSpineError,
    ScheduleEvaluationError,
    StepError,
    ValidationError,
    WorkflowDefinitionError,
    WorkflowError,
)


class TestHierarchy:
    def test_subclasses(self):
        assert issubclass(WorkflowDefinitionError, ValidationError)
        assert issubclass(ExpressionError, WorkflowError)
        assert issubclass(ScheduleEvaluationError, JobSpineError)

    def test_categories(self):
        assert WorkflowDefinitionError("x").category == ErrorCategory.VALIDATION
        assert ScheduleEvaluationError("d", "r").category == ErrorCategory.SCHEDULING
        assert StepError("s", "m").category == ErrorCategory.WORKFLOW


class TestPayload:
    def test_schedule_error_message_and_context(self):
        err = ScheduleEvaluationError("whenever", "not a valid cron expression")
        assert str(err) == "Invalid schedule 'whenever': not a valid cron expression"
        assert err.reason == "not a valid cron expression"
        assert err.context == {"descriptor": "whenever"}

    def test_definition_error_records_workflow(self):
        err = WorkflowDefinitionError("Duplicate step id: 'a'", workflow="nightly")
        assert err.context["workflow"] == "nightly"

    def test_to_dict_includes_cause(self):
        cause = KeyError("k")
        err = JobSpineError("wrapped", cause=cause, context={"job_id": "j1"})
        data = err.to_dict()
        assert data["error_type"] == "JobSpineError"
        assert data["context"] == {"job_id": "j1"}
        assert data["cause"].startswith("KeyError")
        assert err.__cause__ is cause

    def test_with_context_chains(self):
        err = StepError("fetch", "failed").with_context(attempt=2)
        assert err.context == {"step_id": "fetch", "attempt": 2}
