"""Tests for jobspine.workflows.store — copy isolation, CAS and parked walks."""

from __future__ import annotations

import pytest

from jobspine.jobs.models import InvalidTransitionError
from jobspine.workflows.models import (
    StepExecution,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStatus,
    WorkflowStep,
)
from jobspine.workflows.store import ExecutionStore, WorkflowStore


def _definition(workflow_id: str = "wf-1") -> WorkflowDefinition:
    return WorkflowDefinition(name="wf", id=workflow_id, steps=[WorkflowStep(id="a")])


@pytest.fixture
def executions() -> ExecutionStore:
    store = ExecutionStore()
    store.insert(WorkflowExecution(workflow_id="wf-1", id="ex-1", status=WorkflowStatus.RUNNING))
    return store


class TestWorkflowStore:
    def test_insert_rejects_duplicate_id(self):
        store = WorkflowStore()
        assert store.insert(_definition()) is True
        assert store.insert(_definition()) is False
        assert len(store) == 1

    def test_get_returns_copy(self):
        store = WorkflowStore()
        store.insert(_definition())
        fetched = store.get("wf-1")
        fetched.steps.append(WorkflowStep(id="b"))
        assert [s.id for s in store.get("wf-1").steps] == ["a"]

    def test_insert_copies_input(self):
        store = WorkflowStore()
        definition = _definition()
        store.insert(definition)
        definition.name = "changed"
        assert store.get("wf-1").name == "wf"

    def test_replace_and_delete(self):
        store = WorkflowStore()
        assert store.replace(_definition()) is False
        store.insert(_definition())
        updated = _definition()
        updated.version = "2"
        assert store.replace(updated) is True
        assert store.get("wf-1").version == "2"
        assert store.delete("wf-1") is True
        assert store.delete("wf-1") is False
        assert "wf-1" not in store


class TestExecutionStore:
    def test_transition_cas(self, executions):
        paused = executions.transition("ex-1", (WorkflowStatus.RUNNING,), WorkflowStatus.PAUSED)
        assert paused.status == WorkflowStatus.PAUSED
        assert executions.transition("ex-1", (WorkflowStatus.RUNNING,), WorkflowStatus.CANCELLED) is None
        assert executions.transition("missing", (WorkflowStatus.RUNNING,), WorkflowStatus.PAUSED) is None

    def test_transition_rejects_illegal_edge(self, executions):
        with pytest.raises(InvalidTransitionError):
            executions.transition("ex-1", (WorkflowStatus.RUNNING,), WorkflowStatus.PENDING)

    def test_update_cannot_change_status(self, executions):
        def _mutate(execution):
            execution.status = WorkflowStatus.COMPLETED
            execution.error = "x"

        updated = executions.update("ex-1", _mutate)
        assert updated.status == WorkflowStatus.RUNNING
        assert updated.error == "x"

    def test_record_step_merges(self, executions):
        executions.record_step(
            "ex-1", StepExecution(step_id="a"), variables={"x": 1}, outputs={"x": 1}
        )
        record = executions.get("ex-1")
        assert record.step_ids() == ["a"]
        assert record.variables == {"x": 1}
        assert record.outputs == {"x": 1}

    def test_find_filters(self, executions):
        executions.insert(WorkflowExecution(workflow_id="wf-2", id="ex-2"))
        assert [e.id for e in executions.find(lambda e: e.workflow_id == "wf-2")] == ["ex-2"]


class TestParkedWalks:
    FRAME = {"stack": ["b"], "branches": []}

    def test_park_only_while_paused(self, executions):
        assert executions.park("ex-1", self.FRAME, 3) == WorkflowStatus.RUNNING
        assert executions.get("ex-1").resume_point is None

        executions.transition("ex-1", (WorkflowStatus.RUNNING,), WorkflowStatus.PAUSED)
        assert executions.park("ex-1", self.FRAME, 3) == WorkflowStatus.PAUSED
        record = executions.get("ex-1")
        assert record.resume_point == self.FRAME
        assert record.step_visits == 3

    def test_park_missing(self, executions):
        assert executions.park("ghost", self.FRAME, 0) is None

    def test_unpark_needs_resume_and_claims_once(self, executions):
        executions.transition("ex-1", (WorkflowStatus.RUNNING,), WorkflowStatus.PAUSED)
        executions.park("ex-1", self.FRAME, 1)
        assert executions.unpark("ex-1") is None

        executions.transition("ex-1", (WorkflowStatus.PAUSED,), WorkflowStatus.RUNNING)
        claimed = executions.unpark("ex-1")
        assert claimed.resume_point == self.FRAME
        assert executions.get("ex-1").resume_point is None
        assert executions.unpark("ex-1") is None

    def test_resume_sees_park_atomically(self, executions):
        executions.transition("ex-1", (WorkflowStatus.RUNNING,), WorkflowStatus.PAUSED)
        resumed = executions.transition("ex-1", (WorkflowStatus.PAUSED,), WorkflowStatus.RUNNING)
        assert resumed.resume_point is None
        # The walker finds RUNNING and keeps going instead of parking.
        assert executions.park("ex-1", self.FRAME, 1) == WorkflowStatus.RUNNING
