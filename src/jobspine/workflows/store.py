"""In-memory workflow and execution stores.

Same concurrency model as :mod:`jobspine.jobs.store`: one lock per store,
deep copies in and out, whole-record replacement, compare-and-set status
changes. A paused execution keeps where its walk stopped in
``resume_point``; :meth:`ExecutionStore.park` and :meth:`ExecutionStore.unpark`
hand that over atomically with the status so a resume is never lost.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Iterable
from typing import Any

from jobspine.workflows.models import (
    StepExecution,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStatus,
    validate_workflow_transition,
)


class WorkflowStore:
    """Thread-safe map of workflow id → :class:`WorkflowDefinition`."""

    def __init__(self) -> None:
        self._items: dict[str, WorkflowDefinition] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, workflow_id: str) -> bool:
        with self._lock:
            return workflow_id in self._items

    def insert(self, definition: WorkflowDefinition) -> bool:
        with self._lock:
            if definition.id in self._items:
                return False
            self._items[definition.id] = definition.copy()
            return True

    def replace(self, definition: WorkflowDefinition) -> bool:
        """Replace an existing definition. Returns False if it does not exist."""
        with self._lock:
            if definition.id not in self._items:
                return False
            self._items[definition.id] = definition.copy()
            return True

    def get(self, workflow_id: str) -> WorkflowDefinition | None:
        with self._lock:
            item = self._items.get(workflow_id)
            return item.copy() if item else None

    def delete(self, workflow_id: str) -> bool:
        with self._lock:
            return self._items.pop(workflow_id, None) is not None

    def all(self) -> list[WorkflowDefinition]:
        """Every definition, newest first."""
        with self._lock:
            items = [item.copy() for item in self._items.values()]
        items.sort(key=lambda w: w.created_at, reverse=True)
        return items


class ExecutionStore:
    """Thread-safe map of execution id → :class:`WorkflowExecution`."""

    def __init__(self) -> None:
        self._items: dict[str, WorkflowExecution] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def insert(self, execution: WorkflowExecution) -> bool:
        with self._lock:
            if execution.id in self._items:
                return False
            self._items[execution.id] = execution.copy()
            return True

    def get(self, execution_id: str) -> WorkflowExecution | None:
        with self._lock:
            item = self._items.get(execution_id)
            return item.copy() if item else None

    def status(self, execution_id: str) -> WorkflowStatus | None:
        with self._lock:
            item = self._items.get(execution_id)
            return item.status if item else None

    def delete(self, execution_id: str) -> bool:
        with self._lock:
            removed = self._items.pop(execution_id, None) is not None
            return removed

    def all(self) -> list[WorkflowExecution]:
        with self._lock:
            return [item.copy() for item in self._items.values()]

    def find(self, predicate: Callable[[WorkflowExecution], bool]) -> list[WorkflowExecution]:
        """Executions matching *predicate*, newest first."""
        with self._lock:
            matched = [item.copy() for item in self._items.values() if predicate(item)]
        matched.sort(key=lambda e: e.created_at, reverse=True)
        return matched

    def transition(
        self,
        execution_id: str,
        expected: Iterable[WorkflowStatus],
        target: WorkflowStatus,
        **changes: Any,
    ) -> WorkflowExecution | None:
        """Atomically move an execution from one of *expected* to *target*.

        Returns:
            The updated record, or None if it is missing or not in *expected*.
        """
        expected = frozenset(expected)
        with self._lock:
            current = self._items.get(execution_id)
            if current is None or current.status not in expected:
                return None
            validate_workflow_transition(current.status, target)
            updated = copy.deepcopy(current)
            for key, value in changes.items():
                setattr(updated, key, copy.deepcopy(value))
            updated.status = target
            self._items[execution_id] = updated
            return updated.copy()

    def update(
        self, execution_id: str, mutate: Callable[[WorkflowExecution], None]
    ) -> WorkflowExecution | None:
        """Apply *mutate* to a copy and store it whole. Status must not change."""
        with self._lock:
            current = self._items.get(execution_id)
            if current is None:
                return None
            updated = copy.deepcopy(current)
            mutate(updated)
            updated.status = current.status
            self._items[execution_id] = updated
            return updated.copy()

    def record_step(
        self,
        execution_id: str,
        step: StepExecution,
        variables: dict[str, Any] | None = None,
        outputs: dict[str, Any] | None = None,
    ) -> bool:
        """Append a step record and merge variables/outputs in one update."""

        def _apply(execution: WorkflowExecution) -> None:
            execution.step_executions.append(copy.deepcopy(step))
            if variables:
                execution.variables.update(copy.deepcopy(variables))
            if outputs:
                execution.outputs.update(copy.deepcopy(outputs))

        return self.update(execution_id, _apply) is not None

    def park(
        self, execution_id: str, resume_point: dict[str, Any], step_visits: int
    ) -> WorkflowStatus | None:
        """Save where a walk stopped if the execution is still PAUSED.

        Returns the status found. ``PAUSED`` means the walk is parked and
        the caller can let go; ``RUNNING`` means it was resumed meanwhile
        and the caller should keep walking. None if the execution is gone.
        """
        with self._lock:
            current = self._items.get(execution_id)
            if current is None:
                return None
            if current.status == WorkflowStatus.PAUSED:
                updated = copy.deepcopy(current)
                updated.resume_point = copy.deepcopy(resume_point)
                updated.step_visits = step_visits
                self._items[execution_id] = updated
            return current.status

    def unpark(self, execution_id: str) -> WorkflowExecution | None:
        """Claim a parked walk that has been resumed.

        Succeeds once per park: the execution must be RUNNING with a saved
        ``resume_point``, which is cleared. Returns the record as it was
        before clearing.
        """
        with self._lock:
            current = self._items.get(execution_id)
            if current is None or current.status != WorkflowStatus.RUNNING or current.resume_point is None:
                return None
            claimed = current.copy()
            updated = copy.deepcopy(current)
            updated.resume_point = None
            self._items[execution_id] = updated
            return claimed
