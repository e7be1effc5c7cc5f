"""In-memory job stores.

┌──────────────────────────────────────────────────────────────────────────────┐
│  STORE CONCURRENCY MODEL                                                      │
│                                                                               │
│   ticker thread ──┐                                                           │
│   worker threads ─┼──►  JobStore._lock  ──►  dict[id, Job]                   │
│   API callers ────┘                                                           │
│                                                                               │
│   - Records are deep-copied on the way in and on the way out.                │
│   - Every mutation builds a new record and replaces the old one whole,       │
│     so no reader ever observes a half-applied update.                        │
│   - Status changes are compare-and-set: the caller names the states it       │
│     expects to find. A late or duplicate attempt sees the post-transition    │
│     state and gets ``None`` back instead of an exception.                    │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from jobspine.jobs.models import (
    Job,
    JobStatus,
    RecurringJob,
    validate_job_transition,
)


class JobStore:
    """Thread-safe map of job id → :class:`Job`."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def insert(self, job: Job) -> bool:
        """Insert *job*. Returns False if the id is already taken."""
        with self._lock:
            if job.id in self._jobs:
                return False
            self._jobs[job.id] = job.copy()
            return True

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.copy() if job else None

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def all(self) -> list[Job]:
        """Snapshot of every job."""
        with self._lock:
            return [job.copy() for job in self._jobs.values()]

    def find(self, predicate: Callable[[Job], bool]) -> list[Job]:
        """Jobs matching *predicate*, newest first."""
        with self._lock:
            matched = [job.copy() for job in self._jobs.values() if predicate(job)]
        matched.sort(key=lambda j: j.created_at, reverse=True)
        return matched

    def due(self, now: datetime) -> list[Job]:
        """PENDING jobs whose ``scheduled_at`` has passed, in dispatch order.

        Highest priority first, then earliest ``scheduled_at``, then
        creation time as a stable tie-breaker.
        """
        with self._lock:
            due = [
                job.copy()
                for job in self._jobs.values()
                if job.status == JobStatus.PENDING
                and job.scheduled_at is not None
                and job.scheduled_at <= now
            ]
        due.sort(key=lambda j: (-int(j.priority), j.scheduled_at, j.created_at))
        return due

    def transition(
        self,
        job_id: str,
        expected: Iterable[JobStatus],
        target: JobStatus,
        guard: Callable[[Job], bool] | None = None,
        **changes: Any,
    ) -> Job | None:
        """Atomically move a job from one of *expected* to *target*.

        Extra keyword arguments are applied to the new record in the same
        step (timestamps, error, results, ...). *guard* is checked against
        the current record under the lock; False aborts the transition.

        Returns:
            The updated record, or None if the job is missing or its
            current status is not in *expected*.
        """
        expected = frozenset(expected)
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None or current.status not in expected:
                return None
            if guard is not None and not guard(current):
                return None
            validate_job_transition(current.status, target)
            updated = copy.deepcopy(current)
            for key, value in changes.items():
                setattr(updated, key, copy.deepcopy(value))
            updated.status = target
            self._jobs[job_id] = updated
            return updated.copy()

    def update(self, job_id: str, mutate: Callable[[Job], None]) -> Job | None:
        """Apply *mutate* to a copy of the job and store it whole.

        *mutate* must not change ``status``; use :meth:`transition`.
        """
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                return None
            updated = copy.deepcopy(current)
            mutate(updated)
            if updated.status != current.status:
                validate_job_transition(current.status, updated.status)
            self._jobs[job_id] = updated
            return updated.copy()

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()


class RecurringJobStore:
    """Thread-safe map of recurring job id → :class:`RecurringJob`."""

    def __init__(self) -> None:
        self._items: dict[str, RecurringJob] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def insert(self, recurring: RecurringJob) -> bool:
        with self._lock:
            if recurring.id in self._items:
                return False
            self._items[recurring.id] = recurring.copy()
            return True

    def get(self, recurring_id: str) -> RecurringJob | None:
        with self._lock:
            item = self._items.get(recurring_id)
            return item.copy() if item else None

    def delete(self, recurring_id: str) -> bool:
        with self._lock:
            return self._items.pop(recurring_id, None) is not None

    def all(self) -> list[RecurringJob]:
        """Snapshot of every recurring job, newest first."""
        with self._lock:
            items = [item.copy() for item in self._items.values()]
        items.sort(key=lambda r: r.created_at, reverse=True)
        return items

    def due(self, now: datetime) -> list[RecurringJob]:
        """Enabled recurring jobs whose ``next_run_at`` has passed."""
        with self._lock:
            due = [
                item.copy()
                for item in self._items.values()
                if item.enabled and item.next_run_at is not None and item.next_run_at <= now
            ]
        due.sort(key=lambda r: r.next_run_at)
        return due

    def update(
        self,
        recurring_id: str,
        mutate: Callable[[RecurringJob], None],
        *,
        expected_next_run: datetime | None = None,
        check_next_run: bool = False,
    ) -> RecurringJob | None:
        """Apply *mutate* to a copy and store it whole.

        With ``check_next_run=True`` the update only happens if the stored
        ``next_run_at`` still equals *expected_next_run* and the record is
        still enabled; this is how a firing claims its slot so the same
        occurrence never fires twice and a cancelled job never fires.
        """
        with self._lock:
            current = self._items.get(recurring_id)
            if current is None:
                return None
            if check_next_run and (not current.enabled or current.next_run_at != expected_next_run):
                return None
            updated = copy.deepcopy(current)
            mutate(updated)
            self._items[recurring_id] = updated
            return updated.copy()
