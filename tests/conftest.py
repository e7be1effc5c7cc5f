"""
Shared pytest fixtures and configuration for jobspine tests.

This module provides:
- A controllable clock for schedule and retry tests
- Schedulers wired to an in-memory audit sink
- A WorkflowService bound to a started scheduler
- Small helpers for driving ticks deterministically

Usage:
    Fixtures are auto-discovered by pytest. Tests that need real
    execution use ``started_scheduler`` and drive it with ``run_tick``;
    the backend interval is an hour, so only explicit ticks happen.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from jobspine.audit import AuditTrail, InMemoryAuditSink
from jobspine.core.settings import SchedulerSettings
from jobspine.scheduling.service import JobScheduler, TickResult
from jobspine.workflows.service import WorkflowService

# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark every test without an explicit marker as a unit test."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 5, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds, **kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Scheduler Fixtures
# =============================================================================


@pytest.fixture
def settings() -> SchedulerSettings:
    """Settings with a tick interval long enough that only manual ticks run."""
    return SchedulerSettings(
        tick_interval_seconds=3600,
        max_workers=2,
        queue_size=50,
        retry_delay_seconds=60,
    )


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def scheduler(settings: SchedulerSettings, audit_sink: InMemoryAuditSink) -> Generator[JobScheduler, None, None]:
    """A scheduler that has NOT been started (pool idle, no ticker)."""
    sched = JobScheduler(settings, audit=AuditTrail(audit_sink))
    yield sched
    sched.stop(timeout=5)


@pytest.fixture
def started_scheduler(scheduler: JobScheduler) -> JobScheduler:
    scheduler.start()
    return scheduler


@pytest.fixture
def workflow_service(started_scheduler: JobScheduler) -> WorkflowService:
    return WorkflowService(started_scheduler)


def run_tick(scheduler: JobScheduler, timeout: float = 10.0) -> TickResult:
    """Tick once and wait for every dispatched job to finish."""
    result = scheduler.tick()
    assert scheduler.wait_idle(timeout=timeout), "jobs did not finish in time"
    return result


@pytest.fixture
def tick() -> Callable[..., TickResult]:
    """The ``run_tick`` helper as a fixture."""
    return run_tick


# =============================================================================
# Filesystem Fixtures
# =============================================================================


@pytest.fixture
def log_dir(tmp_path: Path) -> Path:
    """A directory with two stale and one fresh ``.log`` file."""
    root = tmp_path / "logs"
    root.mkdir()
    old = time.time() - 40 * 86400
    for name in ("old-1.log", "old-2.log"):
        path = root / name
        path.write_text("stale\n")
        os.utime(path, (old, old))
    (root / "fresh.log").write_text("fresh\n")
    (root / "notes.txt").write_text("not a log\n")
    return root
