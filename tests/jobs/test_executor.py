"""Tests for jobspine.jobs.executor — running one claimed job to a terminal state."""

from __future__ import annotations

import threading

import pytest

from jobspine.audit import AuditTrail, InMemoryAuditSink
from jobspine.core.settings import SchedulerSettings
from jobspine.jobs.executor import UNKNOWN_JOB_TYPE, JobExecutor
from jobspine.jobs.models import Job, JobStatus
from jobspine.jobs.registry import HandlerRegistry, HandlerResult
from jobspine.jobs.store import JobStore


@pytest.fixture
def store() -> JobStore:
    return JobStore()


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def executor(store, registry, sink) -> JobExecutor:
    return JobExecutor(store, registry, AuditTrail(sink), settings=SchedulerSettings())


def _insert(store: JobStore, job_type: str, **kwargs) -> str:
    kwargs.setdefault("max_retries", 3)
    store.insert(Job(job_type=job_type, id=f"job-{job_type}", **kwargs))
    return f"job-{job_type}"


class TestExecutorOutcomes:
    def test_success_records_results(self, executor, store, registry, sink):
        registry.register("echo", lambda params, ctx: {"echo": params["text"]})
        job_id = _insert(store, "echo", parameters={"text": "hi"})

        job = executor.execute(job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.results == {"echo": "hi"}
        assert job.started_at is not None
        assert job.completed_at >= job.started_at
        assert sink.actions(job_id) == ["JOB_STARTED", "JOB_COMPLETED"]

    def test_unknown_job_type(self, executor, store, sink):
        job_id = _insert(store, "no_such_type")
        job = executor.execute(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error == UNKNOWN_JOB_TYPE == "Unknown job type"
        assert sink.events[-1].outcome == "failure"

    def test_handler_exception(self, executor, store, registry):
        def boom(params, ctx):
            raise RuntimeError("disk on fire")

        registry.register("boom", boom)
        job = executor.execute(_insert(store, "boom"))
        assert job.status == JobStatus.FAILED
        assert job.error == "disk on fire"

    def test_exception_without_message_uses_type_name(self, executor, store, registry):
        def boom(params, ctx):
            raise KeyError

        registry.register("boom", boom)
        assert executor.execute(_insert(store, "boom")).error == "KeyError"

    def test_handler_reported_failure(self, executor, store, registry):
        registry.register("nope", lambda p, c: HandlerResult.fail("bad input", field="x"))
        job = executor.execute(_insert(store, "nope"))
        assert job.status == JobStatus.FAILED
        assert job.error == "bad input"
        assert job.results == {"field": "x"}

    def test_timeout_fails_job_and_sets_cancel_event(self, executor, store, registry):
        seen = {}
        release = threading.Event()

        def slow(params, ctx):
            seen["ctx"] = ctx
            release.wait(5)
            return {"late": True}

        registry.register("slow", slow)
        job = executor.execute(_insert(store, "slow", timeout_seconds=0.1))
        release.set()

        assert job.status == JobStatus.FAILED
        assert job.error == "Job timed out after 0.1s"
        assert seen["ctx"].cancelled
        assert store.get(job.id).results == {}

    def test_retry_eligibility_flag(self, executor, store, registry):
        registry.register("boom", lambda p, c: HandlerResult.fail("x"))
        eligible = executor.execute(_insert(store, "boom"))
        assert eligible.metadata["retry_eligible"] is True

        store.insert(Job(job_type="boom", id="exhausted", retry_count=3, max_retries=3))
        assert executor.execute("exhausted").metadata["retry_eligible"] is False


class TestExecutorClaiming:
    def test_not_runnable_returns_none(self, executor, store, registry):
        registry.register("echo", lambda p, c: {})
        job_id = _insert(store, "echo", status=JobStatus.CANCELLED)
        assert executor.execute(job_id) is None
        assert store.get(job_id).status == JobStatus.CANCELLED

    def test_missing_job(self, executor):
        assert executor.execute("ghost") is None

    def test_scheduled_job_is_claimed(self, executor, store, registry):
        registry.register("echo", lambda p, c: {})
        job_id = _insert(store, "echo", status=JobStatus.SCHEDULED)
        assert executor.execute(job_id).status == JobStatus.COMPLETED

    def test_handler_gets_context(self, executor, store, registry):
        captured = {}

        def capture(params, ctx):
            captured.update(job_id=ctx.job_id, job_type=ctx.job_type, attempt=ctx.attempt)
            return None

        registry.register("capture", capture)
        job_id = _insert(store, "capture", retry_count=2)
        executor.execute(job_id)
        assert captured == {"job_id": job_id, "job_type": "capture", "attempt": 2}


class TestAutoRetry:
    def test_calls_retry_hook_when_enabled(self, store, registry, sink):
        calls = []
        executor = JobExecutor(
            store, registry, AuditTrail(sink),
            settings=SchedulerSettings(auto_retry=True),
            retry=lambda job_id: calls.append(job_id) or True,
        )
        registry.register("boom", lambda p, c: HandlerResult.fail("x"))
        job_id = _insert(store, "boom")
        executor.execute(job_id)
        assert calls == [job_id]

    def test_no_hook_call_when_disabled(self, store, registry, sink):
        calls = []
        executor = JobExecutor(store, registry, AuditTrail(sink), retry=calls.append)
        registry.register("boom", lambda p, c: HandlerResult.fail("x"))
        executor.execute(_insert(store, "boom"))
        assert calls == []
