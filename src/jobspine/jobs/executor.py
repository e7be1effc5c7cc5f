"""Job executor — runs one claimed job to a terminal state.

Manifesto:
    The worker pool hands the executor a job id; the executor owns
    everything that happens between RUNNING and COMPLETED/FAILED. Every
    failure mode (unknown job type, handler exception, handler-reported
    failure, deadline expiry) ends as a FAILED record with a message.
    Nothing escapes into the worker thread.

ARCHITECTURE
────────────
::

    WorkerPool thread
        │  execute(job_id)
        ▼
    JobStore.transition({PENDING, SCHEDULED} → RUNNING, started_at=now)
        │  (None → someone else cancelled/paused/claimed it: return)
        ▼
    HandlerRegistry.get(job_type) ── None ──► FAILED "Unknown job type"
        │
        ▼
    run_with_timeout(handler, timeout, on_timeout=ctx.cancel_event.set)
        │
        ├── HandlerResult(success=True)   ──► COMPLETED, results
        ├── HandlerResult(success=False)  ──► FAILED, error
        ├── TimeoutExpired                ──► FAILED "Job timed out after Ns"
        └── Exception                     ──► FAILED, str(exc)
                                              │
                                              └─ auto_retry? ─► retry(job_id)

Guardrails:
    ❌ DON'T: Let a handler exception reach the worker loop
    ✅ DO: Record it on the job and return

    ❌ DON'T: Write a late result after a timeout
    ✅ DO: Rely on the RUNNING → FAILED compare-and-set; the late
       handler return is simply discarded

Tags:
    jobspine, jobs, executor, timeout, handler-dispatch
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from jobspine.audit import AuditTrail
from jobspine.core.logging import LogContext, get_logger
from jobspine.core.settings import SchedulerSettings
from jobspine.core.timestamps import Clock, utcnow
from jobspine.jobs.models import Job, JobStatus
from jobspine.jobs.registry import HandlerRegistry, HandlerResult, JobContext
from jobspine.jobs.store import JobStore
from jobspine.jobs.timeout import TimeoutExpired, run_with_timeout

logger = get_logger(__name__)

UNKNOWN_JOB_TYPE = "Unknown job type"


class JobExecutor:
    """Executes claimed jobs against the handler registry."""

    def __init__(
        self,
        store: JobStore,
        registry: HandlerRegistry,
        audit: AuditTrail,
        settings: SchedulerSettings | None = None,
        clock: Clock = utcnow,
        retry: Callable[[str], bool] | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._audit = audit
        self._settings = settings or SchedulerSettings()
        self._clock = clock
        self._retry = retry

    def set_retry(self, retry: Callable[[str], bool] | None) -> None:
        """Install the callable used for automatic retries."""
        self._retry = retry

    def execute(self, job_id: str) -> Job | None:
        """Run *job_id* if it can still be claimed.

        Returns:
            The final job record, or None if the job was no longer
            runnable (deleted, cancelled, paused or already claimed).
        """
        job = self._store.transition(
            job_id,
            (JobStatus.PENDING, JobStatus.SCHEDULED),
            JobStatus.RUNNING,
            started_at=self._clock(),
            completed_at=None,
            error=None,
        )
        if job is None:
            logger.debug("job.claim_skipped", job_id=job_id)
            return None

        with LogContext(job_id=job.id, job_type=job.job_type):
            logger.info("job.started", attempt=job.retry_count)
            self._audit.emit("JOB_STARTED", "job", job.id, job_type=job.job_type)
            return self._run(job)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _run(self, job: Job) -> Job | None:
        handler = self._registry.get(job.job_type)
        if handler is None:
            return self._fail(job, UNKNOWN_JOB_TYPE)

        timeout = job.timeout_seconds or self._settings.default_job_timeout_seconds
        context = JobContext(
            job_id=job.id,
            job_type=job.job_type,
            attempt=job.retry_count,
            timeout_seconds=timeout,
            metadata=job.metadata,
        )

        start = time.monotonic()
        try:
            raw = run_with_timeout(
                handler,
                timeout,
                operation=job.job_type,
                args=(dict(job.parameters), context),
                on_timeout=context.cancel_event.set,
            )
            result = HandlerResult.coerce(raw)
        except TimeoutExpired:
            return self._fail(job, f"Job timed out after {timeout:g}s")
        except Exception as exc:
            logger.warning("job.handler_raised", error_type=type(exc).__name__, exc_info=True)
            return self._fail(job, str(exc) or type(exc).__name__)

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        if not result.success:
            return self._fail(job, result.error or "Handler reported failure", results=result.data)
        return self._complete(job, result.data, duration_ms)

    def _complete(self, job: Job, data: dict[str, Any], duration_ms: float) -> Job | None:
        done = self._store.transition(
            job.id,
            (JobStatus.RUNNING,),
            JobStatus.COMPLETED,
            completed_at=self._clock(),
            results=data,
        )
        if done is None:
            logger.warning("job.complete_lost", reason="status changed while running")
            return self._store.get(job.id)
        logger.info("job.completed", duration_ms=duration_ms)
        self._audit.emit("JOB_COMPLETED", "job", job.id, job_type=job.job_type, duration_ms=duration_ms)
        return done

    def _fail(self, job: Job, error: str, results: dict[str, Any] | None = None) -> Job | None:
        max_retries = job.max_retries or 0
        eligible = job.retry_count < max_retries

        failed = self._store.transition(
            job.id,
            (JobStatus.RUNNING,),
            JobStatus.FAILED,
            completed_at=self._clock(),
            error=error,
            results=results if results is not None else job.results,
            metadata={**job.metadata, "retry_eligible": eligible},
        )
        if failed is None:
            logger.warning("job.fail_lost", error=error)
            return self._store.get(job.id)

        logger.warning("job.failed", error=error, retry_count=job.retry_count, retry_eligible=eligible)
        self._audit.emit(
            "JOB_FAILED",
            "job",
            job.id,
            outcome="failure",
            job_type=job.job_type,
            error=error,
            retry_eligible=eligible,
        )

        if eligible and self._settings.auto_retry and self._retry is not None:
            try:
                self._retry(job.id)
            except Exception:
                logger.exception("job.auto_retry_failed")
            return self._store.get(job.id)
        return failed
