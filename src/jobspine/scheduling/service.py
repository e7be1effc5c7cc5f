"""Job scheduler — the owned engine instance.

Manifesto:
    The JobScheduler is the central coordinator that combines the timing
    backend (WHEN), the stores (WHAT), the worker pool (HOW MUCH) and the
    executor (HOW) into one instance. There are no module globals: every
    test builds its own scheduler with its own stores and registry.

Tags:
    jobspine, scheduling, orchestrator, beat-as-poller, service

┌──────────────────────────────────────────────────────────────────────────────┐
│  JOB SCHEDULER ARCHITECTURE                                                   │
│                                                                               │
│   ┌─────────────────┐  ┌─────────────────┐  ┌─────────────────┐              │
│   │  Backend        │  │  JobStore /     │  │  WorkerPool     │              │
│   │  (timing)       │  │  RecurringStore │  │  (bounded)      │              │
│   └────────┬────────┘  └────────┬────────┘  └────────┬────────┘              │
│            │ tick()             │                    │ execute(job_id)       │
│            ▼                    ▼                    ▼                       │
│   ┌────────────────────────────────────────────────────────────┐             │
│   │                        tick()                              │             │
│   │                                                            │             │
│   │   0. non-blocking tick lock (overlap → skipped)            │             │
│   │   1. store.due(now)   priority desc, scheduled_at asc      │             │
│   │   2. for each: has_capacity? ─no─► deferred (next tick)    │             │
│   │               CAS PENDING → SCHEDULED, pool.submit(id)     │             │
│   │   3. recurring.due(now)                                    │             │
│   │        ├── evaluator.next_run() ─error─► disable (closed)  │             │
│   │        ├── claim slot: CAS on previous next_run_at         │             │
│   │        └── submit(template.spawn())                        │             │
│   └────────────────────────────────────────────────────────────┘             │
│                                                                               │
│   Public API:                                                                 │
│   ├── submit / get_job / list_jobs / jobs_by_type / jobs_by_user             │
│   ├── cancel / pause / resume / retry / delete / update_status               │
│   ├── schedule_recurring / cancel_recurring / enable_recurring / ...         │
│   ├── statistics()     JobStatistics rollup                                  │
│   └── start / stop / tick / wait_idle / health                               │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from jobspine.audit import AuditTrail
from jobspine.core.errors import ScheduleEvaluationError
from jobspine.core.logging import get_logger
from jobspine.core.settings import SchedulerSettings
from jobspine.core.timestamps import Clock, ensure_utc, new_id, to_iso8601, utcnow
from jobspine.jobs.executor import JobExecutor
from jobspine.jobs.handlers import register_builtin_handlers
from jobspine.jobs.models import Job, JobStatus, RecurringJob, can_transition
from jobspine.jobs.pool import WorkerPool
from jobspine.jobs.registry import HandlerRegistry
from jobspine.jobs.retry import RetryStrategy, strategy_from_settings
from jobspine.jobs.store import JobStore, RecurringJobStore
from jobspine.scheduling.evaluators import CompositeScheduleEvaluator
from jobspine.scheduling.protocol import BackendHealth, ScheduleEvaluator, SchedulerBackend
from jobspine.scheduling.thread_backend import ThreadSchedulerBackend
from jobspine.stats import JobStatistics, compute_job_statistics

logger = get_logger(__name__)


@dataclass
class SchedulerStats:
    """Counters maintained by the tick loop."""

    tick_count: int = 0
    ticks_skipped: int = 0
    jobs_dispatched: int = 0
    jobs_deferred: int = 0
    recurring_fired: int = 0
    recurring_disabled: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "ticks_skipped": self.ticks_skipped,
            "jobs_dispatched": self.jobs_dispatched,
            "jobs_deferred": self.jobs_deferred,
            "recurring_fired": self.recurring_fired,
            "recurring_disabled": self.recurring_disabled,
            "last_tick": to_iso8601(self.last_tick),
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for the scheduler."""

    healthy: bool
    running: bool
    backend: BackendHealth | dict
    queue_depth: int = 0
    active_workers: int = 0
    max_workers: int = 0
    jobs_total: int = 0
    recurring_enabled: int = 0
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "healthy": self.healthy,
            "running": self.running,
            "backend": self.backend.to_dict() if isinstance(self.backend, BackendHealth) else self.backend,
            "queue_depth": self.queue_depth,
            "active_workers": self.active_workers,
            "max_workers": self.max_workers,
            "jobs_total": self.jobs_total,
            "recurring_enabled": self.recurring_enabled,
            "stats": self.stats.to_dict(),
        }


@dataclass
class TickResult:
    """What a single tick did."""

    skipped: bool = False
    dispatched: list[str] = field(default_factory=list)
    deferred: int = 0
    recurring_fired: list[str] = field(default_factory=list)
    recurring_disabled: list[str] = field(default_factory=list)


class JobScheduler:
    """Background job scheduler — beat-as-poller over in-memory stores.

    Example:
        >>> from jobspine import Job, JobScheduler, SchedulerSettings
        >>>
        >>> scheduler = JobScheduler(SchedulerSettings(tick_interval_seconds=5))
        >>> with scheduler:
        ...     job_id = scheduler.submit(Job(job_type="cleanup_logs"))
        ...     scheduler.tick()
        ...     scheduler.wait_idle(timeout=10)
        >>> scheduler.get_job(job_id).status
        <JobStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        settings: SchedulerSettings | None = None,
        *,
        registry: HandlerRegistry | None = None,
        store: JobStore | None = None,
        recurring_store: RecurringJobStore | None = None,
        evaluator: ScheduleEvaluator | None = None,
        backend: SchedulerBackend | None = None,
        audit: AuditTrail | None = None,
        retry_strategy: RetryStrategy | None = None,
        clock: Clock = utcnow,
        register_builtins: bool = True,
    ) -> None:
        self.settings = settings or SchedulerSettings()
        self.registry = registry if registry is not None else HandlerRegistry()
        if register_builtins:
            register_builtin_handlers(self.registry)
        self.store = store if store is not None else JobStore()
        self.recurring_store = recurring_store if recurring_store is not None else RecurringJobStore()
        self.evaluator = evaluator or CompositeScheduleEvaluator()
        self.backend = backend or ThreadSchedulerBackend()
        self.audit = audit or AuditTrail()
        self.retry_strategy = retry_strategy or strategy_from_settings(self.settings)
        self._clock = clock

        self.executor = JobExecutor(
            self.store,
            self.registry,
            self.audit,
            settings=self.settings,
            clock=self._clock,
            retry=self.retry,
        )
        self.pool = WorkerPool(
            self.executor.execute,
            max_workers=self.settings.max_workers,
            queue_size=self.settings.queue_size,
        )

        self._stats = SchedulerStats()
        self._stats_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._running = False

    # === Lifecycle ===

    def start(self) -> None:
        """Start the worker pool and the tick loop."""
        if self._running:
            logger.warning("scheduler.already_running")
            return
        self.pool.start()
        self.backend.start(self.tick, self.settings.tick_interval_seconds)
        self._running = True
        logger.info(
            "scheduler.started",
            backend=self.backend.name,
            interval_seconds=self.settings.tick_interval_seconds,
            max_workers=self.settings.max_workers,
        )

    def stop(self, timeout: float | None = 10.0) -> None:
        """Stop ticking, then drain queued jobs and join the workers."""
        if not self._running:
            return
        self.backend.stop()
        self.pool.stop(timeout=timeout)
        self._running = False
        logger.info("scheduler.stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def __enter__(self) -> JobScheduler:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no dispatched job is queued or running."""
        return self.pool.wait_idle(timeout=timeout)

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    # === Tick Processing ===

    def tick(self) -> TickResult:
        """Run one scheduling pass. Never raises; never overlaps itself."""
        if not self._tick_lock.acquire(blocking=False):
            with self._stats_lock:
                self._stats.ticks_skipped += 1
            logger.warning("scheduler.tick_skipped", reason="previous tick still running")
            return TickResult(skipped=True)

        result = TickResult()
        try:
            now = self.now()
            with self._stats_lock:
                self._stats.tick_count += 1
                self._stats.last_tick = now

            for phase in (self._dispatch_due_jobs, self._fire_recurring_jobs):
                try:
                    phase(now, result)
                except Exception as e:
                    with self._stats_lock:
                        self._stats.last_error = str(e)
                    logger.exception("scheduler.tick_failed", phase=phase.__name__)
        finally:
            self._tick_lock.release()

        with self._stats_lock:
            self._stats.jobs_dispatched += len(result.dispatched)
            self._stats.jobs_deferred += result.deferred
            self._stats.recurring_fired += len(result.recurring_fired)
            self._stats.recurring_disabled += len(result.recurring_disabled)

        if result.dispatched or result.deferred or result.recurring_fired:
            logger.info(
                "scheduler.tick",
                dispatched=len(result.dispatched),
                deferred=result.deferred,
                recurring_fired=len(result.recurring_fired),
            )
        return result

    def _dispatch_due_jobs(self, now: datetime, result: TickResult) -> None:
        due = self.store.due(now)
        for index, job in enumerate(due):
            # The tick is the only producer, so capacity checked here is
            # still there when submit() runs.
            if not self.pool.has_capacity():
                result.deferred = len(due) - index
                logger.debug("scheduler.queue_full", deferred=result.deferred)
                return
            claimed = self.store.transition(job.id, (JobStatus.PENDING,), JobStatus.SCHEDULED)
            if claimed is None:
                continue
            if not self.pool.submit(job.id):
                logger.error("scheduler.submit_rejected", job_id=job.id)
                continue
            result.dispatched.append(job.id)

    def _fire_recurring_jobs(self, now: datetime, result: TickResult) -> None:
        for recurring in self.recurring_store.due(now):
            try:
                next_run = self.evaluator.next_run(recurring.schedule, now)
            except Exception as e:
                if self._disable_recurring(recurring.id, _evaluation_error(recurring.schedule, e)):
                    result.recurring_disabled.append(recurring.id)
                continue

            def _advance(record: RecurringJob, next_run: datetime = next_run) -> None:
                record.last_run_at = now
                record.next_run_at = next_run
                record.run_count += 1

            claimed = self.recurring_store.update(
                recurring.id,
                _advance,
                expected_next_run=recurring.next_run_at,
                check_next_run=True,
            )
            if claimed is None:
                continue

            job_id = self.submit(recurring.spawn())
            self.recurring_store.update(recurring.id, lambda r: setattr(r, "last_job_id", job_id))
            result.recurring_fired.append(recurring.id)
            logger.info(
                "recurring.fired",
                recurring_job_id=recurring.id,
                job_id=job_id,
                next_run_at=to_iso8601(next_run),
            )
            self.audit.emit(
                "RECURRING_JOB_FIRED",
                "recurring_job",
                recurring.id,
                job_id=job_id,
                next_run_at=to_iso8601(next_run),
            )

    # === Job API ===

    def submit(self, job: Job) -> str:
        """Store *job* as a new PENDING job and return its fresh id."""
        now = self.now()
        record = job.copy()
        record.id = new_id()
        record.status = JobStatus.PENDING
        record.created_at = now
        record.scheduled_at = ensure_utc(record.scheduled_at) or now
        record.started_at = None
        record.completed_at = None
        record.retry_count = 0
        record.error = None
        if record.max_retries is None or record.max_retries < 0:
            record.max_retries = self.settings.default_max_retries

        while not self.store.insert(record):
            record.id = new_id()

        logger.info("job.submitted", job_id=record.id, job_type=record.job_type, priority=record.priority.name)
        self.audit.emit(
            "JOB_CREATED",
            "job",
            record.id,
            actor=record.created_by,
            job_type=record.job_type,
            priority=record.priority.name,
        )
        return record.id

    def get_job(self, job_id: str) -> Job | None:
        return self.store.get(job_id)

    def list_jobs(self, status: JobStatus | str | None = None, job_type: str | None = None) -> list[Job]:
        """All jobs, newest first, optionally filtered."""
        wanted_status = _coerce_status(status) if status is not None else None
        if status is not None and wanted_status is None:
            return []
        wanted_type = job_type.strip().lower() if job_type else None

        def _match(job: Job) -> bool:
            if wanted_status is not None and job.status != wanted_status:
                return False
            return wanted_type is None or job.job_type.lower() == wanted_type

        return self.store.find(_match)

    def jobs_by_type(self, job_type: str) -> list[Job]:
        return self.list_jobs(job_type=job_type)

    def jobs_by_user(self, user: str) -> list[Job]:
        """Jobs created by or assigned to *user*."""
        return self.store.find(lambda j: user in (j.created_by, j.assigned_to))

    def failed_jobs(self) -> list[Job]:
        return self.list_jobs(status=JobStatus.FAILED)

    def cancel(self, job_id: str, actor: str | None = None) -> bool:
        """Cancel a PENDING or SCHEDULED job. RUNNING jobs cannot be cancelled."""
        job = self.store.transition(
            job_id,
            (JobStatus.PENDING, JobStatus.SCHEDULED),
            JobStatus.CANCELLED,
            completed_at=self.now(),
        )
        if job is None:
            return False
        logger.info("job.cancelled", job_id=job_id)
        self.audit.emit("JOB_CANCELLED", "job", job_id, actor=actor, job_type=job.job_type)
        return True

    def pause(self, job_id: str, actor: str | None = None) -> bool:
        job = self.store.transition(job_id, (JobStatus.PENDING, JobStatus.SCHEDULED), JobStatus.PAUSED)
        if job is None:
            return False
        logger.info("job.paused", job_id=job_id)
        self.audit.emit("JOB_PAUSED", "job", job_id, actor=actor, job_type=job.job_type)
        return True

    def resume(self, job_id: str, actor: str | None = None) -> bool:
        job = self.store.transition(job_id, (JobStatus.PAUSED,), JobStatus.PENDING)
        if job is None:
            return False
        logger.info("job.resumed", job_id=job_id)
        self.audit.emit("JOB_RESUMED", "job", job_id, actor=actor, job_type=job.job_type)
        return True

    def retry(self, job_id: str, actor: str | None = None) -> bool:
        """Move a FAILED job back to PENDING after a backoff delay.

        Returns False unless the job is FAILED with ``retry_count <
        max_retries``; once the ceiling is reached no further retries happen.
        """
        current = self.store.get(job_id)
        if current is None or current.status != JobStatus.FAILED:
            return False
        if not self.retry_strategy.should_retry(current.retry_count, current.max_retries or 0):
            return False

        now = self.now()
        delay = self.retry_strategy.next_delay(current.retry_count)
        metadata = {k: v for k, v in current.metadata.items() if k != "retry_eligible"}
        job = self.store.transition(
            job_id,
            (JobStatus.FAILED,),
            JobStatus.PENDING,
            guard=lambda j: j.retry_count == current.retry_count,
            retry_count=current.retry_count + 1,
            scheduled_at=now + timedelta(seconds=delay),
            error=None,
            started_at=None,
            completed_at=None,
            metadata=metadata,
        )
        if job is None:
            return False
        logger.info(
            "job.retried",
            job_id=job_id,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
            delay_seconds=delay,
        )
        self.audit.emit(
            "JOB_RETRIED",
            "job",
            job_id,
            actor=actor,
            retry_count=job.retry_count,
            scheduled_at=to_iso8601(job.scheduled_at),
        )
        return True

    def delete(self, job_id: str, actor: str | None = None) -> bool:
        if not self.store.delete(job_id):
            return False
        logger.info("job.deleted", job_id=job_id)
        self.audit.emit("JOB_DELETED", "job", job_id, actor=actor)
        return True

    def update_status(self, job_id: str, status: JobStatus | str, message: str | None = None) -> bool:
        """Validated status change for transports reporting external progress."""
        target = _coerce_status(status)
        current = self.store.get(job_id)
        if target is None or current is None or not can_transition(current.status, target):
            return False
        # SCHEDULED is claimed by the tick only; FAILED leaves through retry().
        if target == JobStatus.SCHEDULED or current.status == JobStatus.FAILED:
            logger.warning(
                "job.status_update_rejected",
                job_id=job_id,
                current=current.status.value,
                target=target.value,
            )
            return False

        now = self.now()
        changes: dict[str, Any] = {}
        if target == JobStatus.RUNNING:
            changes["started_at"] = now
        elif target in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED):
            changes["completed_at"] = now
        if message and target == JobStatus.FAILED:
            changes["error"] = message

        job = self.store.transition(job_id, (current.status,), target, **changes)
        if job is None:
            return False
        logger.info("job.status_updated", job_id=job_id, status=target.value)
        self.audit.emit(
            "JOB_STATUS_UPDATED",
            "job",
            job_id,
            outcome="failure" if target == JobStatus.FAILED else "success",
            status=target.value,
            message=message,
        )
        return True

    # === Recurring API ===

    def schedule_recurring(self, recurring: RecurringJob) -> str:
        """Register a recurring job and return its id.

        A descriptor the evaluator cannot read is stored disabled with the
        reason in ``metadata["schedule_error"]``.
        """
        now = self.now()
        record = recurring.copy()
        record.id = new_id()
        record.created_at = now
        record.last_run_at = None
        record.run_count = 0
        record.last_job_id = None

        error: str | None = None
        try:
            computed = self.evaluator.next_run(record.schedule, now)
        except Exception as e:
            error = _evaluation_error(record.schedule, e)
        if error is None:
            requested = ensure_utc(record.next_run_at)
            record.next_run_at = requested if requested and requested > now else computed
        else:
            record.enabled = False
            record.next_run_at = None
            record.metadata["schedule_error"] = error

        self.recurring_store.insert(record)
        logger.info(
            "recurring.scheduled",
            recurring_job_id=record.id,
            schedule=record.schedule,
            enabled=record.enabled,
            next_run_at=to_iso8601(record.next_run_at),
        )
        self.audit.emit(
            "RECURRING_JOB_CREATED",
            "recurring_job",
            record.id,
            actor=record.created_by,
            schedule=record.schedule,
        )
        if error is not None:
            logger.warning("recurring.disabled", recurring_job_id=record.id, error=error)
            with self._stats_lock:
                self._stats.recurring_disabled += 1
            self.audit.emit(
                "RECURRING_JOB_DISABLED", "recurring_job", record.id, outcome="failure", error=error
            )
        return record.id

    def get_recurring(self, recurring_id: str) -> RecurringJob | None:
        return self.recurring_store.get(recurring_id)

    def list_recurring(self) -> list[RecurringJob]:
        return self.recurring_store.all()

    def cancel_recurring(self, recurring_id: str, actor: str | None = None) -> bool:
        """Disable a recurring job. Jobs it already spawned are unaffected."""
        updated = self.recurring_store.update(recurring_id, lambda r: setattr(r, "enabled", False))
        if updated is None:
            return False
        logger.info("recurring.cancelled", recurring_job_id=recurring_id)
        self.audit.emit("RECURRING_JOB_CANCELLED", "recurring_job", recurring_id, actor=actor)
        return True

    def enable_recurring(self, recurring_id: str, actor: str | None = None) -> bool:
        """Re-enable a recurring job, re-evaluating its schedule from now."""
        current = self.recurring_store.get(recurring_id)
        if current is None:
            return False
        now = self.now()
        try:
            next_run = self.evaluator.next_run(current.schedule, now)
        except Exception as e:
            self._disable_recurring(recurring_id, _evaluation_error(current.schedule, e))
            return False

        def _enable(record: RecurringJob) -> None:
            record.enabled = True
            record.next_run_at = next_run
            record.metadata.pop("schedule_error", None)

        self.recurring_store.update(recurring_id, _enable)
        logger.info("recurring.enabled", recurring_job_id=recurring_id, next_run_at=to_iso8601(next_run))
        self.audit.emit("RECURRING_JOB_ENABLED", "recurring_job", recurring_id, actor=actor)
        return True

    def delete_recurring(self, recurring_id: str, actor: str | None = None) -> bool:
        if not self.recurring_store.delete(recurring_id):
            return False
        logger.info("recurring.deleted", recurring_job_id=recurring_id)
        self.audit.emit("RECURRING_JOB_DELETED", "recurring_job", recurring_id, actor=actor)
        return True

    def _disable_recurring(self, recurring_id: str, error: str) -> bool:
        def _disable(record: RecurringJob) -> None:
            record.enabled = False
            record.next_run_at = None
            record.metadata["schedule_error"] = error

        if self.recurring_store.update(recurring_id, _disable) is None:
            return False
        logger.warning("recurring.disabled", recurring_job_id=recurring_id, error=error)
        self.audit.emit("RECURRING_JOB_DISABLED", "recurring_job", recurring_id, outcome="failure", error=error)
        return True

    # === Health & Stats ===

    def statistics(self) -> JobStatistics:
        return compute_job_statistics(self.store.all())

    def get_stats(self) -> SchedulerStats:
        with self._stats_lock:
            return SchedulerStats(**vars(self._stats))

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = SchedulerStats()

    def health(self) -> SchedulerHealth:
        backend_health = self.backend.health()
        return SchedulerHealth(
            healthy=self._running and bool(backend_health.get("healthy", False)),
            running=self._running,
            backend=backend_health,
            queue_depth=self.pool.queue_depth,
            active_workers=self.pool.active_workers,
            max_workers=self.pool.max_workers,
            jobs_total=len(self.store),
            recurring_enabled=sum(1 for r in self.recurring_store.all() if r.enabled),
            stats=self.get_stats(),
        )


def _coerce_status(status: JobStatus | str) -> JobStatus | None:
    if isinstance(status, JobStatus):
        return status
    try:
        return JobStatus(str(status).strip().lower())
    except ValueError:
        return None


def _evaluation_error(schedule: str, error: Exception) -> str:
    if isinstance(error, ScheduleEvaluationError):
        return str(error)
    return str(ScheduleEvaluationError(schedule, f"{type(error).__name__}: {error}"))
