"""Background jobs: records, stores, handlers, and execution.

- ``models``   ─ Job, RecurringJob, JobStatus, JobPriority, transitions
- ``store``    ─ lock-guarded in-memory stores with compare-and-set
- ``registry`` ─ job type → handler lookup
- ``handlers`` ─ built-in maintenance handlers
- ``retry``    ─ backoff strategies
- ``timeout``  ─ deadline enforcement
- ``pool``     ─ bounded worker pool
- ``executor`` ─ runs a claimed job to a terminal state
"""

from jobspine.jobs.executor import UNKNOWN_JOB_TYPE, JobExecutor
from jobspine.jobs.handlers import BUILTIN_HANDLERS, register_builtin_handlers
from jobspine.jobs.models import (
    JOB_VALID_TRANSITIONS,
    InvalidTransitionError,
    Job,
    JobPriority,
    JobStatus,
    RecurringJob,
)
from jobspine.jobs.pool import WorkerPool
from jobspine.jobs.registry import HandlerRegistry, HandlerResult, JobContext
from jobspine.jobs.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    LinearBackoff,
    RetryStrategy,
    strategy_from_settings,
)
from jobspine.jobs.store import JobStore, RecurringJobStore
from jobspine.jobs.timeout import Deadline, TimeoutExpired, run_with_timeout

__all__ = [
    "BUILTIN_HANDLERS",
    "ConstantBackoff",
    "Deadline",
    "ExponentialBackoff",
    "HandlerRegistry",
    "HandlerResult",
    "InvalidTransitionError",
    "JOB_VALID_TRANSITIONS",
    "Job",
    "JobContext",
    "JobExecutor",
    "JobPriority",
    "JobStatus",
    "JobStore",
    "LinearBackoff",
    "RecurringJob",
    "RecurringJobStore",
    "RetryStrategy",
    "TimeoutExpired",
    "UNKNOWN_JOB_TYPE",
    "WorkerPool",
    "register_builtin_handlers",
    "run_with_timeout",
    "strategy_from_settings",
]
