"""Scheduling: timing backends, schedule evaluators and the JobScheduler.

Beat-as-poller: a backend calls :meth:`JobScheduler.tick` on a fixed
period; the tick decides what is due and hands it to the worker pool.
"""

from jobspine.scheduling.evaluators import (
    CompositeScheduleEvaluator,
    CronScheduleEvaluator,
    IntervalScheduleEvaluator,
    parse_interval,
)
from jobspine.scheduling.protocol import (
    BackendHealth,
    ScheduleEvaluator,
    SchedulerBackend,
    TickCallback,
)
from jobspine.scheduling.service import (
    JobScheduler,
    SchedulerHealth,
    SchedulerStats,
    TickResult,
)
from jobspine.scheduling.thread_backend import ThreadSchedulerBackend

__all__ = [
    "BackendHealth",
    "CompositeScheduleEvaluator",
    "CronScheduleEvaluator",
    "IntervalScheduleEvaluator",
    "JobScheduler",
    "ScheduleEvaluator",
    "SchedulerBackend",
    "SchedulerHealth",
    "SchedulerStats",
    "ThreadSchedulerBackend",
    "TickCallback",
    "TickResult",
    "parse_interval",
]
