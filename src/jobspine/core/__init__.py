"""Core building blocks shared by the job, scheduling and workflow packages.

- ``errors``   ─ typed exception hierarchy
- ``logging``  ─ structlog configuration and context binding
- ``settings`` ─ pydantic-settings configuration for the scheduler
- ``timestamps`` ─ timezone-aware UTC helpers
"""

from jobspine.core.errors import (
    ConfigError,
    ErrorCategory,
    ExpressionError,
    JobSpineError,
    ScheduleError,
    ScheduleEvaluationError,
    StepError,
    ValidationError,
    WorkflowDefinitionError,
    WorkflowError,
)
from jobspine.core.logging import LogContext, configure_from_settings, configure_logging, get_logger
from jobspine.core.settings import SchedulerSettings
from jobspine.core.timestamps import ensure_utc, utcnow

__all__ = [
    "ConfigError",
    "ErrorCategory",
    "ExpressionError",
    "JobSpineError",
    "ScheduleError",
    "ScheduleEvaluationError",
    "StepError",
    "ValidationError",
    "WorkflowDefinitionError",
    "WorkflowError",
    "LogContext",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "SchedulerSettings",
    "ensure_utc",
    "utcnow",
]
