"""
Structured error types for jobspine.

Most of the engine reports validation problems as ``False``/``None`` return
values so that transports never have to catch anything. Exceptions are kept
for the seams where the caller made a programming or configuration mistake:
malformed workflow definitions, unparseable expressions, schedule
descriptors the evaluator cannot read.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       JobSpineError                              │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigError        ValidationError         ScheduleError       │
        │  (CONFIG)           (VALIDATION)            (SCHEDULING)        │
        │                          │                        │              │
        │                WorkflowDefinitionError  ScheduleEvaluationError │
        │                                                                  │
        │  WorkflowError                                                   │
        │  (WORKFLOW)                                                      │
        │       │                                                          │
        │  ExpressionError                                                 │
        │  StepError                                                       │
        └─────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Raise from inside the scheduler tick or a worker thread
    ✅ DO: Convert to a Failed job / disabled schedule and log it

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Usage:
    from jobspine.core.errors import ScheduleEvaluationError

    try:
        nxt = evaluator.next_run(descriptor, now)
    except ScheduleEvaluationError as e:
        disable_schedule(reason=str(e))
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONFIG = "CONFIG"  # Missing or invalid settings
    VALIDATION = "VALIDATION"  # Bad definitions, bad input records
    SCHEDULING = "SCHEDULING"  # Schedule descriptors, evaluator failures
    WORKFLOW = "WORKFLOW"  # Step execution, expressions
    EXECUTION = "EXECUTION"  # Handler failures, timeouts
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


class JobSpineError(Exception):
    """Base class for all jobspine errors.

    Attributes:
        message: Human readable description
        category: ErrorCategory used for routing and reporting
        retryable: Whether retrying the same operation could succeed
        context: Free-form metadata (job_id, step_id, descriptor, ...)
        cause: Underlying exception, if any
    """

    default_category = ErrorCategory.INTERNAL
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> JobSpineError:
        """Attach extra context and return self for chaining."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging and audit records."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            data["context"] = dict(self.context)
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# Configuration
# =============================================================================


class ConfigError(JobSpineError):
    """Invalid or inconsistent configuration."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# Validation
# =============================================================================


class ValidationError(JobSpineError):
    """A record failed structural validation."""

    default_category = ErrorCategory.VALIDATION


class WorkflowDefinitionError(ValidationError):
    """A workflow definition has an invalid step graph."""

    def __init__(self, message: str, *, workflow: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        if workflow:
            self.context.setdefault("workflow", workflow)


# =============================================================================
# Scheduling
# =============================================================================


class ScheduleError(JobSpineError):
    """Base class for recurring schedule errors."""

    default_category = ErrorCategory.SCHEDULING


class ScheduleEvaluationError(ScheduleError):
    """A schedule descriptor could not be evaluated.

    Raised by schedule evaluators for malformed descriptors or when no
    instant strictly after the reference time can be produced.
    """

    def __init__(self, descriptor: str, reason: str, **kwargs: Any) -> None:
        self.descriptor = descriptor
        self.reason = reason
        super().__init__(f"Invalid schedule {descriptor!r}: {reason}", **kwargs)
        self.context.setdefault("descriptor", descriptor)


# =============================================================================
# Workflow execution
# =============================================================================


class WorkflowError(JobSpineError):
    """Base class for errors raised while walking a workflow."""

    default_category = ErrorCategory.WORKFLOW


class ExpressionError(WorkflowError):
    """A condition expression is malformed or references unknown names."""

    def __init__(self, expression: str, reason: str, **kwargs: Any) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Cannot evaluate {expression!r}: {reason}", **kwargs)


class StepError(WorkflowError):
    """A workflow step failed."""

    def __init__(self, step_id: str, message: str, **kwargs: Any) -> None:
        self.step_id = step_id
        super().__init__(message, **kwargs)
        self.context.setdefault("step_id", step_id)


__all__ = [
    "ErrorCategory",
    "JobSpineError",
    "ConfigError",
    "ValidationError",
    "WorkflowDefinitionError",
    "ScheduleError",
    "ScheduleEvaluationError",
    "WorkflowError",
    "ExpressionError",
    "StepError",
]
