"""
jobspine - In-process background job scheduler and workflow engine.

Submodules:
- jobspine.core: errors, logging, settings, timestamps
- jobspine.jobs: job records, stores, handlers, worker pool, executor
- jobspine.scheduling: timing backend, schedule evaluators, JobScheduler
- jobspine.workflows: workflow definitions, runner, WorkflowService
- jobspine.stats / jobspine.audit: statistics and audit trail
"""

__version__ = "0.1.0"

from jobspine.audit import AuditEvent, AuditSink, AuditTrail, InMemoryAuditSink, LoggingAuditSink
from jobspine.core import (
    JobSpineError,
    SchedulerSettings,
    WorkflowDefinitionError,
    configure_logging,
    get_logger,
)
from jobspine.jobs import (
    HandlerRegistry,
    HandlerResult,
    Job,
    JobContext,
    JobPriority,
    JobStatus,
    RecurringJob,
)
from jobspine.scheduling import JobScheduler
from jobspine.stats import JobStatistics, WorkflowStatistics, compute_job_statistics
from jobspine.workflows import (
    StepType,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowService,
    WorkflowStatus,
    WorkflowStep,
    load_workflow_file,
    load_workflow_yaml,
)

__all__ = [
    "__version__",
    "AuditEvent",
    "AuditSink",
    "AuditTrail",
    "InMemoryAuditSink",
    "LoggingAuditSink",
    "JobSpineError",
    "SchedulerSettings",
    "WorkflowDefinitionError",
    "configure_logging",
    "get_logger",
    "HandlerRegistry",
    "HandlerResult",
    "Job",
    "JobContext",
    "JobPriority",
    "JobStatus",
    "RecurringJob",
    "JobScheduler",
    "JobStatistics",
    "WorkflowStatistics",
    "compute_job_statistics",
    "StepType",
    "WorkflowDefinition",
    "WorkflowExecution",
    "WorkflowService",
    "WorkflowStatus",
    "WorkflowStep",
    "load_workflow_file",
    "load_workflow_yaml",
]
