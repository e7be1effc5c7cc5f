"""Workflows: multi-step automations dispatched as background jobs.

- ``models``      ─ definitions, executions, statuses and validation
- ``store``       ─ in-memory workflow and execution stores
- ``expressions`` ─ safe condition expressions and ``${name}`` placeholders
- ``actions``     ─ step action registry and built-in actions
- ``runner``      ─ walks one execution's step graph
- ``service``     ─ WorkflowService management API
- ``yaml_loader`` ─ YAML workflow documents
"""

from jobspine.workflows.actions import ActionRegistry, StepAction, StepContext, register_builtin_actions
from jobspine.workflows.expressions import evaluate, evaluate_condition, resolve_placeholders
from jobspine.workflows.models import (
    StepExecution,
    StepStatus,
    StepType,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStatus,
    WorkflowStep,
    validate_definition,
)
from jobspine.workflows.runner import MAX_STEP_VISITS, WorkflowRunner
from jobspine.workflows.service import WORKFLOW_JOB_TYPE, WorkflowService
from jobspine.workflows.store import ExecutionStore, WorkflowStore
from jobspine.workflows.yaml_loader import WorkflowSpec, load_workflow_file, load_workflow_yaml

__all__ = [
    "ActionRegistry",
    "ExecutionStore",
    "MAX_STEP_VISITS",
    "StepAction",
    "StepContext",
    "StepExecution",
    "StepStatus",
    "StepType",
    "WORKFLOW_JOB_TYPE",
    "WorkflowDefinition",
    "WorkflowExecution",
    "WorkflowRunner",
    "WorkflowService",
    "WorkflowSpec",
    "WorkflowStatus",
    "WorkflowStep",
    "WorkflowStore",
    "evaluate",
    "evaluate_condition",
    "load_workflow_file",
    "load_workflow_yaml",
    "register_builtin_actions",
    "resolve_placeholders",
    "validate_definition",
]
