"""Pydantic models for YAML workflow definitions.

Workflow authors can describe a step graph in YAML instead of building
:class:`~jobspine.workflows.models.WorkflowDefinition` objects in code.
The document is parsed with ``yaml.safe_load`` and validated by the
models below before being converted.

Usage::

    from jobspine.workflows.yaml_loader import load_workflow_file

    definition = load_workflow_file("workflows/nightly.yaml")
    workflow_id = workflows.create(definition)

Example YAML::

    apiVersion: jobspine/v1
    kind: Workflow
    metadata:
      name: nightly-maintenance
      description: Clean logs, then report
      version: "1.2"
      tags: [maintenance]
    spec:
      variables:
        max_age_days: 30
      steps:
        - id: cleanup
          action: cleanup_logs
          params:
            max_age_days: ${max_age_days}
          next: [check]
        - id: check
          type: condition
          condition: files_deleted > 0
          next: [report, done]
        - id: report
          action: performance_report
        - id: done
          action: log
          params: {message: nothing to report}

Manifesto:
    Code-first and YAML-first definitions end up as the same
    WorkflowDefinition and go through the same validate_definition()
    checks on create(). The YAML layer only adds schema checks that
    are cheaper to report with a line of context.

Tags:
    jobspine, workflows, yaml, declarative, config-driven
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from jobspine.core.errors import WorkflowDefinitionError
from jobspine.workflows.models import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_STEP_TIMEOUT_SECONDS,
    StepType,
    WorkflowDefinition,
    WorkflowStep,
)


class WorkflowMetadataSpec(BaseModel):
    """Metadata section of a workflow document."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Workflow name")
    id: str = Field(default="", description="Optional fixed workflow id")
    description: str = Field(default="", description="Human-readable description")
    version: str = Field(default="1.0", description="Definition version")
    enabled: bool = Field(default=True, description="Whether the workflow can be executed")
    created_by: str | None = Field(default=None, description="Author")
    tags: list[str] = Field(default_factory=list, description="Optional tags for filtering")

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v: Any) -> Any:
        # `version: 2` and `version: 1.5` are both common in hand-written YAML.
        return str(v) if isinstance(v, (int, float)) else v


class WorkflowStepSpec(BaseModel):
    """One step of a workflow document."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, description="Unique step id within the workflow")
    name: str = Field(default="", description="Display name (defaults to the id)")
    type: StepType = Field(default=StepType.ACTION, description="action, condition, loop or parallel")
    action: str | None = Field(default=None, description="Action or job type to run")
    params: dict[str, Any] = Field(default_factory=dict, description="Action parameters")
    next: list[str] = Field(default_factory=list, description="Step ids to visit afterwards")
    condition: str | None = Field(default=None, description="Guard, branch or loop expression")
    timeout_seconds: float = Field(default=DEFAULT_STEP_TIMEOUT_SECONDS, gt=0)
    required: bool = Field(default=True, description="Fail the run if this step fails")
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_shape(self) -> WorkflowStepSpec:
        if self.type in (StepType.CONDITION, StepType.LOOP) and not self.condition:
            raise ValueError(f"Step '{self.id}' of type {self.type.value} needs a condition")
        if self.type == StepType.CONDITION and len(self.next) > 2:
            raise ValueError(f"Condition step '{self.id}' takes at most two next steps")
        return self

    def to_step(self) -> WorkflowStep:
        return WorkflowStep(
            id=self.id,
            name=self.name or self.id,
            step_type=self.type,
            action=self.action,
            parameters=dict(self.params),
            next_steps=list(self.next),
            condition=self.condition,
            timeout_seconds=self.timeout_seconds,
            required=self.required,
            max_iterations=self.max_iterations,
            metadata=dict(self.metadata),
        )


class WorkflowSpecSection(BaseModel):
    """The ``spec`` section: variables, entry point and steps."""

    model_config = ConfigDict(extra="forbid")

    variables: dict[str, Any] = Field(default_factory=dict, description="Declared variable defaults")
    entry: str | None = Field(default=None, description="Entry step id (defaults to the first step)")
    steps: list[WorkflowStepSpec] = Field(..., min_length=1, description="Workflow steps")

    @field_validator("steps")
    @classmethod
    def validate_unique_ids(cls, v: list[WorkflowStepSpec]) -> list[WorkflowStepSpec]:
        ids = [step.id for step in v]
        if len(ids) != len(set(ids)):
            duplicates = {i for i in ids if ids.count(i) > 1}
            raise ValueError(f"Duplicate step ids: {sorted(duplicates)}")
        return v

    @model_validator(mode="after")
    def validate_references(self) -> WorkflowSpecSection:
        ids = {step.id for step in self.steps}
        for step in self.steps:
            unknown = [s for s in step.next if s not in ids]
            if unknown:
                raise ValueError(f"Step '{step.id}' references unknown steps: {unknown}")
        if self.entry is not None and self.entry not in ids:
            raise ValueError(f"Entry step '{self.entry}' does not exist")
        return self


class WorkflowSpec(BaseModel):
    """Root model of a YAML workflow document."""

    model_config = ConfigDict(extra="forbid")

    apiVersion: Literal["jobspine/v1"] = Field(default="jobspine/v1")
    kind: Literal["Workflow"] = Field(default="Workflow")
    metadata: WorkflowMetadataSpec
    spec: WorkflowSpecSection

    def to_definition(self) -> WorkflowDefinition:
        """Convert the validated document into a :class:`WorkflowDefinition`."""
        return WorkflowDefinition(
            name=self.metadata.name,
            id=self.metadata.id,
            description=self.metadata.description,
            version=self.metadata.version,
            enabled=self.metadata.enabled,
            created_by=self.metadata.created_by,
            tags=list(self.metadata.tags),
            variables=dict(self.spec.variables),
            entry_step_id=self.spec.entry,
            steps=[step.to_step() for step in self.spec.steps],
        )

    @classmethod
    def from_yaml(cls, yaml_content: str) -> WorkflowSpec:
        """Parse and validate YAML content.

        Raises:
            WorkflowDefinitionError: If the YAML is malformed or does not
                match the schema.
        """
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise WorkflowDefinitionError(f"Invalid YAML: {e}", cause=e) from e
        if not isinstance(data, dict):
            raise WorkflowDefinitionError("Workflow document must be a mapping")

        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            name = data.get("metadata", {}).get("name") if isinstance(data.get("metadata"), dict) else None
            raise WorkflowDefinitionError(
                f"Invalid workflow document: {e.error_count()} error(s)\n{e}",
                workflow=name,
                cause=e,
            ) from e

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> WorkflowSpec:
        content = Path(path).read_text(encoding="utf-8")
        return cls.from_yaml(content)


def load_workflow_yaml(text: str) -> WorkflowDefinition:
    """Parse a YAML document into a :class:`WorkflowDefinition`."""
    return WorkflowSpec.from_yaml(text).to_definition()


def load_workflow_file(path: str | Path) -> WorkflowDefinition:
    """Read and parse a YAML workflow file."""
    return WorkflowSpec.from_yaml_file(path).to_definition()
