"""Workflow step actions.

Manifesto:
An action step names what it does (``"set_variables"``,
``"cleanup_logs"``). The runner resolves that name first against the
workflow :class:`ActionRegistry`, then against the job
:class:`~jobspine.jobs.registry.HandlerRegistry`, so every job type is
also usable as a step without extra wiring.

ARCHITECTURE
────────────
::

    ActionRegistry
      ├── .register(name, action)   ─ store action
      ├── .action(name)             ─ decorator form
      ├── .get(name)                ─ lookup, None if unknown
      └── .names()                  ─ registered action names

    Action contract:
      action(parameters: dict, context: StepContext) -> dict | HandlerResult | None

    Built-ins (register_builtin_actions):
      log            ─ write a message to the structured log
      set_variables  ─ every parameter becomes a variable
      increment      ─ add ``by`` (default 1) to variable ``name``
      wait           ─ sleep ``seconds``, waking early on cancellation
      run_job        ─ run a job handler inline, optionally storing its data

Tags:
    jobspine, workflows, actions, registry
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from jobspine.core.logging import get_logger
from jobspine.jobs.registry import HandlerRegistry, HandlerResult, JobContext

logger = get_logger(__name__)


@dataclass
class StepContext:
    """Read-only view of the execution handed to an action."""

    execution_id: str
    workflow_id: str
    step_id: str
    variables: Mapping[str, Any] = field(default_factory=dict)
    inputs: Mapping[str, Any] = field(default_factory=dict)
    iteration: int = 0
    timeout_seconds: float | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def __post_init__(self) -> None:
        self.variables = MappingProxyType(dict(self.variables))
        self.inputs = MappingProxyType(dict(self.inputs))

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def logger(self) -> Any:
        return get_logger("jobspine.workflows.step").bind(
            execution_id=self.execution_id, step_id=self.step_id
        )


StepAction = Callable[[dict[str, Any], StepContext], "HandlerResult | dict[str, Any] | None"]


class ActionRegistry:
    """Injectable, thread-safe registry of step actions (names are case-insensitive)."""

    def __init__(self) -> None:
        self._actions: dict[str, StepAction] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().lower()

    def register(self, name: str, action: StepAction, replace: bool = True) -> None:
        key = self._key(name)
        with self._lock:
            if not replace and key in self._actions:
                raise ValueError(f"Action already registered: {name!r}")
            self._actions[key] = action

    def action(self, name: str) -> Callable[[StepAction], StepAction]:
        """Decorator form of :meth:`register`."""

        def decorator(fn: StepAction) -> StepAction:
            self.register(name, fn)
            return fn

        return decorator

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._actions.pop(self._key(name), None) is not None

    def get(self, name: str) -> StepAction | None:
        with self._lock:
            return self._actions.get(self._key(name))

    def has(self, name: str) -> bool:
        with self._lock:
            return self._key(name) in self._actions

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._actions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)


# =============================================================================
# Built-in actions
# =============================================================================


def log_action(params: dict[str, Any], ctx: StepContext) -> dict[str, Any]:
    """Log ``message`` at ``level`` (default info)."""
    level = str(params.get("level", "info")).lower()
    message = params.get("message", "")
    getattr(ctx.logger, level if level in ("debug", "info", "warning", "error") else "info")(
        "workflow.log", message=message
    )
    return {}


def set_variables_action(params: dict[str, Any], ctx: StepContext) -> dict[str, Any]:
    """Return every parameter as a variable update."""
    return dict(params)


def increment_action(params: dict[str, Any], ctx: StepContext) -> HandlerResult:
    """Add ``by`` to the numeric variable ``name`` (missing counts as 0)."""
    name = params.get("name")
    if not name:
        return HandlerResult.fail("increment requires a 'name' parameter")
    current = ctx.variables.get(name, 0)
    by = params.get("by", 1)
    if not isinstance(current, (int, float)) or not isinstance(by, (int, float)):
        return HandlerResult.fail(f"Variable {name!r} is not numeric")
    return HandlerResult.ok(**{name: current + by})


def wait_action(params: dict[str, Any], ctx: StepContext) -> dict[str, Any]:
    """Sleep for ``seconds``; returns early if the step is cancelled."""
    seconds = float(params.get("seconds", 0))
    interrupted = ctx.cancel_event.wait(seconds) if seconds > 0 else False
    return {"waited_seconds": seconds, "interrupted": interrupted}


def make_run_job_action(handlers: HandlerRegistry) -> StepAction:
    """Build the ``run_job`` action bound to a job handler registry.

    Parameters: ``job_type`` (required), ``parameters`` (dict passed to the
    handler) and ``output`` (variable name to store the handler data under;
    without it the data is merged into the variables directly).
    """

    def run_job(params: dict[str, Any], ctx: StepContext) -> HandlerResult:
        job_type = params.get("job_type")
        if not job_type:
            return HandlerResult.fail("run_job requires a 'job_type' parameter")
        handler = handlers.get(job_type)
        if handler is None:
            return HandlerResult.fail(f"Unknown job type: {job_type}")

        job_context = JobContext(
            job_id=f"{ctx.execution_id}:{ctx.step_id}",
            job_type=job_type,
            attempt=ctx.iteration,
            timeout_seconds=ctx.timeout_seconds,
            cancel_event=ctx.cancel_event,
        )
        result = HandlerResult.coerce(handler(dict(params.get("parameters") or {}), job_context))
        output = params.get("output")
        if output and result.success:
            return HandlerResult.ok(**{output: result.data})
        return result

    return run_job


def register_builtin_actions(registry: ActionRegistry, handlers: HandlerRegistry) -> ActionRegistry:
    """Install the built-in actions into *registry* and return it."""
    registry.register("log", log_action)
    registry.register("set_variables", set_variables_action)
    registry.register("increment", increment_action)
    registry.register("wait", wait_action)
    registry.register("run_job", make_run_job_action(handlers))
    return registry
