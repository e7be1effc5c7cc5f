"""Handler Registry — job type → handler lookup.

Manifesto:
The executor needs to resolve ``"cleanup_logs"`` to a callable. The
registry decouples registration (at import time or startup) from
resolution (at execution time). Each :class:`JobScheduler` owns its own
registry, pre-populated with the built-in handlers, so tests and
embedded deployments never share global state.

ARCHITECTURE
────────────
::

    HandlerRegistry
      ├── .register(job_type, handler)  ─ store handler
      ├── .handler(job_type)            ─ decorator form
      ├── .get(job_type)                ─ lookup, None if unknown
      ├── .has(job_type)                ─ existence check
      └── .list_handlers()              ─ registered types + descriptions

    Handler contract:
      handler(parameters: dict, context: JobContext) -> HandlerResult | dict

Tags:
    jobspine, jobs, registry, handler-registry, lookup
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from jobspine.core.logging import get_logger


@dataclass
class HandlerResult:
    """Outcome of a job handler.

    Handlers may return a plain dict instead; it is treated as
    ``HandlerResult(success=True, data=<dict>)``.
    """

    success: bool = True
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def ok(cls, **data: Any) -> HandlerResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, **data: Any) -> HandlerResult:
        return cls(success=False, data=data, error=error)

    @classmethod
    def coerce(cls, value: Any) -> HandlerResult:
        """Normalize whatever a handler returned."""
        if isinstance(value, HandlerResult):
            return value
        if value is None:
            return cls(success=True)
        if isinstance(value, Mapping):
            return cls(success=True, data=dict(value))
        return cls(success=True, data={"value": value})


@dataclass
class JobContext:
    """Read-only information handed to a running handler.

    ``cancel_event`` is set when the executor gives up on the handler
    (timeout). Long-running handlers should poll :attr:`cancelled`
    between units of work.
    """

    job_id: str
    job_type: str
    attempt: int = 0
    timeout_seconds: float | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def __post_init__(self) -> None:
        self.metadata = MappingProxyType(dict(self.metadata))

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def logger(self) -> Any:
        return get_logger("jobspine.jobs.handler").bind(job_id=self.job_id, job_type=self.job_type)


JobHandler = Callable[[dict[str, Any], JobContext], "HandlerResult | dict[str, Any] | None"]


class HandlerRegistry:
    """Injectable, thread-safe handler registry.

    Example:
        >>> registry = HandlerRegistry()
        >>>
        >>> @registry.handler("send_report", description="Email the weekly report")
        ... def send_report(params, ctx):
        ...     return {"sent": True}
        >>>
        >>> registry.get("send_report")(params={}, context=ctx)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}
        self._metadata: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(job_type: str) -> str:
        return job_type.strip().lower()

    def register(
        self,
        job_type: str,
        handler: JobHandler,
        description: str | None = None,
        replace: bool = True,
    ) -> None:
        """Register a handler for *job_type* (matched case-insensitively).

        Raises:
            ValueError: If *replace* is False and the type is already taken.
        """
        key = self._key(job_type)
        with self._lock:
            if not replace and key in self._handlers:
                raise ValueError(f"Handler already registered for job type {job_type!r}")
            self._handlers[key] = handler
            self._metadata[key] = {"job_type": key, "description": description}

    def handler(self, job_type: str, description: str | None = None) -> Callable[[JobHandler], JobHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(fn: JobHandler) -> JobHandler:
            self.register(job_type, fn, description=description or (fn.__doc__ or "").strip() or None)
            return fn

        return decorator

    def unregister(self, job_type: str) -> bool:
        key = self._key(job_type)
        with self._lock:
            self._metadata.pop(key, None)
            return self._handlers.pop(key, None) is not None

    def get(self, job_type: str) -> JobHandler | None:
        """Return the handler for *job_type*, or None if unknown."""
        with self._lock:
            return self._handlers.get(self._key(job_type))

    def has(self, job_type: str) -> bool:
        with self._lock:
            return self._key(job_type) in self._handlers

    def list_handlers(self) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(meta) for meta in sorted(self._metadata.values(), key=lambda m: m["job_type"])]

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)
