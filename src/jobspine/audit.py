"""Audit sink — fire-and-forget record of job and workflow actions.

Manifesto:
    Operators need to know who created, cancelled or retried what, and
    every automatic transition the engine made on their behalf. Auditing
    is a side channel: a broken sink must never fail the job or workflow
    it is describing. :class:`AuditTrail` is the single place that calls
    sinks, and it logs and drops sink failures.

ARCHITECTURE
────────────
::

    JobScheduler / JobExecutor / WorkflowService
           │
           ▼
    AuditTrail.emit(action, resource_type, resource_id, **details)
           │    (exceptions from sinks are logged, never raised)
           ├──► LoggingAuditSink   ─ structlog "audit.event" lines (default)
           ├──► InMemoryAuditSink  ─ list of AuditEvent (tests, dashboards)
           └──► any object with record(event)
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from jobspine.core.logging import get_logger
from jobspine.core.timestamps import to_iso8601, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """One audited action."""

    action: str
    resource_type: str
    resource_id: str
    outcome: str = "success"
    actor: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "outcome": self.outcome,
            "actor": self.actor,
            "details": dict(self.details),
            "timestamp": to_iso8601(self.timestamp),
        }


@runtime_checkable
class AuditSink(Protocol):
    """Anything that can record an :class:`AuditEvent`."""

    def record(self, event: AuditEvent) -> None:
        ...


class LoggingAuditSink:
    """Writes audit events to the structured log."""

    def __init__(self, logger_name: str = "jobspine.audit") -> None:
        self._logger = get_logger(logger_name)

    def record(self, event: AuditEvent) -> None:
        self._logger.info("audit.event", **event.to_dict())


class InMemoryAuditSink:
    """Keeps audit events in memory."""

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    def actions(self, resource_id: str | None = None) -> list[str]:
        return [
            e.action for e in self.events
            if resource_id is None or e.resource_id == resource_id
        ]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class AuditTrail:
    """Fans events out to sinks, isolating callers from sink failures."""

    def __init__(self, sinks: AuditSink | Iterable[AuditSink] | None = None) -> None:
        if sinks is None:
            sinks = [LoggingAuditSink()]
        elif isinstance(sinks, AuditSink):
            sinks = [sinks]
        self._sinks: list[AuditSink] = list(sinks)

    def add_sink(self, sink: AuditSink) -> None:
        self._sinks.append(sink)

    def emit(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        *,
        outcome: str = "success",
        actor: str | None = None,
        **details: Any,
    ) -> None:
        event = AuditEvent(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            outcome=outcome,
            actor=actor,
            details=details,
        )
        for sink in self._sinks:
            try:
                sink.record(event)
            except Exception as exc:
                logger.warning(
                    "audit.sink_failed",
                    sink=type(sink).__name__,
                    action=action,
                    error=str(exc),
                )
