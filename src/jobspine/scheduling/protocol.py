"""Scheduler backend and schedule evaluator protocols.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER BACKEND PROTOCOL                                                   │
│                                                                               │
│  The scheduler operates as "beat-as-poller": backends control WHEN ticks     │
│  happen, while JobScheduler controls WHAT happens on each tick.              │
│                                                                               │
│   ┌─────────────────┐       tick()       ┌──────────────────────────┐        │
│   │  Thread Backend │ ─────────────────► │  JobScheduler            │        │
│   │  (default)      │                    │   - dispatch due jobs    │        │
│   └─────────────────┘                    │   - fire recurring jobs  │        │
│                                          └────────────┬─────────────┘        │
│   ┌─────────────────┐                                 │ next_run()           │
│   │  Test driver    │ ── scheduler.tick() ──►         ▼                      │
│   │  (direct call)  │                    ┌──────────────────────────┐        │
│   └─────────────────┘                    │  ScheduleEvaluator       │        │
│                                          │  cron / interval         │        │
│                                          └──────────────────────────┘        │
│                                                                               │
│  Responsibility Split:                                                        │
│  - Backend: timing only (thread sleep)                                       │
│  - Scheduler: selection, claiming, dispatch                                  │
│  - Evaluator: descriptor → next instant, pure                                │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], None]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Decides WHEN JobScheduler.tick runs; never what it does.

    Anything with a ``name`` and these three methods can drive a scheduler,
    e.g. an asyncio task or a test that calls ``tick`` by hand.

    Example:
        >>> class ManualBeat:
        ...     name = "manual"
        ...     def start(self, tick_callback, interval_seconds=30.0):
        ...         self.tick = tick_callback
        ...     def stop(self):
        ...         self.tick = None
        ...     def health(self):
        ...         return {"healthy": self.tick is not None, "backend": "manual"}
    """

    name: str

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 30.0,
    ) -> None:
        """Start calling *tick_callback* every *interval_seconds*."""
        ...

    def stop(self) -> None:
        """Stop the loop; waits for the current tick to complete."""
        ...

    def health(self) -> dict[str, Any]:
        """Health snapshot.

        Must include ``healthy`` and ``backend``; ``tick_count`` and
        ``last_tick`` (ISO 8601 or None) when the backend counts beats.
        """
        ...


@runtime_checkable
class ScheduleEvaluator(Protocol):
    """Computes the next firing instant for a schedule descriptor.

    Implementations must be pure: the result depends only on the
    descriptor and *after*, and is strictly later than *after*.

    Raises:
        ScheduleEvaluationError: For descriptors the evaluator cannot read.
    """

    def next_run(self, descriptor: str, after: datetime) -> datetime:
        ...


@dataclass
class BackendHealth:
    """Backend health as reported to JobScheduler.health()."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }
