"""Thread beat: the default timing backend for JobScheduler.

One daemon thread wakes on a fixed period and calls the scheduler's tick.
Deadlines are computed on the monotonic clock from the start instant, so a
slow tick delays the next one but does not shift the whole cadence.

┌──────────────────────────────────────────────────────────────────────────────┐
│  THREAD BEAT                                                                  │
│                                                                               │
│   start(tick, interval)                                                       │
│      │  deadline = monotonic() + interval                                     │
│      ▼                                                                        │
│   ┌─────────────────────────────────────────────────────────┐                 │
│   │  jobspine-beat (daemon)                                 │                 │
│   │                                                         │                 │
│   │  while not stop.wait(deadline - monotonic()):           │                 │
│   │      tick()            ── errors counted, never raised  │                 │
│   │      deadline += interval (skip beats already missed)   │                 │
│   └─────────────────────────────────────────────────────────┘                 │
│                                                                               │
│   stop()  ── set stop event, join the thread (bounded)                        │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import UTC, datetime
from typing import Any

from .protocol import BackendHealth, TickCallback

logger = logging.getLogger(__name__)


class ThreadSchedulerBackend:
    """Calls a tick callback from a daemon thread on a fixed period.

    Example:
        >>> beat = ThreadSchedulerBackend()
        >>> beat.start(scheduler.tick, interval_seconds=30.0)
        >>> beat.health()["tick_count"]
        0
        >>> beat.stop()
    """

    name = "thread"

    def __init__(self, thread_name: str = "jobspine-beat", join_timeout: float = 5.0) -> None:
        self._thread_name = thread_name
        self._join_timeout = join_timeout
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._interval: float | None = None
        self._lock = threading.Lock()
        self._beats = 0
        self._failed_beats = 0
        self._missed_beats = 0
        self._last_beat: datetime | None = None
        self._last_duration_ms: float | None = None
        self._last_error: str | None = None

    def start(self, tick_callback: TickCallback, interval_seconds: float = 30.0) -> None:
        """Begin beating. The first tick happens one interval after start.

        Raises:
            ValueError: If *interval_seconds* is not positive.
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        if self._thread is not None and self._thread.is_alive():
            logger.warning("beat already running on %s", self._thread_name)
            return

        self._interval = interval_seconds
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(tick_callback, interval_seconds),
            name=self._thread_name,
            daemon=True,
        )
        self._thread.start()
        logger.info("beat started every %ss", interval_seconds)

    def _run(self, tick_callback: TickCallback, interval: float) -> None:
        deadline = time.monotonic() + interval
        while not self._stop.wait(max(deadline - time.monotonic(), 0.0)):
            began = time.monotonic()
            error: str | None = None
            try:
                tick_callback()
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                logger.exception("beat tick raised")
            finished = time.monotonic()

            # Beats that passed while the tick ran are dropped, not replayed.
            deadline += interval
            missed = 0
            while deadline <= finished:
                deadline += interval
                missed += 1

            with self._lock:
                self._beats += 1
                self._missed_beats += missed
                self._last_beat = datetime.now(UTC)
                self._last_duration_ms = round((finished - began) * 1000, 2)
                if error is not None:
                    self._failed_beats += 1
                    self._last_error = error
        logger.info("beat loop exited")

    def stop(self) -> None:
        """Stop beating; waits up to ``join_timeout`` for a tick in progress."""
        thread = self._thread
        if thread is None:
            return
        self._stop.set()
        thread.join(timeout=self._join_timeout)
        if thread.is_alive():
            logger.warning("beat thread still busy after %ss", self._join_timeout)
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        with self._lock:
            return BackendHealth(
                healthy=self.is_running,
                backend=self.name,
                tick_count=self._beats,
                last_tick=self._last_beat,
                extra={
                    "interval_seconds": self._interval,
                    "failed_ticks": self._failed_beats,
                    "missed_ticks": self._missed_beats,
                    "last_tick_duration_ms": self._last_duration_ms,
                    "last_error": self._last_error,
                },
            )
