"""Bounded worker pool.

A fixed number of worker threads consume job ids from a bounded queue.
The scheduler tick is the only producer; it checks :meth:`has_capacity`
before claiming a job, so a full queue leaves surplus due jobs PENDING
until a later tick instead of spawning more concurrent work.

Usage::

    pool = WorkerPool(process=executor.execute, max_workers=4, queue_size=100)
    pool.start()
    pool.submit(job_id)
    pool.wait_idle(timeout=5.0)
    pool.stop()          # drains queued ids, then joins the workers
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

_STOP = object()


class WorkerPool:
    """Fixed worker threads fed by a bounded FIFO queue."""

    def __init__(
        self,
        process: Callable[[str], Any],
        max_workers: int = 4,
        queue_size: int = 100,
        name: str = "jobspine-worker",
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        if queue_size < 1:
            raise ValueError(f"queue_size must be >= 1, got {queue_size}")

        self._process = process
        self._max_workers = max_workers
        self._queue_size = queue_size
        self._name = name
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=queue_size)
        self._threads: list[threading.Thread] = []
        self._state_lock = threading.Lock()
        self._idle = threading.Condition()
        self._outstanding = 0  # queued + executing
        self._active = 0
        self._started = False

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        with self._state_lock:
            if self._started:
                logger.warning("WorkerPool %s already started", self._name)
                return
            self._threads = [
                threading.Thread(target=self._run, name=f"{self._name}-{i}", daemon=True)
                for i in range(self._max_workers)
            ]
            for thread in self._threads:
                thread.start()
            self._started = True
        logger.info("WorkerPool %s started (workers=%d, queue=%d)",
                    self._name, self._max_workers, self._queue_size)

    def stop(self, timeout: float | None = 10.0) -> None:
        """Drain queued work, then stop and join the workers."""
        with self._state_lock:
            if not self._started:
                return
            threads = list(self._threads)
            self._started = False

        # Sentinels queue up behind real work, so everything already
        # queued still runs.
        for _ in threads:
            self._queue.put(_STOP)
        for thread in threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Worker thread %s did not stop cleanly", thread.name)
        self._threads = []
        logger.info("WorkerPool %s stopped", self._name)

    @property
    def is_running(self) -> bool:
        return self._started

    # ------------------------------------------------------------------ #
    # Producer side
    # ------------------------------------------------------------------ #

    def has_capacity(self) -> bool:
        return not self._queue.full()

    def submit(self, item: str) -> bool:
        """Enqueue *item* without blocking. Returns False if the queue is full."""
        with self._idle:
            try:
                self._queue.put_nowait(item)
            except queue.Full:
                return False
            self._outstanding += 1
            return True

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is queued or executing. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def active_workers(self) -> int:
        return self._active

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def stats(self) -> dict[str, Any]:
        return {
            "running": self._started,
            "max_workers": self._max_workers,
            "queue_size": self._queue_size,
            "queue_depth": self.queue_depth,
            "active_workers": self._active,
        }

    # ------------------------------------------------------------------ #
    # Worker loop
    # ------------------------------------------------------------------ #

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                self._queue.task_done()
                return
            with self._idle:
                self._active += 1
            try:
                self._process(item)
            except Exception:
                logger.exception("Worker %s failed processing %s",
                                 threading.current_thread().name, item)
            finally:
                self._queue.task_done()
                with self._idle:
                    self._active -= 1
                    self._outstanding -= 1
                    self._idle.notify_all()
