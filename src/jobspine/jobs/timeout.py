"""Timeout enforcement for handlers and workflow steps.

Manifesto:
    A handler without a deadline can pin a worker thread forever. Python
    cannot kill a thread, so enforcement works by racing: the callable runs
    on a helper thread while the caller waits for at most ``timeout``
    seconds. On expiry the caller gets :class:`TimeoutExpired` and moves on;
    the helper thread finishes in the background and its result is
    discarded. Cooperative handlers notice through their cancellation event.

Architecture:
    ::

        caller (worker thread)              helper thread
        ──────────────────────              ─────────────
        run_with_timeout(fn, 30) ─submit──► fn(*args)
              │                                  │
              ├── future.result(timeout=30)      │
              │                                  │
              ▼                                  ▼
        result | TimeoutExpired            (result dropped on timeout)

Guardrails:
    - Never wrap the helper pool in ``with``: leaving the block would join
      the helper thread and turn the timeout back into an unbounded wait.
"""

from __future__ import annotations

import concurrent.futures
import time
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Inherits from built-in TimeoutError for broad exception handling.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the caller waited
        operation: Name/description of the operation
    """

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"
        super().__init__(msg)


def run_with_timeout(
    func: Callable[..., T],
    timeout_seconds: float | None,
    operation: str | None = None,
    args: tuple[Any, ...] | None = None,
    kwargs: dict[str, Any] | None = None,
    on_timeout: Callable[[], None] | None = None,
) -> T:
    """Run *func* and give up after *timeout_seconds*.

    A ``None`` timeout calls *func* directly on the current thread.

    Args:
        func: Callable to execute
        timeout_seconds: Maximum time to wait, or None for no limit
        operation: Name for error messages
        args: Positional arguments for func
        kwargs: Keyword arguments for func
        on_timeout: Called once when the deadline passes (e.g. to set a
            cancellation event the callable is polling)

    Raises:
        TimeoutExpired: If execution exceeds the timeout
        Exception: Anything raised by func
    """
    pos_args = args or ()
    kw_args = kwargs or {}
    if timeout_seconds is None:
        return func(*pos_args, **kw_args)
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    name = operation or getattr(func, "__name__", "operation")
    start = time.monotonic()
    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=1, thread_name_prefix=f"timeout-{name}"
    )
    try:
        future = executor.submit(func, *pos_args, **kw_args)
        # wait() instead of result(timeout=): a TimeoutError raised by func
        # itself must propagate as-is, not be mistaken for our deadline.
        done, _ = concurrent.futures.wait([future], timeout=timeout_seconds)
        if not done:
            if on_timeout is not None:
                on_timeout()
            raise TimeoutExpired(
                timeout=timeout_seconds,
                elapsed=time.monotonic() - start,
                operation=name,
            )
        return future.result()
    finally:
        executor.shutdown(wait=False)


class Deadline:
    """Monotonic deadline for loops that must stop on time.

    Example:
        >>> deadline = Deadline(30.0)
        >>> while condition() and not deadline.expired:
        ...     step()
    """

    def __init__(self, seconds: float | None) -> None:
        self.seconds = seconds
        self._start = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._start

    @property
    def remaining(self) -> float | None:
        if self.seconds is None:
            return None
        return max(0.0, self.seconds - self.elapsed)

    @property
    def expired(self) -> bool:
        return self.seconds is not None and self.elapsed >= self.seconds
