"""Schedule evaluators — descriptor string → next firing instant.

Recurring jobs carry their schedule as a plain string. Which grammar that
string follows is decided by the evaluator the scheduler was built with:

    ┌─────────────────────────────┬──────────────────────────────────────┐
    │ Descriptor                  │ Evaluator                            │
    ├─────────────────────────────┼──────────────────────────────────────┤
    │ "*/5 * * * *"               │ CronScheduleEvaluator (croniter)     │
    │ "0 2 * * 1-5"               │ CronScheduleEvaluator                │
    │ "@daily", "@hourly"         │ CronScheduleEvaluator                │
    │ "@every 90s", "every 5m"    │ IntervalScheduleEvaluator            │
    │ "1h30m", "45s"              │ IntervalScheduleEvaluator            │
    └─────────────────────────────┴──────────────────────────────────────┘

The default :class:`CompositeScheduleEvaluator` routes interval
descriptors to the interval evaluator and everything else to cron.

Every evaluator returns an aware UTC datetime strictly after ``after`` or
raises :class:`~jobspine.core.errors.ScheduleEvaluationError`.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from croniter import croniter

from jobspine.core.errors import ScheduleEvaluationError
from jobspine.core.timestamps import ensure_utc

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1, "sec": 1, "secs": 1, "second": 1, "seconds": 1,
    "m": 60, "min": 60, "mins": 60, "minute": 60, "minutes": 60,
    "h": 3600, "hr": 3600, "hrs": 3600, "hour": 3600, "hours": 3600,
    "d": 86400, "day": 86400, "days": 86400,
    "w": 604800, "week": 604800, "weeks": 604800,
}

_PART = r"(\d+(?:\.\d+)?)\s*([a-z]+)"
_INTERVAL_RE = re.compile(
    rf"^(?:@every\s+|every\s+)?((?:{_PART}\s*)+)$",
    re.IGNORECASE,
)
_PART_RE = re.compile(_PART, re.IGNORECASE)


def parse_interval(descriptor: str) -> timedelta:
    """Parse an interval descriptor such as ``"@every 1h30m"``.

    Raises:
        ScheduleEvaluationError: If the text is not an interval or is zero.
    """
    text = descriptor.strip()
    match = _INTERVAL_RE.match(text)
    if not match:
        raise ScheduleEvaluationError(descriptor, "not an interval descriptor")

    total = 0.0
    for amount, unit in _PART_RE.findall(match.group(1)):
        factor = _UNIT_SECONDS.get(unit.lower())
        if factor is None:
            raise ScheduleEvaluationError(descriptor, f"unknown unit {unit!r}")
        total += float(amount) * factor

    if total <= 0:
        raise ScheduleEvaluationError(descriptor, "interval must be positive")
    return timedelta(seconds=total)


def _check_after(descriptor: str, after: datetime, result: datetime) -> datetime:
    result = ensure_utc(result)
    if result <= after:
        raise ScheduleEvaluationError(descriptor, "no occurrence after the reference time")
    return result


class IntervalScheduleEvaluator:
    """Fixed-period schedules: next run = ``after`` + interval."""

    name = "interval"

    @staticmethod
    def matches(descriptor: str) -> bool:
        return bool(_INTERVAL_RE.match(descriptor.strip()))

    def next_run(self, descriptor: str, after: datetime) -> datetime:
        after = ensure_utc(after)
        return _check_after(descriptor, after, after + parse_interval(descriptor))


class CronScheduleEvaluator:
    """Cron expressions evaluated with croniter.

    Accepts 5-field expressions, 6-field expressions with seconds, and the
    ``@hourly``/``@daily``/``@weekly``/``@monthly``/``@yearly`` aliases.
    Evaluation happens in UTC.
    """

    name = "cron"

    def next_run(self, descriptor: str, after: datetime) -> datetime:
        expression = descriptor.strip() if isinstance(descriptor, str) else descriptor
        if not expression or not isinstance(expression, str):
            raise ScheduleEvaluationError(str(descriptor), "empty cron expression")
        if not croniter.is_valid(expression):
            raise ScheduleEvaluationError(descriptor, "not a valid cron expression")

        after = ensure_utc(after)
        try:
            result = croniter(expression, after).get_next(datetime)
        except (ValueError, KeyError, TypeError) as exc:
            raise ScheduleEvaluationError(descriptor, str(exc), cause=exc) from exc
        return _check_after(descriptor, after, result)


class CompositeScheduleEvaluator:
    """Routes interval descriptors to the interval evaluator, the rest to cron."""

    name = "composite"

    def __init__(
        self,
        cron: CronScheduleEvaluator | None = None,
        interval: IntervalScheduleEvaluator | None = None,
    ) -> None:
        self.cron = cron or CronScheduleEvaluator()
        self.interval = interval or IntervalScheduleEvaluator()

    def next_run(self, descriptor: str, after: datetime) -> datetime:
        if not isinstance(descriptor, str) or not descriptor.strip():
            raise ScheduleEvaluationError(str(descriptor), "empty schedule")
        if self.interval.matches(descriptor):
            return self.interval.next_run(descriptor, after)
        return self.cron.next_run(descriptor, after)


__all__ = [
    "CompositeScheduleEvaluator",
    "CronScheduleEvaluator",
    "IntervalScheduleEvaluator",
    "parse_interval",
]
