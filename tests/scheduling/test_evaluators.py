"""Tests for jobspine.scheduling.evaluators — cron and interval descriptors."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from jobspine.core.errors import ScheduleEvaluationError
from jobspine.scheduling.evaluators import (
    CompositeScheduleEvaluator,
    CronScheduleEvaluator,
    IntervalScheduleEvaluator,
    parse_interval,
)
from jobspine.scheduling.protocol import ScheduleEvaluator

AFTER = datetime(2026, 1, 5, 12, 0, 0, tzinfo=UTC)


class TestParseInterval:
    @pytest.mark.parametrize(
        ("descriptor", "seconds"),
        [
            ("@every 90s", 90),
            ("every 5m", 300),
            ("1h30m", 5400),
            ("2 hours", 7200),
            ("1d", 86400),
            ("1w", 604800),
            ("500ms", 0.5),
            ("@EVERY 1H", 3600),
        ],
    )
    def test_valid(self, descriptor, seconds):
        assert parse_interval(descriptor) == timedelta(seconds=seconds)

    @pytest.mark.parametrize("descriptor", ["", "0s", "5 fortnights", "*/5 * * * *", "soon"])
    def test_invalid(self, descriptor):
        with pytest.raises(ScheduleEvaluationError):
            parse_interval(descriptor)


class TestIntervalEvaluator:
    def test_next_run(self):
        assert IntervalScheduleEvaluator().next_run("@every 10m", AFTER) == AFTER + timedelta(minutes=10)

    def test_naive_after_treated_as_utc(self):
        result = IntervalScheduleEvaluator().next_run("1m", AFTER.replace(tzinfo=None))
        assert result == AFTER + timedelta(minutes=1)
        assert result.tzinfo is not None


class TestCronEvaluator:
    def test_five_field(self):
        assert CronScheduleEvaluator().next_run("*/15 * * * *", AFTER) == AFTER + timedelta(minutes=15)

    def test_strictly_after_matching_instant(self):
        assert CronScheduleEvaluator().next_run("0 12 * * *", AFTER) == AFTER + timedelta(days=1)

    def test_alias(self):
        assert CronScheduleEvaluator().next_run("@daily", AFTER) == datetime(2026, 1, 6, tzinfo=UTC)

    @pytest.mark.parametrize("descriptor", ["", "61 * * * *", "not cron", "* * *"])
    def test_invalid(self, descriptor):
        with pytest.raises(ScheduleEvaluationError) as exc_info:
            CronScheduleEvaluator().next_run(descriptor, AFTER)
        assert exc_info.value.descriptor == descriptor


class TestCompositeEvaluator:
    def test_satisfies_protocol(self):
        assert isinstance(CompositeScheduleEvaluator(), ScheduleEvaluator)

    def test_routes_by_descriptor(self):
        evaluator = CompositeScheduleEvaluator()
        assert evaluator.next_run("@every 30s", AFTER) == AFTER + timedelta(seconds=30)
        assert evaluator.next_run("0 13 * * *", AFTER) == AFTER + timedelta(hours=1)

    def test_result_always_after_reference(self):
        evaluator = CompositeScheduleEvaluator()
        for descriptor in ("@hourly", "* * * * *", "every 1s", "0 0 1 1 *"):
            assert evaluator.next_run(descriptor, AFTER) > AFTER

    def test_empty(self):
        with pytest.raises(ScheduleEvaluationError):
            CompositeScheduleEvaluator().next_run("   ", AFTER)
